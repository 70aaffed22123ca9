import uuid
from pathlib import Path
from typing import Optional

from .logging_utils import get_logger

logger = get_logger("scoresync.device")


def read_device_id(path: Path) -> Optional[str]:
    """Return the canonical UUID stored at `path`, or None if absent or malformed."""
    if not path.exists():
        return None
    try:
        raw = path.read_text(encoding="utf-8")
    except OSError as e:
        logger.warning("device_id_unreadable", extra={"path": str(path), "error": str(e)})
        return None
    try:
        return str(uuid.UUID(raw.strip()))
    except ValueError:
        logger.warning("device_id_corrupt", extra={"path": str(path)})
        return None


def get_or_create_device_id(path: Path) -> str:
    existing = read_device_id(path)
    if existing:
        return existing
    created = str(uuid.uuid4())
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(created, encoding="utf-8")
    logger.info("device_id_created", extra={"path": str(path)})
    return created
