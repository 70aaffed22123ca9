"""
Layout of the per-device data directory and the small files kept in it.
"""

import json
import os
import threading
from pathlib import Path
from typing import Dict, List, Optional

from . import challenge_key
from .cache import ScoreCache
from .device import get_or_create_device_id
from .logging_utils import get_logger

logger = get_logger("scoresync.storage")

GLOBAL_CACHE_FILE_NAME = "scoreboard-global-cache-v1.json"
PERSONAL_CACHE_FILE_NAME = "scoreboard-personal-cache-v1.json"
DAILY_CACHE_FILE_PREFIX = "scoreboard-daily-cache-v1-"
DEVICE_UUID_FILE_NAME = "device-uuid-v1.txt"
ACCEPTED_KEYS_FILE_NAME = "daily-accepted-keys-v1.json"


def default_data_dir() -> Path:
    return Path(os.getenv("SCORESYNC_DATA_DIR", "./data"))


class AcceptedKeyLedger:
    """Challenge keys with an accepted daily submission from this device."""

    def __init__(self, path: Path):
        self.path = Path(path)
        self._lock = threading.RLock()

    def read(self) -> List[str]:
        if not self.path.exists():
            return []
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            logger.warning("ledger_corrupt", extra={"path": str(self.path), "error": str(e)})
            return []
        if not isinstance(data, list):
            logger.warning("ledger_corrupt", extra={"path": str(self.path)})
            return []
        return sorted(
            {k for k in data if isinstance(k, str) and challenge_key.is_valid_challenge_key(k)},
            key=challenge_key.day_number,
        )

    def record(self, key: str) -> List[str]:
        challenge_key.validate_challenge_key(key)
        with self._lock:
            keys = self.read()
            if key in keys:
                return keys
            keys = sorted([*keys, key], key=challenge_key.day_number)
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self.path.write_text(json.dumps(keys), encoding="utf-8")
            return keys


class LocalStore:
    """Everything this device persists: score caches, device id, key ledger."""

    def __init__(self, data_dir: Optional[Path] = None):
        self.data_dir = Path(data_dir) if data_dir is not None else default_data_dir()
        self.global_cache = ScoreCache(self.data_dir / GLOBAL_CACHE_FILE_NAME)
        self.personal_cache = ScoreCache(self.data_dir / PERSONAL_CACHE_FILE_NAME)
        self.accepted_keys = AcceptedKeyLedger(self.data_dir / ACCEPTED_KEYS_FILE_NAME)
        self._daily_caches: Dict[str, ScoreCache] = {}

    def daily_cache(self, key: str) -> ScoreCache:
        challenge_key.validate_challenge_key(key)
        cache = self._daily_caches.get(key)
        if cache is None:
            cache = ScoreCache(self.data_dir / f"{DAILY_CACHE_FILE_PREFIX}{key}.json")
            self._daily_caches[key] = cache
        return cache

    @property
    def device_id_path(self) -> Path:
        return self.data_dir / DEVICE_UUID_FILE_NAME

    def device_id(self) -> str:
        return get_or_create_device_id(self.device_id_path)

    def get_stats(self) -> Dict[str, dict]:
        stats = {
            'global': self.global_cache.get_stats(),
            'personal': self.personal_cache.get_stats(),
        }
        for key, cache in sorted(self._daily_caches.items()):
            stats[f'daily:{key}'] = cache.get_stats()
        return stats
