"""
Local score cache: a bounded, ranked, deduplicated snapshot of scores kept on
disk for offline display and merge-on-fetch.

Ranking is (score desc, level desc, date desc). Exact duplicates collapse to
one entry whose `is_me` is the OR of the duplicates. Both `sort_and_dedupe`
and `truncate` are idempotent.
"""

import json
import threading
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

from pydantic import ValidationError as PydanticValidationError

from .errors import CorruptLocalState
from .logging_utils import get_logger
from .models import ScoreEntry

logger = get_logger("scoresync.cache")

CACHE_MAX_ENTRIES = 100


def rank_key(entry: ScoreEntry):
    return (entry.score, entry.level, entry.date)


def dedupe_key(entry: ScoreEntry) -> str:
    skill_usage = json.dumps(
        [u.to_json_dict() for u in entry.skill_usage], separators=(",", ":")
    )
    return f"{entry.user}::{entry.score}::{entry.level}::{entry.date}::{skill_usage}"


def sort_and_dedupe(entries: Iterable[ScoreEntry]) -> List[ScoreEntry]:
    # sorted() is stable, so equal-ranked entries keep their incoming order
    ranked = sorted(entries, key=rank_key, reverse=True)
    kept: Dict[str, ScoreEntry] = {}
    for entry in ranked:
        key = dedupe_key(entry)
        current = kept.get(key)
        if current is None:
            kept[key] = entry
        elif entry.is_me and not current.is_me:
            kept[key] = current.model_copy(update={"is_me": True})
    return list(kept.values())


def truncate(entries: List[ScoreEntry], limit: int = CACHE_MAX_ENTRIES) -> List[ScoreEntry]:
    return sorted(entries, key=rank_key, reverse=True)[:limit]


def merge(existing: Iterable[ScoreEntry], incoming: Iterable[ScoreEntry]) -> List[ScoreEntry]:
    return truncate(sort_and_dedupe([*existing, *incoming]))


class ScoreCache:
    """A ranked list of entries persisted as one JSON array file.

    No cross-process locking: concurrent writers to the same file race and
    the last writer wins.
    """

    def __init__(self, path: Path, max_entries: int = CACHE_MAX_ENTRIES):
        self.path = Path(path)
        self.max_entries = max_entries
        self._lock = threading.RLock()
        self._stats = {
            'reads': 0,
            'writes': 0,
            'absent_reads': 0,
            'corrupt_reads': 0,
            'dropped_rows': 0,
        }

    def _load_rows(self) -> List[ScoreEntry]:
        try:
            raw = self.path.read_text(encoding="utf-8")
        except OSError as e:
            raise CorruptLocalState(f"unreadable cache file: {e}")
        try:
            data = json.loads(raw)
        except ValueError as e:
            raise CorruptLocalState(f"unparseable cache file: {e}")
        if not isinstance(data, list):
            raise CorruptLocalState("cache file is not a JSON array")

        rows: List[ScoreEntry] = []
        dropped = 0
        for item in data:
            try:
                rows.append(ScoreEntry.model_validate(item))
            except PydanticValidationError:
                dropped += 1
        if dropped:
            self._stats['dropped_rows'] += dropped
            logger.warning("cache_rows_dropped", extra={"path": str(self.path), "dropped": dropped})
        return rows

    def read(self) -> List[ScoreEntry]:
        """Load, rank, dedupe and bound the cached entries.

        A missing file and a corrupt file both read as empty; they are logged
        differently.
        """
        with self._lock:
            self._stats['reads'] += 1
            if not self.path.exists():
                self._stats['absent_reads'] += 1
                logger.debug("cache_absent", extra={"path": str(self.path)})
                return []
            try:
                rows = self._load_rows()
            except CorruptLocalState as e:
                self._stats['corrupt_reads'] += 1
                logger.warning("cache_corrupt", extra={"path": str(self.path), "error": str(e)})
                return []
            return truncate(sort_and_dedupe(rows), self.max_entries)

    def write(self, entries: List[ScoreEntry]) -> None:
        """Persist the full, already ranked list. Raises OSError on failure."""
        with self._lock:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            body = json.dumps([e.to_json_dict() for e in entries], ensure_ascii=False)
            self.path.write_text(body, encoding="utf-8")
            self._stats['writes'] += 1

    def merge(self, incoming: Iterable[ScoreEntry]) -> List[ScoreEntry]:
        """Read-merge-write; returns the new cache contents."""
        with self._lock:
            merged = truncate(sort_and_dedupe([*self.read(), *incoming]), self.max_entries)
            self.write(merged)
            return merged

    def add(self, entry: ScoreEntry) -> List[ScoreEntry]:
        return self.merge([entry])

    def top(self, limit: Optional[int] = None) -> List[ScoreEntry]:
        entries = self.read()
        if limit is None:
            return entries
        return entries[:limit]

    def get_stats(self) -> Dict[str, Any]:
        with self._lock:
            return {
                **self._stats,
                'path': str(self.path),
                'max_entries': self.max_entries,
            }
