"""
Public scoreboard operations.

Classic scores are local-first: the cache commit happens before any Registry
call, remote sync is best-effort and its failure never undoes the local
commit. Daily challenge operations have no offline mode: they need a
configured Registry and surface its failures unchanged.
"""

from typing import Any, Dict, List, Optional, Union

from pydantic import ValidationError as PydanticValidationError

from . import challenge_key as ck
from .badges import compute_badge_status
from .cache import ScoreCache
from .daily import DailyAttemptCoordinator
from .errors import ConfigurationError, EmptyUserName, TransportError
from .logging_utils import get_logger
from .models import (
    CLASSIC_CHALLENGE_KEY,
    CLASSIC_MODE,
    DAILY_MODE,
    DailyAttemptStartResult,
    DailyBadgeStatus,
    DailyForfeitResult,
    DailyReplayProof,
    DailyStatus,
    DailySubmitResult,
    ScoreEntry,
    ScoreListing,
    SubmitOutcome,
    SyncStatus,
)
from .registry import RegistryClient, normalize_limit, row_to_entry
from .replay import check_entry_matches_proof, validate_replay_proof
from .sanitize import sanitize_entry
from .storage import LocalStore

logger = get_logger("scoresync.scoreboard")


def _remote_entries(rows: List[Dict[str, Any]], device_id: Optional[str]) -> List[ScoreEntry]:
    """Sanitize untrusted rows; `is_me` only by device identity match."""
    entries: List[ScoreEntry] = []
    for row in rows:
        try:
            raw, owner_id = row_to_entry(row)
            entry = sanitize_entry(raw)
        except (EmptyUserName, PydanticValidationError, TypeError, ValueError):
            continue
        if device_id is not None and owner_id == device_id:
            entry = entry.model_copy(update={"is_me": True})
        entries.append(entry)
    return entries


def _device_id_or_none(store: LocalStore) -> Optional[str]:
    try:
        return store.device_id()
    except OSError as e:
        logger.warning("device_id_unavailable", extra={"error": str(e)})
        return None


def _fetch_into_cache(
    store: LocalStore,
    cache: ScoreCache,
    registry: Optional[RegistryClient],
    mode: str,
    key: str,
    limit: Optional[int],
) -> ScoreListing:
    top = normalize_limit(limit)
    if registry is not None:
        try:
            rows = registry.fetch_scores(mode, key, top)
        except TransportError as e:
            logger.warning("registry_fetch_failed_using_cache", extra={
                "mode": mode, "challenge_key": key, "error": str(e),
            })
        else:
            remote = _remote_entries(rows, _device_id_or_none(store))
            try:
                cache.merge(remote)
            except OSError as e:
                logger.warning("cache_write_failed", extra={"path": str(cache.path), "error": str(e)})
            return ScoreListing(entries=remote[:top], source="remote")
    return ScoreListing(entries=cache.top(top), source="cache")


def fetch_scores(store: LocalStore, registry: Optional[RegistryClient], limit: Optional[int] = None) -> ScoreListing:
    """Top classic scores, from the Registry when reachable, else from the cache."""
    return _fetch_into_cache(store, store.global_cache, registry, CLASSIC_MODE, CLASSIC_CHALLENGE_KEY, limit)


def fetch_daily_scores(
    store: LocalStore,
    registry: Optional[RegistryClient],
    challenge_key: str,
    limit: Optional[int] = None,
) -> ScoreListing:
    key = ck.normalize_challenge_key(challenge_key)
    return _fetch_into_cache(store, store.daily_cache(key), registry, DAILY_MODE, key, limit)


def submit_score(
    store: LocalStore,
    registry: Optional[RegistryClient],
    entry: Union[ScoreEntry, dict],
    replay_proof: Optional[Union[DailyReplayProof, dict]] = None,
) -> SubmitOutcome:
    """Commit a classic score locally, then try to sync it to the Registry.

    Validation errors raise before anything is written. A remote failure is
    logged and reported in the outcome, never raised.
    """
    clean = sanitize_entry(entry)
    proof = None
    if replay_proof is not None:
        proof = validate_replay_proof(replay_proof)
        check_entry_matches_proof(clean, proof)
    mine = clean.model_copy(update={"is_me": True})

    try:
        store.global_cache.add(mine)
    except OSError as e:
        logger.error("score_local_write_failed", extra={"error": str(e)})
        return SubmitOutcome(status=SyncStatus.LOCAL_FAILED, entry=mine, error=str(e))

    if registry is None:
        return SubmitOutcome(status=SyncStatus.LOCAL_ONLY, entry=mine)

    try:
        device_id = store.device_id()
        if proof is not None:
            registry.verify_score(CLASSIC_MODE, CLASSIC_CHALLENGE_KEY, device_id, clean, proof)
        else:
            registry.upsert_classic_score(clean, device_id)
    except (TransportError, OSError) as e:
        logger.warning("score_remote_sync_failed_kept_locally", extra={
            "mode": CLASSIC_MODE, "error": str(e),
        })
        return SubmitOutcome(status=SyncStatus.REMOTE_FAILED, entry=mine, error=str(e))
    return SubmitOutcome(status=SyncStatus.SYNCED, entry=mine)


def fetch_personal_scores(store: LocalStore, limit: Optional[int] = None) -> List[ScoreEntry]:
    return store.personal_cache.top(normalize_limit(limit))


def submit_personal_score(store: LocalStore, entry: Union[ScoreEntry, dict]) -> ScoreEntry:
    """Record a result in the local-only personal list. Never synced."""
    mine = sanitize_entry(entry).model_copy(update={"is_me": True})
    store.personal_cache.add(mine)
    return mine


def _coordinator(store: LocalStore, registry: Optional[RegistryClient]) -> DailyAttemptCoordinator:
    if registry is None:
        raise ConfigurationError("daily challenge requires a configured registry url and api key")
    return DailyAttemptCoordinator(registry, store.device_id())


def fetch_daily_status(store: LocalStore, registry: Optional[RegistryClient], challenge_key: str) -> DailyStatus:
    key = ck.normalize_challenge_key(challenge_key)
    return _coordinator(store, registry).status(key)


def start_daily_attempt(
    store: LocalStore,
    registry: Optional[RegistryClient],
    challenge_key: str,
    player_name: Optional[str] = None,
) -> DailyAttemptStartResult:
    key = ck.normalize_challenge_key(challenge_key)
    return _coordinator(store, registry).start(key, player_name)


def submit_daily_score(
    store: LocalStore,
    registry: Optional[RegistryClient],
    challenge_key: str,
    attempt_token: Optional[str],
    entry: Union[ScoreEntry, dict],
    replay_proof: Union[DailyReplayProof, dict],
) -> DailySubmitResult:
    """Submit a daily score; on acceptance, mirror it into the local caches."""
    key = ck.normalize_challenge_key(challenge_key)
    coordinator = _coordinator(store, registry)
    result = coordinator.submit(key, attempt_token, entry, replay_proof)
    if result.accepted:
        mine = sanitize_entry(entry).model_copy(update={"is_me": True})
        try:
            store.daily_cache(key).add(mine)
            store.accepted_keys.record(key)
        except OSError as e:
            logger.warning("daily_local_mirror_failed", extra={"challenge_key": key, "error": str(e)})
    return result


def forfeit_daily_attempt(
    store: LocalStore,
    registry: Optional[RegistryClient],
    challenge_key: str,
    attempt_token: Optional[str],
) -> DailyForfeitResult:
    key = ck.normalize_challenge_key(challenge_key)
    return _coordinator(store, registry).forfeit(key, attempt_token)


def fetch_badge_status(
    store: LocalStore,
    registry: Optional[RegistryClient],
    today: Optional[str] = None,
) -> DailyBadgeStatus:
    """Streak and badge tier from Registry-reported completions plus the local ledger."""
    key = ck.normalize_challenge_key(today) if today else ck.today_key()
    coordinator = _coordinator(store, registry)
    remote_keys = coordinator.registry.fetch_completed_challenge_keys(coordinator.device_id)
    return compute_badge_status([*remote_keys, *store.accepted_keys.read()], key)
