"""
Daily challenge attempt coordinator.

Attempt counters and tokens belong to the Registry. The coordinator validates
requests, forwards them, and rebuilds its view (Idle, Active or Exhausted)
from each response. It never advances the state machine on its own.
"""

from typing import Any, Dict, Optional, Union

from . import challenge_key as ck
from .errors import MissingAttemptToken
from .logging_utils import get_logger
from .models import (
    DAILY_MODE,
    MAX_ATTEMPTS,
    ActiveAttempt,
    AttemptState,
    DailyAttemptStartResult,
    DailyForfeitResult,
    DailyReplayProof,
    DailyStatus,
    DailySubmitResult,
    ExhaustedAttempt,
    IdleAttempt,
    ScoreEntry,
)
from .registry import RegistryClient
from .replay import check_entry_matches_proof, validate_replay_proof
from .sanitize import sanitize_entry

logger = get_logger("scoresync.daily")


def clamp_attempts(value: Any) -> int:
    try:
        used = int(value)
    except (TypeError, ValueError):
        return 0
    return max(0, min(MAX_ATTEMPTS, used))


def normalize_token(raw: Any) -> Optional[str]:
    if not isinstance(raw, str):
        return None
    return raw.strip() or None


def require_token(raw: Optional[str]) -> str:
    token = normalize_token(raw)
    if token is None:
        raise MissingAttemptToken("attempt token is required")
    return token


def attempt_state(attempts_used: int, token: Optional[str] = None, has_active: bool = False) -> AttemptState:
    if token or has_active:
        return ActiveAttempt(token=token)
    if attempts_used >= MAX_ATTEMPTS:
        return ExhaustedAttempt()
    return IdleAttempt()


def status_fields(
    challenge_key: str,
    attempts_used: Any,
    token: Optional[str] = None,
    has_active: bool = False,
) -> Dict[str, Any]:
    """Counters derived from the Registry's attempts-used figure.

    Any `attemptsLeft`/`canSubmit` the Registry sends is ignored in favour of
    recomputing them from the clamped count.
    """
    used = clamp_attempts(attempts_used)
    left = max(0, min(MAX_ATTEMPTS, MAX_ATTEMPTS - used))
    return {
        "challenge_key": challenge_key,
        "attempts_used": used,
        "attempts_left": left,
        "max_attempts": MAX_ATTEMPTS,
        "can_submit": left > 0,
        "has_active_attempt": bool(token or has_active),
        "state": attempt_state(used, token, has_active),
    }


def daily_status(challenge_key: str, attempts_used: Any, has_active: bool = False) -> DailyStatus:
    return DailyStatus(**status_fields(challenge_key, attempts_used, has_active=has_active))


class DailyAttemptCoordinator:
    """Requests attempt transitions for one device against the Registry."""

    def __init__(self, registry: RegistryClient, device_id: str):
        self.registry = registry
        self.device_id = device_id

    def status(self, challenge_key: str) -> DailyStatus:
        key = ck.normalize_challenge_key(challenge_key)
        row = self.registry.fetch_daily_attempt_row(self.device_id, key)
        if row is None:
            return daily_status(key, 0)
        return daily_status(
            key,
            row.get("attempts_used"),
            has_active=row.get("active_attempt_started_at") is not None,
        )

    def start(self, challenge_key: str, player_name: Optional[str] = None) -> DailyAttemptStartResult:
        key = ck.normalize_challenge_key(challenge_key)
        data = self.registry.start_daily_attempt(self.device_id, key, player_name)
        token = normalize_token(data.get("attemptToken"))
        result = DailyAttemptStartResult(
            **status_fields(key, data.get("attemptsUsed"), token, data.get("hasActiveAttempt") is True),
            accepted=data.get("accepted") is True,
            resumed=data.get("resumed") is True,
            attempt_token=token,
        )
        logger.info("daily_attempt_started", extra={
            "challenge_key": key,
            "accepted": result.accepted,
            "attempts_used": result.attempts_used,
        })
        return result

    def submit(
        self,
        challenge_key: str,
        attempt_token: Optional[str],
        entry: Union[ScoreEntry, dict],
        replay_proof: Union[DailyReplayProof, dict],
    ) -> DailySubmitResult:
        # every check runs before the network call
        key = ck.normalize_challenge_key(challenge_key)
        token = require_token(attempt_token)
        clean_entry = sanitize_entry(entry)
        proof = validate_replay_proof(replay_proof)
        check_entry_matches_proof(clean_entry, proof)

        data = self.registry.verify_score(
            DAILY_MODE, key, self.device_id, clean_entry, proof, attempt_token=token,
        )
        result = DailySubmitResult(
            **status_fields(key, data.get("attemptsUsed"), has_active=data.get("hasActiveAttempt") is True),
            accepted=data.get("accepted") is True,
            improved=data.get("improved") is True,
        )
        logger.info("daily_score_submitted", extra={
            "challenge_key": key,
            "accepted": result.accepted,
            "attempts_used": result.attempts_used,
        })
        return result

    def forfeit(self, challenge_key: str, attempt_token: Optional[str]) -> DailyForfeitResult:
        key = ck.normalize_challenge_key(challenge_key)
        token = require_token(attempt_token)
        data = self.registry.forfeit_daily_attempt(self.device_id, key, token)
        result = DailyForfeitResult(
            **status_fields(key, data.get("attemptsUsed"), has_active=data.get("hasActiveAttempt") is True),
            accepted=data.get("accepted") is True,
        )
        logger.info("daily_attempt_forfeited", extra={
            "challenge_key": key,
            "accepted": result.accepted,
            "attempts_used": result.attempts_used,
        })
        return result
