"""
Error taxonomy for the scoreboard sync layer.

Validation errors are raised before any network call and are never retried.
Transport errors wrap any failed round trip to the Registry, including the
structured reason extracted from its error body.
"""

from typing import Optional


class ScoreSyncError(Exception):
    code = "SCORESYNC_ERROR"

    def __init__(self, message: str = "", code: Optional[str] = None):
        super().__init__(message or self.__class__.__name__)
        if code:
            self.code = code

    @property
    def detail(self) -> str:
        return str(self)


class ValidationError(ScoreSyncError):
    code = "VALIDATION_ERROR"


class InvalidChallengeKey(ValidationError):
    code = "INVALID_CHALLENGE_KEY"


class EmptyUserName(ValidationError):
    code = "EMPTY_USER_NAME"


class MissingAttemptToken(ValidationError):
    code = "MISSING_ATTEMPT_TOKEN"


class InvalidReplayProof(ValidationError):
    code = "INVALID_REPLAY_PROOF"

    def __init__(self, reason: str, code: Optional[str] = None):
        super().__init__(reason, code=code)
        self.reason = reason


class NonMonotonicReplay(InvalidReplayProof):
    code = "NON_MONOTONIC_REPLAY"


class InvalidMoveToken(InvalidReplayProof):
    code = "INVALID_MOVE_TOKEN"


class ReplayExceedsFinalTime(InvalidReplayProof):
    code = "REPLAY_EXCEEDS_FINAL_TIME"


class ConfigurationError(ScoreSyncError):
    code = "REGISTRY_NOT_CONFIGURED"


class TransportError(ScoreSyncError):
    """A Registry round trip failed (network, timeout or non-2xx response)."""

    code = "TRANSPORT_ERROR"

    def __init__(
        self,
        message: str,
        status: Optional[int] = None,
        code: Optional[str] = None,
        detail: Optional[str] = None,
        hint: Optional[str] = None,
    ):
        super().__init__(message, code=code)
        self.status = status
        self._detail = detail
        self.hint = hint

    @property
    def detail(self) -> str:
        return self._detail or str(self)


class CorruptLocalState(ScoreSyncError):
    code = "CORRUPT_LOCAL_STATE"
