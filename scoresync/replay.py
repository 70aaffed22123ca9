"""
Local pre-validation of daily replay proofs.

This is a necessary but not sufficient check: the Registry re-simulates the
replay and makes the final accept/reject decision.
"""

from typing import Any, List, Optional, Union

from pydantic import ValidationError as PydanticValidationError

from .errors import (
    InvalidMoveToken,
    InvalidReplayProof,
    NonMonotonicReplay,
    ReplayExceedsFinalTime,
)
from .models import MAX_REPLAY_INPUTS, DailyReplayProof, ReplayInputEvent, ScoreEntry

REPLAY_VERSION = 1
VALID_DIFFICULTIES = (1, 2, 3)
MAX_FINAL_TIME = 2_000_000
REPLAY_MOVES = ("left", "right", "up", "down")
UINT32_MODULUS = 2 ** 32


def _coerce_proof(raw: Union[DailyReplayProof, dict, Any]) -> DailyReplayProof:
    if isinstance(raw, DailyReplayProof):
        return raw
    if not isinstance(raw, dict):
        raise InvalidReplayProof("replay proof must be an object")
    try:
        return DailyReplayProof.model_validate(raw)
    except PydanticValidationError as e:
        raise InvalidReplayProof(f"malformed replay proof: {e.error_count()} invalid field(s)")


def _sanitize_inputs(inputs: List[ReplayInputEvent], final_time: int) -> List[ReplayInputEvent]:
    retained = inputs[:MAX_REPLAY_INPUTS]
    sanitized: List[ReplayInputEvent] = []
    last_time = 0
    for index, event in enumerate(retained):
        if event.time < 0 or event.time < last_time:
            raise NonMonotonicReplay(
                f"input {index} at time {event.time} goes backwards (previous {last_time})"
            )
        move = event.move.strip().lower() if isinstance(event.move, str) else ""
        if move not in REPLAY_MOVES:
            raise InvalidMoveToken(f"input {index} has invalid move {event.move!r}")
        sanitized.append(ReplayInputEvent(time=event.time, move=move))
        last_time = event.time
    if sanitized and sanitized[-1].time > final_time:
        raise ReplayExceedsFinalTime(
            f"last input at {sanitized[-1].time} is after final time {final_time}"
        )
    return sanitized


def validate_replay_proof(raw: Union[DailyReplayProof, dict]) -> DailyReplayProof:
    """Return a sanitized copy of `raw` or raise InvalidReplayProof.

    Rules, in order: version, difficulty, non-negative finals, final time cap,
    input truncation (silent), per-input monotonic time and move token, and
    finally the last input must not be after the declared final time.
    """
    proof = _coerce_proof(raw)
    if proof.version != REPLAY_VERSION:
        raise InvalidReplayProof(f"unsupported replay version {proof.version}")
    if proof.difficulty not in VALID_DIFFICULTIES:
        raise InvalidReplayProof(f"invalid difficulty {proof.difficulty}")
    if proof.final_time < 0 or proof.final_score < 0 or proof.final_level < 0:
        raise InvalidReplayProof("final time, score and level must be non-negative")
    if proof.final_time > MAX_FINAL_TIME:
        raise InvalidReplayProof(f"final time {proof.final_time} exceeds {MAX_FINAL_TIME}")

    return DailyReplayProof(
        version=REPLAY_VERSION,
        difficulty=proof.difficulty,
        seed=proof.seed % UINT32_MODULUS,
        final_time=proof.final_time,
        final_score=proof.final_score,
        final_level=proof.final_level,
        inputs=_sanitize_inputs(proof.inputs, proof.final_time),
    )


def check_entry_matches_proof(entry: ScoreEntry, proof: Optional[DailyReplayProof]) -> None:
    """The declared outcome of a proof must be the score being submitted."""
    if proof is None:
        return
    if entry.score != proof.final_score or entry.level != proof.final_level:
        raise InvalidReplayProof(
            f"entry {entry.score}/{entry.level} does not match replay "
            f"{proof.final_score}/{proof.final_level}",
            code="ENTRY_REPLAY_MISMATCH",
        )
