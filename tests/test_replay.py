import pytest

from scoresync.errors import (
    InvalidMoveToken,
    InvalidReplayProof,
    NonMonotonicReplay,
    ReplayExceedsFinalTime,
)
from scoresync.models import ScoreEntry
from scoresync.replay import MAX_REPLAY_INPUTS, check_entry_matches_proof, validate_replay_proof

from conftest import make_proof


def test_valid_proof_is_returned_sanitized():
    proof = validate_replay_proof(make_proof())
    assert proof.version == 1
    assert proof.final_score == 120
    assert [e.move for e in proof.inputs] == ["left", "up", "right"]


def test_version_must_be_one():
    raw = make_proof()
    raw["version"] = 2
    with pytest.raises(InvalidReplayProof):
        validate_replay_proof(raw)


@pytest.mark.parametrize("difficulty", [0, 4, -1])
def test_difficulty_range(difficulty):
    raw = make_proof()
    raw["difficulty"] = difficulty
    with pytest.raises(InvalidReplayProof):
        validate_replay_proof(raw)


def test_final_time_upper_bound():
    ok = make_proof(final_time=2_000_000)
    assert validate_replay_proof(ok).final_time == 2_000_000
    with pytest.raises(InvalidReplayProof):
        validate_replay_proof(make_proof(final_time=2_000_001))


def test_negative_finals_rejected():
    raw = make_proof()
    raw["finalScore"] = -1
    with pytest.raises(InvalidReplayProof):
        validate_replay_proof(raw)


def test_non_monotonic_inputs_fail():
    raw = make_proof(inputs=[{"time": 5, "move": "left"}, {"time": 3, "move": "up"}])
    with pytest.raises(NonMonotonicReplay):
        validate_replay_proof(raw)


def test_negative_time_fails():
    raw = make_proof(inputs=[{"time": -1, "move": "left"}])
    with pytest.raises(NonMonotonicReplay):
        validate_replay_proof(raw)


def test_equal_times_are_allowed():
    raw = make_proof(inputs=[{"time": 5, "move": "left"}, {"time": 5, "move": "down"}])
    assert len(validate_replay_proof(raw).inputs) == 2


def test_move_token_is_lowercased():
    raw = make_proof(inputs=[{"time": 1, "move": "LEFT"}])
    assert validate_replay_proof(raw).inputs[0].move == "left"


def test_unknown_move_fails():
    raw = make_proof(inputs=[{"time": 1, "move": "jump"}])
    with pytest.raises(InvalidMoveToken):
        validate_replay_proof(raw)


def test_input_after_final_time_fails():
    raw = make_proof(final_time=100, inputs=[{"time": 50, "move": "up"}, {"time": 101, "move": "up"}])
    with pytest.raises(ReplayExceedsFinalTime):
        validate_replay_proof(raw)


def test_excess_inputs_are_dropped_silently():
    inputs = [{"time": i, "move": "left"} for i in range(MAX_REPLAY_INPUTS)]
    # beyond the cap: would be non-monotonic and past final time, but never examined
    inputs += [{"time": 0, "move": "nope"}, {"time": 10 ** 9, "move": "up"}]
    proof = validate_replay_proof(make_proof(final_time=MAX_REPLAY_INPUTS, inputs=inputs))
    assert len(proof.inputs) == MAX_REPLAY_INPUTS


def test_malformed_events_past_cap_are_not_parsed():
    inputs = [{"time": i, "move": "left"} for i in range(MAX_REPLAY_INPUTS)]
    inputs += [{"time": "soon"}, "garbage"]
    proof = validate_replay_proof(make_proof(final_time=MAX_REPLAY_INPUTS, inputs=inputs))
    assert len(proof.inputs) == MAX_REPLAY_INPUTS
    assert proof.inputs[-1].time == MAX_REPLAY_INPUTS - 1


def test_malformed_event_within_cap_is_rejected():
    with pytest.raises(InvalidReplayProof):
        validate_replay_proof(make_proof(inputs=[{"time": "soon"}]))


def test_seed_wraps_to_uint32():
    raw = make_proof()
    raw["seed"] = -1
    assert validate_replay_proof(raw).seed == 2 ** 32 - 1


def test_malformed_shape_is_invalid_proof():
    with pytest.raises(InvalidReplayProof):
        validate_replay_proof({"version": 1})
    with pytest.raises(InvalidReplayProof):
        validate_replay_proof("not a proof")


def test_entry_must_match_declared_outcome():
    proof = validate_replay_proof(make_proof(score=120, level=3))
    check_entry_matches_proof(ScoreEntry(user="a", score=120, level=3), proof)
    with pytest.raises(InvalidReplayProof) as excinfo:
        check_entry_matches_proof(ScoreEntry(user="a", score=121, level=3), proof)
    assert excinfo.value.code == "ENTRY_REPLAY_MISMATCH"
