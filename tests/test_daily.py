import pytest

from scoresync.daily import DailyAttemptCoordinator, daily_status, status_fields
from scoresync.errors import (
    InvalidChallengeKey,
    InvalidReplayProof,
    MissingAttemptToken,
    NonMonotonicReplay,
    TransportError,
)
from scoresync.models import ActiveAttempt, ExhaustedAttempt, IdleAttempt

from conftest import make_proof

DEVICE = "5f0c6a1e-1111-4222-8333-944455556666"
KEY = "2024-06-01"
ENTRY = {"user": "ann", "score": 120, "level": 3, "date": "2024-06-01T10:00:00Z"}


@pytest.fixture
def coordinator(registry):
    return DailyAttemptCoordinator(registry, DEVICE)


def test_counters_from_attempts_used():
    two = daily_status(KEY, 2)
    assert two.attempts_left == 1 and two.can_submit is True
    assert isinstance(two.state, IdleAttempt)
    three = daily_status(KEY, 3)
    assert three.attempts_left == 0 and three.can_submit is False
    assert isinstance(three.state, ExhaustedAttempt)


def test_registry_counters_are_clamped_and_recomputed():
    # a Registry (or tampered response) claiming more attempts cannot reopen submission
    fields = status_fields(KEY, 7)
    assert fields["attempts_used"] == 3 and fields["can_submit"] is False
    assert status_fields(KEY, -4)["attempts_left"] == 3
    assert status_fields(KEY, "junk")["attempts_used"] == 0


def test_start_issues_token(coordinator, fake_registry):
    result = coordinator.start(KEY, player_name="ann")
    assert result.accepted and not result.resumed
    assert result.attempt_token
    assert result.attempts_used == 1 and result.attempts_left == 2
    assert isinstance(result.state, ActiveAttempt)
    assert result.state.token == result.attempt_token


def test_second_start_resumes_same_token(coordinator):
    first = coordinator.start(KEY)
    second = coordinator.start(KEY)
    assert second.accepted and second.resumed
    assert second.attempt_token == first.attempt_token
    assert second.attempts_used == 1


def test_start_when_exhausted_is_not_accepted(coordinator, fake_registry):
    fake_registry.add_row(client_uuid=DEVICE, mode="daily", challenge_key=KEY, attempts_used=3)
    result = coordinator.start(KEY)
    assert not result.accepted
    assert result.attempt_token is None
    assert result.can_submit is False
    assert isinstance(result.state, ExhaustedAttempt)


def test_start_blank_token_treated_as_absent(registry, fake_registry, coordinator, monkeypatch):
    monkeypatch.setattr(registry, "start_daily_attempt", lambda *a: {
        "accepted": True, "resumed": False, "attemptToken": "   ", "attemptsUsed": 1,
    })
    result = coordinator.start(KEY)
    assert result.attempt_token is None
    assert isinstance(result.state, IdleAttempt)


def test_submit_round_trip(coordinator, fake_registry):
    token = coordinator.start(KEY).attempt_token
    result = coordinator.submit(KEY, f"  {token} ", ENTRY, make_proof())
    assert result.accepted and result.improved
    assert result.attempts_used == 1
    assert result.has_active_attempt is False
    sent = fake_registry.requests[-1]
    assert sent.url.path == "/functions/v1/verify-score"


def test_submit_with_stale_token_is_not_accepted(coordinator):
    coordinator.start(KEY)
    result = coordinator.submit(KEY, "stale", ENTRY, make_proof())
    assert not result.accepted
    assert result.has_active_attempt is True


@pytest.mark.parametrize("token", [None, "", "   "])
def test_submit_requires_token_before_network(coordinator, fake_registry, token):
    with pytest.raises(MissingAttemptToken):
        coordinator.submit(KEY, token, ENTRY, make_proof())
    assert fake_registry.requests == []


def test_submit_validates_replay_before_network(coordinator, fake_registry):
    bad = make_proof(inputs=[{"time": 5, "move": "up"}, {"time": 3, "move": "up"}])
    with pytest.raises(NonMonotonicReplay):
        coordinator.submit(KEY, "tok", ENTRY, bad)
    with pytest.raises(InvalidReplayProof):
        coordinator.submit(KEY, "tok", {**ENTRY, "score": 999}, make_proof())
    with pytest.raises(InvalidChallengeKey):
        coordinator.submit("2024-13-01", "tok", ENTRY, make_proof())
    assert fake_registry.requests == []


def test_forfeit_releases_attempt_without_refund(coordinator):
    token = coordinator.start(KEY).attempt_token
    result = coordinator.forfeit(KEY, token)
    assert result.accepted
    assert result.attempts_used == 1
    assert isinstance(result.state, IdleAttempt)
    again = coordinator.start(KEY)
    assert again.accepted and not again.resumed
    assert again.attempts_used == 2


def test_forfeit_requires_token(coordinator):
    with pytest.raises(MissingAttemptToken):
        coordinator.forfeit(KEY, " ")


def test_budget_exhausts_after_three_attempts(coordinator):
    for _ in range(3):
        token = coordinator.start(KEY).attempt_token
        coordinator.forfeit(KEY, token)
    status = coordinator.status(KEY)
    assert status.attempts_used == 3 and status.can_submit is False
    assert not coordinator.start(KEY).accepted


def test_status_reads_registry_row(coordinator):
    assert coordinator.status(KEY).attempts_used == 0
    coordinator.start(KEY)
    status = coordinator.status(KEY)
    assert status.attempts_used == 1
    assert status.has_active_attempt is True
    assert isinstance(status.state, ActiveAttempt) and status.state.token is None


def test_registry_rejection_is_propagated(coordinator, fake_registry):
    fake_registry.today = "2024-06-02"
    with pytest.raises(TransportError) as excinfo:
        coordinator.start(KEY)
    assert excinfo.value.code == "CHALLENGE_KEY_MISMATCH"
