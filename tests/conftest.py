import json
import sys
import uuid
from pathlib import Path

import httpx
import pytest

# Ensure project root is on sys.path so tests can import the `scoresync` package
ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))

from scoresync.registry import RegistryClient, RegistryConfig  # noqa: E402
from scoresync.storage import LocalStore  # noqa: E402


class FakeRegistry:
    """In-memory stand-in for the Registry's REST, RPC and verify endpoints."""

    def __init__(self):
        self.rows = []
        self.requests = []
        self.fail_with = None  # (status, body) returned for every request
        self.network_error = False
        self.today = None  # when set, daily calls for other keys fail like the real one

    # helpers

    def add_row(self, **fields):
        row = {
            "player_name": "someone",
            "client_uuid": str(uuid.uuid4()),
            "score": 0,
            "level": 0,
            "skill_usage": [],
            "mode": "classic",
            "challenge_key": "classic",
            "attempts_used": 0,
            "daily_has_submission": False,
            "active_attempt_token": None,
            "active_attempt_started_at": None,
            "created_at": "2024-01-01T00:00:00Z",
        }
        row.update(fields)
        self.rows.append(row)
        return row

    def _find(self, mode, key, client_uuid):
        for row in self.rows:
            if row["mode"] == mode and row["challenge_key"] == key and row["client_uuid"] == client_uuid:
                return row
        return None

    @staticmethod
    def _matches(row, params):
        for k, v in params.multi_items():
            if k in ("select", "order", "limit"):
                continue
            actual = row.get(k)
            if isinstance(actual, bool):
                actual = "true" if actual else "false"
            if str(actual) != v[len("eq."):]:
                return False
        return True

    def _counters(self, key, row, **extra):
        used = row["attempts_used"] if row else 0
        left = max(0, 3 - used)
        body = {
            "challengeKey": key,
            "attemptsUsed": used,
            "attemptsLeft": left,
            "maxAttempts": 3,
            "canSubmit": left > 0,
            "hasActiveAttempt": bool(row and row["active_attempt_token"]),
        }
        body.update(extra)
        return body

    # endpoints

    def _select(self, params):
        rows = [r for r in self.rows if self._matches(r, params)]
        rows.sort(key=lambda r: (r["score"], r["level"], r["created_at"]), reverse=True)
        if "limit" in params:
            rows = rows[: int(params["limit"])]
        columns = params.get("select", "").split(",")
        return [{c: r.get(c) for c in columns if c} for r in rows]

    def _start(self, body):
        key, client = body["p_challenge_key"], body["p_client_uuid"]
        if self.today and key != self.today:
            return httpx.Response(400, json={"code": "P0001", "message": "CHALLENGE_KEY_MISMATCH", "hint": None})
        row = self._find("daily", key, client)
        if row is None:
            row = self.add_row(
                player_name=body.get("p_player_name") or "Pending",
                client_uuid=client, mode="daily", challenge_key=key,
            )
        if row["active_attempt_token"]:
            return httpx.Response(200, json=self._counters(
                key, row, accepted=True, resumed=True, attemptToken=row["active_attempt_token"],
            ))
        if row["attempts_used"] >= 3:
            return httpx.Response(200, json=self._counters(key, row, accepted=False, resumed=False, attemptToken=None))
        row["attempts_used"] += 1
        row["active_attempt_token"] = uuid.uuid4().hex
        row["active_attempt_started_at"] = "2024-01-01T00:00:00Z"
        return httpx.Response(200, json=self._counters(
            key, row, accepted=True, resumed=False, attemptToken=row["active_attempt_token"],
        ))

    def _forfeit(self, body):
        key, client, token = body["p_challenge_key"], body["p_client_uuid"], body["p_attempt_token"]
        row = self._find("daily", key, client)
        if row is None or row["active_attempt_token"] != token:
            return httpx.Response(200, json=self._counters(key, row, accepted=False))
        row["active_attempt_token"] = None
        row["active_attempt_started_at"] = None
        return httpx.Response(200, json=self._counters(key, row, accepted=True))

    def _verify(self, body):
        entry = body["entry"]
        client = body["clientUuid"]
        if body["mode"] == "classic":
            row = self._find("classic", "classic", client)
            if row is None:
                self.add_row(client_uuid=client, player_name=entry["user"], score=entry["score"], level=entry["level"])
                return httpx.Response(200, json={"accepted": True, "improved": True})
            better = (entry["score"], entry["level"]) > (row["score"], row["level"])
            if better:
                row.update(score=entry["score"], level=entry["level"], player_name=entry["user"])
            return httpx.Response(200, json={"accepted": True, "improved": better})

        key = body["challengeKey"]
        row = self._find("daily", key, client)
        if row is None or not row["active_attempt_token"] or row["active_attempt_token"] != body["attemptToken"]:
            return httpx.Response(200, json=self._counters(key, row, accepted=False, improved=False))
        improved = (not row["daily_has_submission"]) or (entry["score"], entry["level"]) > (row["score"], row["level"])
        row["active_attempt_token"] = None
        row["active_attempt_started_at"] = None
        row["daily_has_submission"] = True
        if improved:
            row.update(score=entry["score"], level=entry["level"], player_name=entry["user"], created_at=entry["date"])
        return httpx.Response(200, json=self._counters(key, row, accepted=True, improved=improved))

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.network_error:
            raise httpx.ConnectError("connection refused", request=request)
        if self.fail_with is not None:
            status, body = self.fail_with
            return httpx.Response(status, json=body)

        path = request.url.path
        body = json.loads(request.content) if request.content else None
        if path == "/rest/v1/scores":
            if request.method == "GET":
                return httpx.Response(200, json=self._select(request.url.params))
            if request.method == "POST":
                self.add_row(**body)
                return httpx.Response(201)
            if request.method == "PATCH":
                for row in self.rows:
                    if self._matches(row, request.url.params):
                        row.update(body)
                return httpx.Response(204)
        if path == "/rest/v1/rpc/start_daily_attempt":
            return self._start(body)
        if path == "/rest/v1/rpc/forfeit_daily_attempt":
            return self._forfeit(body)
        if path == "/functions/v1/verify-score":
            return self._verify(body)
        return httpx.Response(404, json={"error": "NOT_FOUND"})


@pytest.fixture
def store(tmp_path):
    return LocalStore(tmp_path / "data")


@pytest.fixture
def fake_registry():
    return FakeRegistry()


@pytest.fixture
def registry(fake_registry):
    config = RegistryConfig(url="https://registry.test", api_key="anon-key")
    return RegistryClient(config, transport=httpx.MockTransport(fake_registry.handler))


def make_proof(score=120, level=3, final_time=5000, inputs=None):
    return {
        "version": 1,
        "difficulty": 2,
        "seed": 12345,
        "finalTime": final_time,
        "finalScore": score,
        "finalLevel": level,
        "inputs": inputs if inputs is not None else [
            {"time": 100, "move": "left"},
            {"time": 250, "move": "up"},
            {"time": 4000, "move": "right"},
        ],
    }
