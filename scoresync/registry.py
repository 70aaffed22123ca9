"""
HTTP client for the Registry, the remote authority for scores, daily attempt
counters and tokens, and final replay verification.

Every call is one bounded round trip (8 second timeout) with no retry. Any
network failure, timeout, non-2xx status or undecodable body is raised as a
TransportError carrying whatever reason the Registry put in its error body.
"""

from typing import Any, Dict, List, Optional, Tuple

import httpx
from pydantic import BaseModel

from .errors import TransportError
from .logging_utils import get_logger
from .models import (
    CLASSIC_CHALLENGE_KEY,
    CLASSIC_MODE,
    DAILY_MODE,
    DailyReplayProof,
    ScoreEntry,
    SkillUsage,
)

logger = get_logger("scoresync.registry")

HTTP_TIMEOUT_SECONDS = 8.0
DEFAULT_TOP_LIMIT = 10
MAX_TOP_LIMIT = 100

SCORES_PATH = "/rest/v1/scores"
RPC_PATH = "/rest/v1/rpc"
VERIFY_SCORE_PATH = "/functions/v1/verify-score"
SCORE_COLUMNS = "player_name,score,level,created_at,skill_usage,client_uuid"
SCORE_ORDER = "score.desc,level.desc,created_at.desc"


class RegistryConfig(BaseModel):
    url: str
    api_key: str


def normalize_registry_config(url: Optional[str], api_key: Optional[str]) -> Optional[RegistryConfig]:
    """Trimmed config, or None when either value is missing or blank."""
    url = (url or "").strip()
    api_key = (api_key or "").strip()
    if not url or not api_key:
        return None
    return RegistryConfig(url=url.rstrip("/"), api_key=api_key)


def normalize_limit(limit: Optional[int]) -> int:
    if limit is None:
        return DEFAULT_TOP_LIMIT
    return max(1, min(MAX_TOP_LIMIT, int(limit)))


def row_to_entry(row: Dict[str, Any]) -> Tuple[ScoreEntry, Optional[str]]:
    """Map a Registry score row to (raw entry, owner id)."""
    skill_usage = row.get("skill_usage") or []
    return (
        ScoreEntry(
            user=str(row.get("player_name") or ""),
            score=int(row.get("score") or 0),
            level=int(row.get("level") or 0),
            date=str(row.get("created_at") or ""),
            skill_usage=[SkillUsage.model_validate(u) for u in skill_usage if isinstance(u, dict)],
        ),
        row.get("client_uuid"),
    )


def _entry_payload(entry: ScoreEntry) -> Dict[str, Any]:
    body = entry.to_json_dict()
    body.pop("isMe", None)
    return body


def _failure_from_response(what: str, response: httpx.Response) -> TransportError:
    code = detail = hint = None
    try:
        body = response.json()
    except ValueError:
        body = None
    if isinstance(body, dict):
        code = body.get("error") or body.get("message")
        detail = body.get("detail") or body.get("reason") or body.get("message")
        hint = body.get("hint")
    else:
        detail = response.text[:500] or None
    return TransportError(
        f"{what} failed with {response.status_code}: {code or detail or 'no body'}",
        status=response.status_code,
        code=code or "REGISTRY_HTTP_ERROR",
        detail=detail,
        hint=hint,
    )


class RegistryClient:
    def __init__(
        self,
        config: RegistryConfig,
        transport: Optional[httpx.BaseTransport] = None,
        timeout: float = HTTP_TIMEOUT_SECONDS,
    ):
        self.config = config
        self.transport = transport
        self.timeout = timeout

    def _client(self) -> httpx.Client:
        return httpx.Client(
            base_url=self.config.url,
            headers={
                "apikey": self.config.api_key,
                "Authorization": f"Bearer {self.config.api_key}",
            },
            timeout=self.timeout,
            transport=self.transport,
        )

    def _request(
        self,
        what: str,
        method: str,
        path: str,
        params: Optional[Dict[str, str]] = None,
        json: Any = None,
        prefer: Optional[str] = None,
    ) -> Any:
        headers = {"Prefer": prefer} if prefer else None
        try:
            with self._client() as client:
                response = client.request(method, path, params=params, json=json, headers=headers)
        except httpx.InvalidURL as e:
            raise TransportError(f"{what} failed: {e}", code="INVALID_REGISTRY_URL")
        except httpx.TimeoutException as e:
            raise TransportError(f"{what} timed out: {e}", code="TIMEOUT")
        except httpx.HTTPError as e:
            raise TransportError(f"{what} failed: {e}", code="NETWORK_ERROR")

        if not response.is_success:
            raise _failure_from_response(what, response)
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError:
            raise TransportError(
                f"failed to decode {what} response",
                status=response.status_code,
                code="INVALID_RESPONSE",
            )

    def _rows(self, what: str, params: Dict[str, str]) -> List[Dict[str, Any]]:
        data = self._request(what, "GET", SCORES_PATH, params=params)
        if not isinstance(data, list):
            raise TransportError(f"{what} returned a non-list body", code="INVALID_RESPONSE")
        return [row for row in data if isinstance(row, dict)]

    # score rows

    def fetch_scores(self, mode: str, challenge_key: str, limit: int = DEFAULT_TOP_LIMIT) -> List[Dict[str, Any]]:
        params = {
            "select": SCORE_COLUMNS,
            "mode": f"eq.{mode}",
            "challenge_key": f"eq.{challenge_key}",
            "order": SCORE_ORDER,
            "limit": str(normalize_limit(limit)),
        }
        if mode == DAILY_MODE:
            params["daily_has_submission"] = "eq.true"
        return self._rows("fetch scores", params)

    def fetch_device_score(self, client_uuid: str) -> Optional[ScoreEntry]:
        rows = self._rows("select score by device", {
            "select": SCORE_COLUMNS,
            "mode": f"eq.{CLASSIC_MODE}",
            "challenge_key": f"eq.{CLASSIC_CHALLENGE_KEY}",
            "client_uuid": f"eq.{client_uuid}",
            "limit": "1",
        })
        if not rows:
            return None
        entry, _ = row_to_entry(rows[0])
        return entry

    def _score_payload(self, entry: ScoreEntry, client_uuid: str) -> Dict[str, Any]:
        return {
            "player_name": entry.user,
            "score": entry.score,
            "level": entry.level,
            "created_at": entry.date,
            "client_uuid": client_uuid,
            "skill_usage": [u.to_json_dict() for u in entry.skill_usage],
        }

    def insert_score(self, entry: ScoreEntry, client_uuid: str) -> None:
        self._request(
            "insert score", "POST", SCORES_PATH,
            json=self._score_payload(entry, client_uuid),
            prefer="return=minimal",
        )

    def update_score(self, entry: ScoreEntry, client_uuid: str) -> None:
        self._request(
            "update score", "PATCH", SCORES_PATH,
            params={
                "mode": f"eq.{CLASSIC_MODE}",
                "client_uuid": f"eq.{client_uuid}",
            },
            json=self._score_payload(entry, client_uuid),
            prefer="return=minimal",
        )

    def upsert_classic_score(self, entry: ScoreEntry, client_uuid: str) -> bool:
        """Insert, or update only when strictly better. Returns True if written."""
        existing = self.fetch_device_score(client_uuid)
        if existing is None:
            self.insert_score(entry, client_uuid)
            return True
        if not is_better_score(entry, existing):
            return False
        self.update_score(entry, client_uuid)
        return True

    def fetch_daily_attempt_row(self, client_uuid: str, challenge_key: str) -> Optional[Dict[str, Any]]:
        rows = self._rows("select daily attempt", {
            "select": "attempts_used,active_attempt_started_at",
            "mode": f"eq.{DAILY_MODE}",
            "challenge_key": f"eq.{challenge_key}",
            "client_uuid": f"eq.{client_uuid}",
            "limit": "1",
        })
        return rows[0] if rows else None

    def fetch_completed_challenge_keys(self, client_uuid: str) -> List[str]:
        rows = self._rows("select completed daily keys", {
            "select": "challenge_key",
            "mode": f"eq.{DAILY_MODE}",
            "client_uuid": f"eq.{client_uuid}",
            "daily_has_submission": "eq.true",
        })
        return [row["challenge_key"] for row in rows if isinstance(row.get("challenge_key"), str)]

    # remote procedures

    def _rpc(self, name: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        data = self._request(name, "POST", f"{RPC_PATH}/{name}", json=payload)
        if not isinstance(data, dict):
            raise TransportError(f"{name} returned a non-object body", code="INVALID_RESPONSE")
        return data

    def start_daily_attempt(self, client_uuid: str, challenge_key: str, player_name: Optional[str] = None) -> Dict[str, Any]:
        return self._rpc("start_daily_attempt", {
            "p_client_uuid": client_uuid,
            "p_challenge_key": challenge_key,
            "p_player_name": player_name,
        })

    def forfeit_daily_attempt(self, client_uuid: str, challenge_key: str, attempt_token: str) -> Dict[str, Any]:
        return self._rpc("forfeit_daily_attempt", {
            "p_client_uuid": client_uuid,
            "p_challenge_key": challenge_key,
            "p_attempt_token": attempt_token,
        })

    def verify_score(
        self,
        mode: str,
        challenge_key: str,
        client_uuid: str,
        entry: ScoreEntry,
        replay_proof: DailyReplayProof,
        attempt_token: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Submit a score with its replay proof for server-side verification."""
        data = self._request("verify score", "POST", VERIFY_SCORE_PATH, json={
            "mode": mode,
            "challengeKey": challenge_key,
            "attemptToken": attempt_token,
            "clientUuid": client_uuid,
            "entry": _entry_payload(entry),
            "replayProof": replay_proof.to_json_dict(),
        })
        return data if isinstance(data, dict) else {}


def is_better_score(incoming: ScoreEntry, existing: ScoreEntry) -> bool:
    if incoming.score != existing.score:
        return incoming.score > existing.score
    return incoming.level > existing.level
