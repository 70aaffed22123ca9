import logging
import os
import time
import uuid
from typing import Optional

from fastapi import Depends, FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel
from starlette.middleware.base import BaseHTTPMiddleware

from . import scoreboard
from .deps import get_registry, get_store
from .errors import ConfigurationError, ScoreSyncError, TransportError, ValidationError
from .logging_utils import get_logger, request_id_ctx, setup_logging
from .models import DailyReplayProof, ScoreEntry
from .registry import RegistryClient
from .storage import LocalStore

setup_logging(logging.INFO)
logger = get_logger("scoresync")
app = FastAPI(title="Scoreboard Sync")


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        rid = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        token = request_id_ctx.set(rid)
        start = time.time()
        client = request.client.host if request.client else "-"
        response = None
        try:
            response = await call_next(request)
            response.headers["X-Request-ID"] = rid
            return response
        except Exception:
            logger.exception(
                "request_error",
                extra={"path": str(request.url), "method": request.method},
            )
            raise
        finally:
            logger.info(
                "request",
                extra={
                    "method": request.method,
                    "path": request.url.path,
                    "status": getattr(response, "status_code", 500),
                    "duration_ms": int((time.time() - start) * 1000),
                    "client": client,
                },
            )
            request_id_ctx.reset(token)


app.add_middleware(RequestLoggingMiddleware)

_DEFAULT_ORIGINS = [
    "http://localhost:1420",      # Tauri dev server
    "http://localhost:5173",      # Vite dev server
    "http://127.0.0.1:5173",
    "tauri://localhost",
]

app.add_middleware(
    CORSMiddleware,
    allow_origins=_DEFAULT_ORIGINS + [o.strip() for o in os.getenv("CORS_ORIGINS", "").split(",") if o.strip()],
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=[
        "Accept",
        "Content-Type",
        "Authorization",
        "X-Request-ID",
        "X-Registry-Url",
        "X-Registry-Key",
    ],
)


def _error_body(exc: ScoreSyncError) -> dict:
    body = {"error": exc.code, "detail": exc.detail}
    hint = getattr(exc, "hint", None)
    if hint:
        body["hint"] = hint
    return body


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    logger.warning("validation_error", extra={"method": request.method, "path": request.url.path, "error": exc.errors()})
    return JSONResponse(
        status_code=422,
        content={"detail": jsonable_encoder(exc.errors()), "message": "Input validation failed"},
    )


@app.exception_handler(ValidationError)
async def scoresync_validation_handler(request: Request, exc: ValidationError):
    return JSONResponse(status_code=400, content=_error_body(exc))


@app.exception_handler(ConfigurationError)
async def configuration_error_handler(request: Request, exc: ConfigurationError):
    return JSONResponse(status_code=503, content=_error_body(exc))


@app.exception_handler(TransportError)
async def transport_error_handler(request: Request, exc: TransportError):
    logger.warning("registry_error", extra={"path": request.url.path, "reason": exc.code, "hint": exc.hint, "error": str(exc)})
    return JSONResponse(status_code=502, content=_error_body(exc))


class RequestBody(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class SubmitScoreRequest(RequestBody):
    entry: ScoreEntry
    replay_proof: Optional[DailyReplayProof] = None


class StartAttemptRequest(RequestBody):
    player_name: Optional[str] = None


class SubmitDailyRequest(RequestBody):
    attempt_token: Optional[str] = None
    entry: ScoreEntry
    replay_proof: DailyReplayProof


class ForfeitRequest(RequestBody):
    attempt_token: Optional[str] = None


@app.get("/health", include_in_schema=False)
def health():
    return JSONResponse({"status": "ok"})


@app.get("/api/cache/stats", include_in_schema=False)
def cache_stats(store: LocalStore = Depends(get_store)):
    return JSONResponse({"cache_stats": store.get_stats(), "status": "ok"})


@app.get("/api/scores")
def get_scores(
    limit: int = 10,
    store: LocalStore = Depends(get_store),
    registry: Optional[RegistryClient] = Depends(get_registry),
):
    return scoreboard.fetch_scores(store, registry, limit).to_json_dict()


@app.post("/api/scores")
def post_score(
    body: SubmitScoreRequest,
    store: LocalStore = Depends(get_store),
    registry: Optional[RegistryClient] = Depends(get_registry),
):
    return scoreboard.submit_score(store, registry, body.entry, body.replay_proof).to_json_dict()


@app.get("/api/scores/personal")
def get_personal_scores(limit: int = 10, store: LocalStore = Depends(get_store)):
    entries = scoreboard.fetch_personal_scores(store, limit)
    return {"entries": [e.to_json_dict() for e in entries]}


@app.post("/api/scores/personal", status_code=201)
def post_personal_score(body: SubmitScoreRequest, store: LocalStore = Depends(get_store)):
    return scoreboard.submit_personal_score(store, body.entry).to_json_dict()


@app.get("/api/daily/badges")
def get_badges(
    today: str = "",
    store: LocalStore = Depends(get_store),
    registry: Optional[RegistryClient] = Depends(get_registry),
):
    return scoreboard.fetch_badge_status(store, registry, today or None).to_json_dict()


@app.get("/api/daily/{challenge_key}/scores")
def get_daily_scores(
    challenge_key: str,
    limit: int = 10,
    store: LocalStore = Depends(get_store),
    registry: Optional[RegistryClient] = Depends(get_registry),
):
    return scoreboard.fetch_daily_scores(store, registry, challenge_key, limit).to_json_dict()


@app.get("/api/daily/{challenge_key}/status")
def get_daily_status(
    challenge_key: str,
    store: LocalStore = Depends(get_store),
    registry: Optional[RegistryClient] = Depends(get_registry),
):
    return scoreboard.fetch_daily_status(store, registry, challenge_key).to_json_dict()


@app.post("/api/daily/{challenge_key}/start")
def post_daily_start(
    challenge_key: str,
    body: Optional[StartAttemptRequest] = None,
    store: LocalStore = Depends(get_store),
    registry: Optional[RegistryClient] = Depends(get_registry),
):
    player_name = body.player_name if body else None
    return scoreboard.start_daily_attempt(store, registry, challenge_key, player_name).to_json_dict()


@app.post("/api/daily/{challenge_key}/submit")
def post_daily_submit(
    challenge_key: str,
    body: SubmitDailyRequest,
    store: LocalStore = Depends(get_store),
    registry: Optional[RegistryClient] = Depends(get_registry),
):
    result = scoreboard.submit_daily_score(
        store, registry, challenge_key, body.attempt_token, body.entry, body.replay_proof,
    )
    return result.to_json_dict()


@app.post("/api/daily/{challenge_key}/forfeit")
def post_daily_forfeit(
    challenge_key: str,
    body: ForfeitRequest,
    store: LocalStore = Depends(get_store),
    registry: Optional[RegistryClient] = Depends(get_registry),
):
    return scoreboard.forfeit_daily_attempt(store, registry, challenge_key, body.attempt_token).to_json_dict()
