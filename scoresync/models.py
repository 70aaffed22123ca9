from enum import Enum
from typing import List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

MAX_ATTEMPTS = 3
CLASSIC_MODE = "classic"
DAILY_MODE = "daily"
CLASSIC_CHALLENGE_KEY = "classic"
MAX_REPLAY_INPUTS = 20_000


class CamelModel(BaseModel):
    # camelCase on the wire and on disk, snake_case in Python
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_json_dict(self) -> dict:
        return self.model_dump(by_alias=True, mode="json")


class SkillUsage(CamelModel):
    name: str
    hotkey: Optional[str] = None
    command: Optional[str] = None

    def key(self):
        return (self.name, self.hotkey, self.command)


class ScoreEntry(CamelModel):
    user: str
    score: int = 0
    level: int = 0
    date: str = ""
    skill_usage: List[SkillUsage] = Field(default_factory=list)
    is_me: bool = False


class ReplayInputEvent(CamelModel):
    time: int
    move: str


class DailyReplayProof(CamelModel):
    version: int
    difficulty: int
    seed: int
    final_time: int
    final_score: int
    final_level: int
    inputs: List[ReplayInputEvent] = Field(default_factory=list)

    @field_validator("inputs", mode="before")
    @classmethod
    def _cap_inputs(cls, v):
        # events past the cap are dropped unexamined
        if isinstance(v, (list, tuple)):
            return list(v[:MAX_REPLAY_INPUTS])
        return v


class IdleAttempt(CamelModel):
    kind: Literal["idle"] = "idle"


class ActiveAttempt(CamelModel):
    kind: Literal["active"] = "active"
    # the status read path only learns that an attempt is active, not its token
    token: Optional[str] = None


class ExhaustedAttempt(CamelModel):
    kind: Literal["exhausted"] = "exhausted"


AttemptState = Union[IdleAttempt, ActiveAttempt, ExhaustedAttempt]


class DailyStatus(CamelModel):
    challenge_key: str
    attempts_used: int
    attempts_left: int
    max_attempts: int = MAX_ATTEMPTS
    can_submit: bool
    has_active_attempt: bool = False
    state: AttemptState = Field(default_factory=IdleAttempt, discriminator="kind")


class DailyAttemptStartResult(DailyStatus):
    accepted: bool = False
    resumed: bool = False
    attempt_token: Optional[str] = None


class DailySubmitResult(DailyStatus):
    accepted: bool = False
    improved: bool = False


class DailyForfeitResult(DailyStatus):
    accepted: bool = False


class DailyBadgeStatus(CamelModel):
    current_streak: int = 0
    max_streak: int = 0
    highest_badge_power: Optional[int] = None
    highest_badge_days: Optional[int] = None
    next_badge_power: Optional[int] = None
    next_badge_days: Optional[int] = None
    days_to_next_badge: Optional[int] = None


class SyncStatus(str, Enum):
    SYNCED = "synced"
    LOCAL_ONLY = "local_only"
    REMOTE_FAILED = "remote_failed"
    LOCAL_FAILED = "local_failed"


class SubmitOutcome(CamelModel):
    """Result of a local-first submission followed by a best-effort remote sync."""

    status: SyncStatus
    entry: ScoreEntry
    error: Optional[str] = None

    @property
    def local_ok(self) -> bool:
        return self.status != SyncStatus.LOCAL_FAILED

    @property
    def remote_ok(self) -> bool:
        return self.status == SyncStatus.SYNCED


class ScoreListing(CamelModel):
    entries: List[ScoreEntry] = Field(default_factory=list)
    source: Literal["remote", "cache"] = "cache"
