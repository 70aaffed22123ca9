from typing import List, Optional, Union

from pydantic import ValidationError as PydanticValidationError

from .errors import EmptyUserName, ValidationError
from .models import ScoreEntry, SkillUsage

MAX_USER_NAME_LEN = 20
MAX_SKILL_USAGE_ITEMS = 20
MAX_SKILL_NAME_LEN = 20
MAX_SKILL_HOTKEY_LEN = 16
MAX_SKILL_COMMAND_LEN = 120


def _clip(value: Optional[str], limit: int) -> Optional[str]:
    """Trim and truncate; empty after trimming counts as absent."""
    if value is None:
        return None
    clipped = value.strip()[:limit]
    return clipped or None


def sanitize_skill_usage(items: List[SkillUsage]) -> List[SkillUsage]:
    seen = set()
    sanitized: List[SkillUsage] = []
    for item in items[:MAX_SKILL_USAGE_ITEMS]:
        name = _clip(item.name, MAX_SKILL_NAME_LEN)
        if name is None:
            continue
        usage = SkillUsage(
            name=name,
            hotkey=_clip(item.hotkey, MAX_SKILL_HOTKEY_LEN),
            command=_clip(item.command, MAX_SKILL_COMMAND_LEN),
        )
        if usage.key() in seen:
            continue
        seen.add(usage.key())
        sanitized.append(usage)
    return sanitized


def sanitize_entry(raw: Union[ScoreEntry, dict]) -> ScoreEntry:
    """Normalize a submitted score record.

    The result always has `is_me=False`; callers mark local submissions
    themselves after sanitizing.
    """
    if isinstance(raw, ScoreEntry):
        entry = raw
    else:
        try:
            entry = ScoreEntry.model_validate(raw)
        except PydanticValidationError as e:
            raise ValidationError(f"malformed score entry: {e.error_count()} invalid field(s)")

    user = entry.user.strip()[:MAX_USER_NAME_LEN]
    if not user:
        raise EmptyUserName("score entry user is empty")

    return ScoreEntry(
        user=user,
        score=max(0, entry.score),
        level=max(0, entry.level),
        date=entry.date.strip(),
        skill_usage=sanitize_skill_usage(entry.skill_usage),
        is_me=False,
    )
