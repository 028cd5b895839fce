"""Mood sample domain model and ingestion canonicalization.

Every sample enters the system through canonicalize_sample(). Downstream
components (aggregation, risk extraction) rely on the invariants it
establishes and never re-validate fields.
"""
import math
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Dict, FrozenSet, Iterable, Mapping, Optional


MOOD_MIN = 1
MOOD_MAX = 5

METRIC_MIN = 1
METRIC_MAX = 10

MAX_NOTES_LENGTH = 2000

SUPPORTED_MOOD_SCALES = (5, 10)

OPTIONAL_METRICS = ("energy", "stress", "sleep")

EDITABLE_FIELDS = frozenset({
    "mood",
    "energy",
    "stress",
    "sleep",
    "notes",
    "activities",
    "emotions",
})


class SampleValidationError(ValueError):
    """Raised when a check-in payload cannot be canonicalized."""

    def __init__(self, field_name: str, message: str):
        self.field_name = field_name
        super().__init__(f"{field_name}: {message}")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class MoodSample:
    """One subjective well-being check-in.

    Immutable. Edits produce a new instance via apply_edit().
    """
    id: str
    subject_id: str
    mood: int
    created_at: datetime
    energy: Optional[int] = None
    stress: Optional[int] = None
    sleep: Optional[int] = None
    notes: str = ""
    activities: FrozenSet[str] = field(default_factory=frozenset)
    emotions: FrozenSet[str] = field(default_factory=frozenset)
    updated_at: Optional[datetime] = None
    ai_analysis: Optional[Dict[str, Any]] = None

    def __post_init__(self):
        if not MOOD_MIN <= self.mood <= MOOD_MAX:
            raise ValueError(f"Mood must be {MOOD_MIN}-{MOOD_MAX}, got {self.mood}")
        if self.created_at.tzinfo is None:
            raise ValueError("created_at must be timezone-aware")

    def with_analysis(self, analysis: Dict[str, Any]) -> "MoodSample":
        return replace(self, ai_analysis=dict(analysis))

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for API responses and document storage."""
        return {
            "id": self.id,
            "subject_id": self.subject_id,
            "mood": self.mood,
            "energy": self.energy,
            "stress": self.stress,
            "sleep": self.sleep,
            "notes": self.notes,
            "activities": sorted(self.activities),
            "emotions": sorted(self.emotions),
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
            "ai_analysis": self.ai_analysis,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "MoodSample":
        """Rebuild a stored sample. Input is trusted (already canonical)."""
        return cls(
            id=data["id"],
            subject_id=data["subject_id"],
            mood=int(data["mood"]),
            energy=data.get("energy"),
            stress=data.get("stress"),
            sleep=data.get("sleep"),
            notes=data.get("notes") or "",
            activities=frozenset(data.get("activities") or ()),
            emotions=frozenset(data.get("emotions") or ()),
            created_at=_parse_datetime(data["created_at"]),
            updated_at=_parse_datetime(data["updated_at"]) if data.get("updated_at") else None,
            ai_analysis=data.get("ai_analysis"),
        )


def _parse_datetime(value: Any) -> datetime:
    if isinstance(value, datetime):
        parsed = value
    else:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _coerce_int(field_name: str, value: Any) -> int:
    if isinstance(value, bool):
        raise SampleValidationError(field_name, "must be a number")
    if isinstance(value, str):
        value = value.strip()
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise SampleValidationError(field_name, "must be a number")
    if not math.isfinite(number):
        raise SampleValidationError(field_name, "must be a number")
    return int(round(number))


def _clamp(value: int, low: int, high: int) -> int:
    return max(low, min(high, value))


def canonical_mood(raw: Any, mood_scale: int = MOOD_MAX) -> int:
    """Map a raw mood reading onto the canonical 1-5 range.

    Call sites that collect mood on a 1-10 slider are mapped linearly;
    anything outside the range is clamped.
    """
    if mood_scale not in SUPPORTED_MOOD_SCALES:
        raise SampleValidationError("mood_scale", f"unsupported scale {mood_scale}")
    if raw is None:
        raise SampleValidationError("mood", "is required")
    value = _coerce_int("mood", raw)
    if mood_scale == 10:
        value = _clamp(value, 1, 10)
        value = int(round(1 + (value - 1) * (MOOD_MAX - MOOD_MIN) / 9))
    return _clamp(value, MOOD_MIN, MOOD_MAX)


def canonical_metric(field_name: str, raw: Any) -> Optional[int]:
    if raw is None or raw == "":
        return None
    return _clamp(_coerce_int(field_name, raw), METRIC_MIN, METRIC_MAX)


def canonical_tags(field_name: str, raw: Any) -> FrozenSet[str]:
    if raw is None:
        return frozenset()
    if isinstance(raw, str) or not isinstance(raw, Iterable):
        raise SampleValidationError(field_name, "must be a list of strings")
    tags = set()
    for tag in raw:
        if not isinstance(tag, str):
            raise SampleValidationError(field_name, "must be a list of strings")
        cleaned = tag.strip().lower()
        if cleaned:
            tags.add(cleaned)
    return frozenset(tags)


def canonical_notes(raw: Any) -> str:
    if raw is None:
        return ""
    if not isinstance(raw, str):
        raise SampleValidationError("notes", "must be text")
    return raw.strip()[:MAX_NOTES_LENGTH]


def canonicalize_sample(
    subject_id: str,
    payload: Mapping[str, Any],
    mood_scale: int = MOOD_MAX,
    now: Optional[datetime] = None,
) -> MoodSample:
    """Validate and normalize a raw check-in payload.

    Args:
        subject_id: Owner of the sample
        payload: Raw fields as submitted (mood, energy, stress, sleep,
            notes, activities, emotions)
        mood_scale: Scale the caller collected mood on (5 or 10)
        now: Server clock override (tests)

    Returns:
        A new MoodSample with a fresh id and server-assigned created_at

    Raises:
        SampleValidationError: If a field is missing or malformed
    """
    if not subject_id:
        raise SampleValidationError("subject_id", "is required")
    if not isinstance(payload, Mapping):
        raise SampleValidationError("payload", "must be an object")

    return MoodSample(
        id=f"smp_{uuid.uuid4().hex[:16]}",
        subject_id=subject_id,
        mood=canonical_mood(payload.get("mood"), mood_scale),
        energy=canonical_metric("energy", payload.get("energy")),
        stress=canonical_metric("stress", payload.get("stress")),
        sleep=canonical_metric("sleep", payload.get("sleep")),
        notes=canonical_notes(payload.get("notes")),
        activities=canonical_tags("activities", payload.get("activities")),
        emotions=canonical_tags("emotions", payload.get("emotions")),
        created_at=now or utcnow(),
    )


def apply_edit(
    sample: MoodSample,
    changes: Mapping[str, Any],
    mood_scale: int = MOOD_MAX,
    now: Optional[datetime] = None,
) -> MoodSample:
    """Apply an explicit user edit, re-canonicalizing the touched fields.

    The returned sample has ai_analysis cleared since derived analysis
    must be recomputed for the new content.
    """
    unknown = set(changes) - EDITABLE_FIELDS
    if unknown:
        raise SampleValidationError(sorted(unknown)[0], "is not editable")

    updates: Dict[str, Any] = {}
    if "mood" in changes:
        updates["mood"] = canonical_mood(changes["mood"], mood_scale)
    for metric in OPTIONAL_METRICS:
        if metric in changes:
            updates[metric] = canonical_metric(metric, changes[metric])
    if "notes" in changes:
        updates["notes"] = canonical_notes(changes["notes"])
    for tag_field in ("activities", "emotions"):
        if tag_field in changes:
            updates[tag_field] = canonical_tags(tag_field, changes[tag_field])

    return replace(sample, updated_at=now or utcnow(), ai_analysis=None, **updates)
