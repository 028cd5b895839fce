"""Risk level, assessment, and alert domain models.

Risk levels are ordered so that merge and threshold decisions can be
expressed as comparisons. Disagreement between signal sources always
resolves toward the higher level.
"""
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional


class RiskLevel(Enum):
    """Risk classification for a single evaluated sample."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _RISK_ORDER.index(self)

    def __lt__(self, other: "RiskLevel") -> bool:
        if not isinstance(other, RiskLevel):
            return NotImplemented
        return self.rank < other.rank

    def __le__(self, other: "RiskLevel") -> bool:
        if not isinstance(other, RiskLevel):
            return NotImplemented
        return self.rank <= other.rank

    def __gt__(self, other: "RiskLevel") -> bool:
        if not isinstance(other, RiskLevel):
            return NotImplemented
        return self.rank > other.rank

    def __ge__(self, other: "RiskLevel") -> bool:
        if not isinstance(other, RiskLevel):
            return NotImplemented
        return self.rank >= other.rank

    def elevated(self) -> "RiskLevel":
        """One level higher, capped at CRITICAL."""
        return _RISK_ORDER[min(self.rank + 1, len(_RISK_ORDER) - 1)]

    @classmethod
    def parse(cls, value: Any) -> "RiskLevel":
        """Parse a level name case-insensitively.

        Raises:
            ValueError: If value is not a known level
        """
        if isinstance(value, RiskLevel):
            return value
        if not isinstance(value, str):
            raise ValueError(f"Unknown risk level: {value!r}")
        return cls(value.strip().lower())


_RISK_ORDER = [RiskLevel.LOW, RiskLevel.MEDIUM, RiskLevel.HIGH, RiskLevel.CRITICAL]


def highest_level(levels: Iterable[RiskLevel]) -> RiskLevel:
    """Maximum of the given levels, LOW for an empty iterable."""
    return max(levels, default=RiskLevel.LOW)


class SignalOrigin(Enum):
    KEYWORD = "keyword"
    CLASSIFIER = "classifier"


class ClassifierStatus(Enum):
    """Whether and how the external classifier pass contributed."""
    CONTRIBUTED = "contributed"
    DISABLED = "disabled"
    SKIPPED_EMPTY_NOTE = "skipped_empty_note"
    TIMEOUT = "timeout"
    ERROR = "error"
    MALFORMED = "malformed"

    @property
    def contributed(self) -> bool:
        return self is ClassifierStatus.CONTRIBUTED


class NotificationStatus(Enum):
    PENDING = "pending"
    SENT = "sent"
    FAILED = "failed"
    SKIPPED_NO_PARTY = "skipped_no_party"


@dataclass(frozen=True)
class RiskSignal:
    """One piece of evidence behind a risk verdict."""
    origin: SignalOrigin
    label: str
    confidence: float
    level: RiskLevel = RiskLevel.LOW
    detail: str = ""

    def __post_init__(self):
        if not 0.0 <= self.confidence <= 1.0:
            raise ValueError(f"Confidence must be 0.0-1.0, got {self.confidence}")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "origin": self.origin.value,
            "label": self.label,
            "confidence": round(self.confidence, 3),
            "level": self.level.value,
            "detail": self.detail,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RiskSignal":
        return cls(
            origin=SignalOrigin(data["origin"]),
            label=data["label"],
            confidence=float(data["confidence"]),
            level=RiskLevel.parse(data.get("level", "low")),
            detail=data.get("detail", ""),
        )


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class CrisisAssessment:
    """Output of one risk evaluation of one sample.

    Mutable only through mark_notification_sent() and resolution.
    """
    id: str
    subject_id: str
    source_sample_id: str
    risk_level: RiskLevel
    signals: List[RiskSignal] = field(default_factory=list)
    recommendations: List[str] = field(default_factory=list)
    classifier_status: ClassifierStatus = ClassifierStatus.DISABLED
    created_at: datetime = field(default_factory=_utcnow)
    resolved: bool = False
    notification_sent: bool = False

    @staticmethod
    def new_id() -> str:
        return f"asm_{uuid.uuid4().hex[:16]}"

    @property
    def classifier_contributed(self) -> bool:
        return self.classifier_status.contributed

    def mark_notification_sent(self) -> bool:
        """Flip notification_sent to True.

        Returns:
            True on the first call, False if already sent
        """
        if self.notification_sent:
            return False
        self.notification_sent = True
        return True

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "subject_id": self.subject_id,
            "source_sample_id": self.source_sample_id,
            "risk_level": self.risk_level.value,
            "signals": [s.to_dict() for s in self.signals],
            "recommendations": list(self.recommendations),
            "classifier_status": self.classifier_status.value,
            "created_at": self.created_at.isoformat(),
            "resolved": self.resolved,
            "notification_sent": self.notification_sent,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CrisisAssessment":
        created_at = data["created_at"]
        if not isinstance(created_at, datetime):
            created_at = datetime.fromisoformat(created_at)
        return cls(
            id=data["id"],
            subject_id=data["subject_id"],
            source_sample_id=data["source_sample_id"],
            risk_level=RiskLevel.parse(data["risk_level"]),
            signals=[RiskSignal.from_dict(s) for s in data.get("signals", [])],
            recommendations=list(data.get("recommendations", [])),
            classifier_status=ClassifierStatus(data.get("classifier_status", "disabled")),
            created_at=created_at,
            resolved=bool(data.get("resolved", False)),
            notification_sent=bool(data.get("notification_sent", False)),
        )


@dataclass
class CrisisAlert:
    """Persisted escalation record.

    At most one unresolved alert exists per subject. Closed only by an
    explicit resolve action carrying an actor identity.
    """
    id: str
    subject_id: str
    assessment_id: str
    urgency: RiskLevel
    responsible_party_id: Optional[str] = None
    latest_assessment_id: Optional[str] = None
    notification_status: NotificationStatus = NotificationStatus.PENDING
    resolved: bool = False
    created_at: datetime = field(default_factory=_utcnow)
    resolved_at: Optional[datetime] = None
    resolved_by: Optional[str] = None
    resolution_notes: Optional[str] = None

    def __post_init__(self):
        if self.latest_assessment_id is None:
            self.latest_assessment_id = self.assessment_id

    @staticmethod
    def new_id() -> str:
        return f"alert_{uuid.uuid4().hex[:12]}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "subject_id": self.subject_id,
            "responsible_party_id": self.responsible_party_id,
            "assessment_id": self.assessment_id,
            "latest_assessment_id": self.latest_assessment_id,
            "urgency": self.urgency.value,
            "notification_status": self.notification_status.value,
            "resolved": self.resolved,
            "created_at": self.created_at.isoformat(),
            "resolved_at": self.resolved_at.isoformat() if self.resolved_at else None,
            "resolved_by": self.resolved_by,
            "resolution_notes": self.resolution_notes,
        }
