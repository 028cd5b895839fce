"""Audit logger - append-only, hash-chained trail of escalation decisions.

Every assessment, alert transition and notification attempt emits an
entry. Entries reference subjects only by hashed id.
"""
import hashlib
import json
import logging
import threading
import uuid
from collections import deque
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING, Any, Deque, Dict, List, Optional

from moodguard.shared.database.errors import DuplicateError, RepositoryError

if TYPE_CHECKING:
    from .audit_repository import AuditRepository

logger = logging.getLogger(__name__)

GENESIS_HASH = "genesis"
DEFAULT_BUFFER_SIZE = 10_000
MAX_APPEND_ATTEMPTS = 3


class AuditAction(Enum):
    """Actions that require audit logging."""
    # Risk evaluation
    ASSESSMENT_RECORDED = "assessment_recorded"

    # Alert lifecycle
    ALERT_CREATED = "alert_created"
    ALERT_DEDUPLICATED = "alert_deduplicated"
    ALERT_RESOLVED = "alert_resolved"

    # Notification attempts
    NOTIFICATION_SENT = "notification_sent"
    NOTIFICATION_FAILED = "notification_failed"
    NOTIFICATION_SKIPPED = "notification_skipped"


class AuditEntity(Enum):
    """Entity types for audit logging."""
    ASSESSMENT = "assessment"
    ALERT = "alert"
    SYSTEM = "system"


@dataclass(frozen=True)
class AuditEntry:
    """Immutable audit log entry."""
    entry_id: str
    timestamp: datetime
    action: AuditAction
    entity_type: AuditEntity
    entity_id: str
    actor_id: str
    subject_id_hash: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)
    previous_hash: str = ""  # Chain to previous entry
    entry_hash: str = ""

    def compute_hash(self) -> str:
        """SHA-256 over every field except entry_hash."""
        content = {
            "entry_id": self.entry_id,
            "timestamp": self.timestamp.isoformat(),
            "action": self.action.value,
            "entity_type": self.entity_type.value,
            "entity_id": self.entity_id,
            "actor_id": self.actor_id,
            "subject_id_hash": self.subject_id_hash,
            "details": self.details,
            "previous_hash": self.previous_hash,
        }
        content_str = json.dumps(content, sort_keys=True, default=str)
        return hashlib.sha256(content_str.encode()).hexdigest()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "entry_id": self.entry_id,
            "timestamp": self.timestamp.isoformat(),
            "action": self.action.value,
            "entity_type": self.entity_type.value,
            "entity_id": self.entity_id,
            "actor_id": self.actor_id,
            "subject_id_hash": self.subject_id_hash,
            "details": self.details,
            "previous_hash": self.previous_hash,
            "entry_hash": self.entry_hash,
        }


class AuditLogger:
    """Keeps a hash chain of audit entries.

    With a repository every entry is persisted before it joins the chain,
    and query()/verify_chain() read the durable trail. Without one the
    chain lives only in a bounded in-process buffer that is lost on
    restart; once max_buffered entries are exceeded the oldest are
    evicted and verification starts from the oldest entry still held.

    Thread-safe: concurrent check-ins append through a single lock so
    the chain stays linear.
    """

    def __init__(
        self,
        repository: Optional["AuditRepository"] = None,
        max_buffered: int = DEFAULT_BUFFER_SIZE,
    ):
        self.repository = repository
        self._lock = threading.Lock()
        self._entries: Deque[AuditEntry] = deque(maxlen=max_buffered)
        self._evicted = 0
        self._last_hash: str = GENESIS_HASH
        self._chain_loaded = repository is None

        logger.info(
            "AUDIT_LOGGER_INITIALIZED",
            extra={"durable": repository is not None, "max_buffered": max_buffered}
        )

    def __len__(self) -> int:
        return len(self._entries)

    def _reload_last_hash(self) -> None:
        self._last_hash = self.repository.latest_hash() or GENESIS_HASH
        self._chain_loaded = True

    def log(
        self,
        action: AuditAction,
        entity_type: AuditEntity,
        entity_id: str,
        actor_id: str = "system",
        subject_id_hash: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> AuditEntry:
        """Append an audit entry.

        Args:
            action: Action being audited
            entity_type: Type of entity being acted upon
            entity_id: Assessment or alert id
            actor_id: "system" or the id of the person acting
            subject_id_hash: Hashed subject id (never the raw id)
            details: Additional context (JSON-serializable)

        Returns:
            Created AuditEntry

        Raises:
            RepositoryError: If the entry could not be persisted
        """
        with self._lock:
            if not self._chain_loaded:
                self._reload_last_hash()

            attempts = 0
            while True:
                attempts += 1
                entry = AuditEntry(
                    entry_id=f"audit_{uuid.uuid4().hex[:16]}",
                    timestamp=datetime.now(timezone.utc),
                    action=action,
                    entity_type=entity_type,
                    entity_id=entity_id,
                    actor_id=actor_id,
                    subject_id_hash=subject_id_hash,
                    details=dict(details or {}),
                    previous_hash=self._last_hash,
                )
                entry = replace(entry, entry_hash=entry.compute_hash())

                if self.repository is None:
                    break
                try:
                    self.repository.append(entry)
                    break
                except DuplicateError:
                    # Another process chained onto the same tail
                    if attempts >= MAX_APPEND_ATTEMPTS:
                        raise RepositoryError(
                            f"Audit chain contended for {attempts} attempts"
                        )
                    self._reload_last_hash()

            if len(self._entries) == self._entries.maxlen:
                self._evicted += 1
            self._entries.append(entry)
            self._last_hash = entry.entry_hash

        logger.info(
            "AUDIT_ENTRY_CREATED",
            extra={
                "entry_id": entry.entry_id,
                "action": action.value,
                "entity_type": entity_type.value,
                "entity_id": entity_id,
                "subject_id_hash": subject_id_hash,
                "entry_hash": entry.entry_hash[:16],  # Truncated for logs
            }
        )
        return entry

    def verify_chain(self) -> bool:
        """Verify integrity of the audit chain.

        Returns:
            True if chain is valid, False if tampered
        """
        if self.repository is not None:
            entries = self.repository.find()
            expected_prev = GENESIS_HASH
        else:
            with self._lock:
                entries = list(self._entries)
                evicted = self._evicted
            expected_prev = entries[0].previous_hash if evicted and entries else GENESIS_HASH

        for entry in entries:
            if entry.previous_hash != expected_prev:
                logger.critical(
                    "AUDIT_CHAIN_VERIFICATION_FAILED",
                    extra={
                        "entry_id": entry.entry_id,
                        "expected_prev": expected_prev[:16],
                        "actual_prev": entry.previous_hash[:16],
                    }
                )
                return False

            computed = entry.compute_hash()
            if computed != entry.entry_hash:
                logger.critical(
                    "AUDIT_ENTRY_HASH_MISMATCH",
                    extra={
                        "entry_id": entry.entry_id,
                        "computed": computed[:16],
                        "stored": entry.entry_hash[:16],
                    }
                )
                return False

            expected_prev = entry.entry_hash

        logger.info("AUDIT_CHAIN_VERIFIED", extra={"entry_count": len(entries)})
        return True

    def query(
        self,
        entity_type: Optional[AuditEntity] = None,
        entity_id: Optional[str] = None,
        action: Optional[AuditAction] = None,
        subject_id_hash: Optional[str] = None,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
    ) -> List[AuditEntry]:
        """Query audit entries in chain order."""
        if self.repository is not None:
            return self.repository.find(
                entity_type=entity_type,
                entity_id=entity_id,
                action=action,
                subject_id_hash=subject_id_hash,
                start_date=start_date,
                end_date=end_date,
            )

        with self._lock:
            results = list(self._entries)

        if entity_type:
            results = [e for e in results if e.entity_type == entity_type]
        if entity_id:
            results = [e for e in results if e.entity_id == entity_id]
        if action:
            results = [e for e in results if e.action == action]
        if subject_id_hash:
            results = [e for e in results if e.subject_id_hash == subject_id_hash]
        if start_date:
            results = [e for e in results if e.timestamp >= start_date]
        if end_date:
            results = [e for e in results if e.timestamp <= end_date]

        return results
