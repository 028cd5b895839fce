"""Tests for the hash-chained audit trail."""
import pytest
from concurrent.futures import ThreadPoolExecutor
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

from moodguard.shared.utils import configure_pii_salt, hash_pii
from moodguard.shared.database.errors import DuplicateError, RepositoryError, StoreUnavailableError
from moodguard.services.audit_service.audit_logger import (
    GENESIS_HASH,
    AuditAction,
    AuditEntity,
    AuditLogger,
)


@pytest.fixture(autouse=True)
def setup_pii_salt():
    configure_pii_salt("test_salt_that_is_at_least_32_characters_long")


@pytest.fixture
def audit():
    return AuditLogger()


class TestAuditEntryCreation:

    def test_log_creates_entry(self, audit):
        entry = audit.log(
            action=AuditAction.ASSESSMENT_RECORDED,
            entity_type=AuditEntity.ASSESSMENT,
            entity_id="asm_123",
            subject_id_hash=hash_pii("student_1"),
            details={"risk_level": "high"},
        )

        assert entry.entry_id.startswith("audit_")
        assert entry.actor_id == "system"
        assert entry.previous_hash == GENESIS_HASH
        assert len(entry.entry_hash) == 64
        assert entry.subject_id_hash != "student_1"

    def test_entry_is_immutable(self, audit):
        entry = audit.log(AuditAction.ALERT_CREATED, AuditEntity.ALERT, "alert_1")

        with pytest.raises(Exception):  # FrozenInstanceError
            entry.action = AuditAction.ALERT_RESOLVED

    def test_entries_are_chained(self, audit):
        first = audit.log(AuditAction.ALERT_CREATED, AuditEntity.ALERT, "alert_1")
        second = audit.log(AuditAction.NOTIFICATION_SENT, AuditEntity.ALERT, "alert_1")

        assert second.previous_hash == first.entry_hash
        assert len(audit) == 2

    def test_to_dict(self, audit):
        entry = audit.log(AuditAction.ALERT_RESOLVED, AuditEntity.ALERT, "alert_1", actor_id="counselor_7")

        data = entry.to_dict()

        assert data["action"] == "alert_resolved"
        assert data["actor_id"] == "counselor_7"
        assert data["entry_hash"] == entry.entry_hash


class TestChainVerification:

    def test_empty_chain_is_valid(self, audit):
        assert audit.verify_chain() is True

    def test_valid_chain(self, audit):
        for i in range(5):
            audit.log(AuditAction.ASSESSMENT_RECORDED, AuditEntity.ASSESSMENT, f"asm_{i}")

        assert audit.verify_chain() is True

    def test_tampered_details_detected(self, audit):
        audit.log(AuditAction.ASSESSMENT_RECORDED, AuditEntity.ASSESSMENT, "asm_1",
                  details={"risk_level": "critical"})
        audit.log(AuditAction.ALERT_CREATED, AuditEntity.ALERT, "alert_1")

        audit._entries[0] = replace(audit._entries[0], details={"risk_level": "low"})

        assert audit.verify_chain() is False

    def test_removed_entry_detected(self, audit):
        for i in range(3):
            audit.log(AuditAction.ASSESSMENT_RECORDED, AuditEntity.ASSESSMENT, f"asm_{i}")

        del audit._entries[1]

        assert audit.verify_chain() is False

    def test_concurrent_appends_keep_chain_linear(self, audit):
        with ThreadPoolExecutor(max_workers=8) as pool:
            list(pool.map(
                lambda i: audit.log(AuditAction.ASSESSMENT_RECORDED, AuditEntity.ASSESSMENT, f"asm_{i}"),
                range(50),
            ))

        assert len(audit) == 50
        assert audit.verify_chain() is True


class TestQuery:

    def test_filters(self, audit):
        subject = hash_pii("student_1")
        audit.log(AuditAction.ASSESSMENT_RECORDED, AuditEntity.ASSESSMENT, "asm_1", subject_id_hash=subject)
        audit.log(AuditAction.ALERT_CREATED, AuditEntity.ALERT, "alert_1", subject_id_hash=subject)
        audit.log(AuditAction.ALERT_CREATED, AuditEntity.ALERT, "alert_2", subject_id_hash=hash_pii("student_2"))

        assert len(audit.query(entity_type=AuditEntity.ALERT)) == 2
        assert len(audit.query(entity_id="alert_1")) == 1
        assert len(audit.query(action=AuditAction.ASSESSMENT_RECORDED)) == 1
        assert len(audit.query(subject_id_hash=subject)) == 2

    def test_date_range(self, audit):
        audit.log(AuditAction.ALERT_CREATED, AuditEntity.ALERT, "alert_1")
        now = datetime.now(timezone.utc)

        assert len(audit.query(start_date=now - timedelta(minutes=1))) == 1
        assert audit.query(end_date=now - timedelta(minutes=1)) == []


class TestBoundedBuffer:

    def test_oldest_entries_evicted(self):
        audit = AuditLogger(max_buffered=3)
        for i in range(5):
            audit.log(AuditAction.ASSESSMENT_RECORDED, AuditEntity.ASSESSMENT, f"asm_{i}")

        assert len(audit) == 3
        assert [e.entity_id for e in audit.query()] == ["asm_2", "asm_3", "asm_4"]
        assert audit.verify_chain() is True

    def test_tampering_detected_after_eviction(self):
        audit = AuditLogger(max_buffered=3)
        for i in range(5):
            audit.log(AuditAction.ASSESSMENT_RECORDED, AuditEntity.ASSESSMENT, f"asm_{i}")

        del audit._entries[1]

        assert audit.verify_chain() is False


class TestDurableTrail:

    @pytest.fixture
    def repository(self):
        repository = MagicMock()
        repository.latest_hash.return_value = None
        return repository

    def test_entries_persisted_before_chaining(self, repository):
        audit = AuditLogger(repository=repository)

        entry = audit.log(AuditAction.ALERT_CREATED, AuditEntity.ALERT, "alert_1")

        repository.append.assert_called_once_with(entry)
        assert entry.previous_hash == GENESIS_HASH

    def test_chain_continues_from_stored_tail(self, repository):
        repository.latest_hash.return_value = "f" * 64
        audit = AuditLogger(repository=repository)

        entry = audit.log(AuditAction.ALERT_CREATED, AuditEntity.ALERT, "alert_1")

        assert entry.previous_hash == "f" * 64
        repository.latest_hash.assert_called_once()

    def test_tail_not_read_until_first_log(self, repository):
        AuditLogger(repository=repository)

        repository.latest_hash.assert_not_called()

    def test_concurrent_writer_rechains(self, repository):
        repository.latest_hash.side_effect = [None, "a" * 64]
        repository.append.side_effect = [DuplicateError("previous_hash taken"), None]
        audit = AuditLogger(repository=repository)

        entry = audit.log(AuditAction.ALERT_CREATED, AuditEntity.ALERT, "alert_1")

        assert entry.previous_hash == "a" * 64
        assert repository.append.call_count == 2
        assert entry.compute_hash() == entry.entry_hash

    def test_persistent_contention_raises(self, repository):
        repository.append.side_effect = DuplicateError("previous_hash taken")
        audit = AuditLogger(repository=repository)

        with pytest.raises(RepositoryError):
            audit.log(AuditAction.ALERT_CREATED, AuditEntity.ALERT, "alert_1")

        assert len(audit) == 0

    def test_backend_failure_propagates(self, repository):
        repository.append.side_effect = StoreUnavailableError("down")
        audit = AuditLogger(repository=repository)

        with pytest.raises(StoreUnavailableError):
            audit.log(AuditAction.ALERT_CREATED, AuditEntity.ALERT, "alert_1")

    def test_query_and_verify_read_repository(self, repository):
        audit = AuditLogger(repository=repository)
        first = audit.log(AuditAction.ALERT_CREATED, AuditEntity.ALERT, "alert_1")
        second = audit.log(AuditAction.ALERT_RESOLVED, AuditEntity.ALERT, "alert_1")
        repository.find.return_value = [first, second]

        assert audit.query(entity_id="alert_1") == [first, second]
        assert repository.find.call_args.kwargs["entity_id"] == "alert_1"
        assert audit.verify_chain() is True

        repository.find.return_value = [second]
        assert audit.verify_chain() is False
