"""
Import sessions: the server-side handle for one upload.

A session moves ``uploaded -> validated -> committed | discarded``; sessions
left open longer than the TTL become ``expired``. Only this service mutates
sessions, and every transition happens under the session's lock, so a
discard racing a commit waits for the commit and then fails on the terminal
state instead of interleaving with it.
"""

import logging
import secrets
import threading
from collections import OrderedDict
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Callable, Dict, List, Mapping, Optional, Set

from bulk_import.core.config import settings
from bulk_import.domain.imports.commit import CommitReport, CommitService
from bulk_import.domain.imports.parser import ParsedRow
from bulk_import.domain.imports.validation import RowValidationResult, ValidationEngine, ValidationResult
from bulk_import.utils.locks import KeyedLockManager

logger = logging.getLogger(__name__)


class SessionStatus(str, Enum):
    UPLOADED = "uploaded"
    VALIDATED = "validated"
    COMMITTED = "committed"
    DISCARDED = "discarded"
    EXPIRED = "expired"


OPEN_STATUSES = frozenset({SessionStatus.UPLOADED, SessionStatus.VALIDATED})


class SessionNotFoundError(LookupError):
    def __init__(self, session_id: str):
        self.session_id = session_id
        super().__init__(f"Import session '{session_id}' not found")


class RowNotFoundError(LookupError):
    """Raised when a row edit names a row the session snapshot does not hold."""


class SessionStateError(RuntimeError):
    def __init__(self, session_id: str, status: SessionStatus, message: str):
        self.session_id = session_id
        self.status = status
        super().__init__(message)


class SessionExpiredError(SessionStateError):
    def __init__(self, session_id: str):
        super().__init__(
            session_id,
            SessionStatus.EXPIRED,
            f"Import session '{session_id}' has expired; upload the file again to re-validate it",
        )


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class ImportSession:
    id: str
    file_name: str
    created_at: datetime
    expires_at: datetime
    status: SessionStatus = SessionStatus.UPLOADED
    validation: Optional[ValidationResult] = None
    file_type: Optional[str] = None
    headers: List[str] = field(default_factory=list)
    parse_warnings: List[str] = field(default_factory=list)
    validated_at: Optional[datetime] = None
    committed_at: Optional[datetime] = None
    commit_report: Optional[CommitReport] = None
    committed_groups: Set[str] = field(default_factory=set)

    def summary(self) -> Dict[str, Any]:
        return {
            "session_id": self.id,
            "file_name": self.file_name,
            "file_type": self.file_type,
            "status": self.status.value,
            "created_at": self.created_at.isoformat(),
            "expires_at": self.expires_at.isoformat(),
            "validated_at": self.validated_at.isoformat() if self.validated_at else None,
            "committed_at": self.committed_at.isoformat() if self.committed_at else None,
            "committed_groups": sorted(self.committed_groups),
            "validation": self.validation.summary() if self.validation else None,
        }


class ImportSessionService:
    """Bounded, TTL-expiring store of import sessions."""

    def __init__(
        self,
        validation_engine: ValidationEngine,
        commit_service: CommitService,
        ttl_seconds: Optional[int] = None,
        max_entries: Optional[int] = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.validation_engine = validation_engine
        self.commit_service = commit_service
        self.ttl = timedelta(seconds=ttl_seconds if ttl_seconds is not None else settings.session_ttl_seconds)
        self.max_entries = max_entries or settings.session_max_entries
        self._clock = clock
        self._sessions: "OrderedDict[str, ImportSession]" = OrderedDict()
        self._map_lock = threading.Lock()
        self._locks = KeyedLockManager()

    def __len__(self) -> int:
        return len(self._sessions)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _expire_if_due(self, session: ImportSession) -> None:
        if session.status in OPEN_STATUSES and self._clock() >= session.expires_at:
            logger.info("Import session %s expired (status was %s)", session.id, session.status.value)
            session.status = SessionStatus.EXPIRED
            session.validation = None

    def _lookup(self, session_id: str) -> ImportSession:
        with self._map_lock:
            session = self._sessions.get(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)
        self._expire_if_due(session)
        return session

    @contextmanager
    def _locked(self, session_id: str):
        """Hold the session's lock and yield it; unknown ids never get a lock."""
        with self._map_lock:
            known = session_id in self._sessions
        if not known:
            raise SessionNotFoundError(session_id)
        try:
            with self._locks.acquire(session_id):
                yield self._lookup(session_id)
        except SessionNotFoundError:
            # Evicted between the check and the lock
            self._locks.discard(session_id)
            raise

    def _require_validated(self, session: ImportSession, action: str) -> ValidationResult:
        if session.status is SessionStatus.EXPIRED:
            raise SessionExpiredError(session.id)
        if session.status is not SessionStatus.VALIDATED or session.validation is None:
            raise SessionStateError(
                session.id, session.status, f"Cannot {action} a session in status '{session.status.value}'"
            )
        return session.validation

    def _evict_for_space(self) -> None:
        # Caller holds the map lock
        while len(self._sessions) >= self.max_entries:
            victim = None
            for session in self._sessions.values():
                if session.status not in OPEN_STATUSES or self._clock() >= session.expires_at:
                    victim = session
                    break
            if victim is None:
                victim = next(iter(self._sessions.values()))
                logger.warning("Session store full; evicting oldest open session %s", victim.id)
            del self._sessions[victim.id]
            self._locks.discard(victim.id)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def create_session(self, file_name: str) -> ImportSession:
        now = self._clock()
        session = ImportSession(
            id=secrets.token_urlsafe(16),
            file_name=file_name,
            created_at=now,
            expires_at=now + self.ttl,
        )
        with self._map_lock:
            self._evict_for_space()
            self._sessions[session.id] = session
        logger.info("Created import session %s for '%s'", session.id, file_name)
        return session

    def get_session(self, session_id: str) -> ImportSession:
        with self._locked(session_id) as session:
            return session

    def attach_validation(
        self,
        session_id: str,
        validation: ValidationResult,
        *,
        file_type: Optional[str] = None,
        headers: Optional[List[str]] = None,
        parse_warnings: Optional[List[str]] = None,
    ) -> ImportSession:
        with self._locked(session_id) as session:
            if session.status is SessionStatus.EXPIRED:
                raise SessionExpiredError(session_id)
            if session.status not in OPEN_STATUSES:
                raise SessionStateError(
                    session_id, session.status, f"Cannot attach validation to a {session.status.value} session"
                )
            now = self._clock()
            session.validation = validation
            session.file_type = file_type or session.file_type
            session.headers = list(headers or session.headers)
            session.parse_warnings = list(parse_warnings or [])
            session.status = SessionStatus.VALIDATED
            session.validated_at = now
            session.expires_at = now + self.ttl
            return session

    def commit(self, session_id: str) -> CommitReport:
        """
        Commit the session's valid rows.

        The session lock is held until the write finishes. A rolled-back
        transactional commit leaves the session ``validated`` for a retry; a
        best-effort commit remembers the groups it wrote and retries only the
        rest next time.
        """
        with self._locked(session_id) as session:
            validation = self._require_validated(session, "commit")
            if not validation.can_save:
                raise SessionStateError(session_id, session.status, "Nothing to commit: the import has no valid rows")

            report = self.commit_service.commit(validation, session_id, skip_groups=session.committed_groups)
            session.commit_report = report
            session.committed_groups.update(report.committed_groups)
            if report.success:
                session.status = SessionStatus.COMMITTED
                session.committed_at = self._clock()
                logger.info("Import session %s committed (%d rows inserted)", session_id, report.inserted_count)
            return report

    def discard(self, session_id: str) -> None:
        with self._locked(session_id) as session:
            if session.status is SessionStatus.EXPIRED:
                raise SessionExpiredError(session_id)
            if session.status not in OPEN_STATUSES:
                raise SessionStateError(
                    session_id, session.status, f"Cannot discard a {session.status.value} session"
                )
            session.status = SessionStatus.DISCARDED
            session.validation = None
            logger.info("Import session %s discarded", session_id)

    def sweep_expired(self) -> int:
        """Expire overdue open sessions; returns how many were expired by this sweep."""
        with self._map_lock:
            sessions = list(self._sessions.values())
        expired = 0
        for session in sessions:
            with self._locks.acquire(session.id):
                was_open = session.status in OPEN_STATUSES
                self._expire_if_due(session)
                if was_open and session.status is SessionStatus.EXPIRED:
                    expired += 1
        return expired

    # ------------------------------------------------------------------
    # Row edits on a validated snapshot
    # ------------------------------------------------------------------

    def update_row(
        self, session_id: str, model_name: str, row_index: int, values: Mapping[str, Any]
    ) -> RowValidationResult:
        """Apply edited values to one row and re-validate it against its record type."""
        record_type = self.validation_engine.catalog.require(model_name)
        with self._locked(session_id) as session:
            validation = self._require_validated(session, "edit rows of")
            group = validation.get_group(record_type.name)
            current = group.find_row(row_index) if group else None
            if current is None:
                raise RowNotFoundError(f"Row {row_index} not found in group '{record_type.name}'")

            merged = dict(current.raw_values)
            merged.update(values)
            edited = ParsedRow(row_index=row_index, raw_values=merged, source_headers=tuple(merged))
            result = self.validation_engine.validate_record(record_type, edited, confidence=current.confidence)
            group.rows[group.rows.index(current)] = result
            logger.info(
                "Session %s: row %d of %s re-validated (valid=%s)", session_id, row_index, record_type.name, result.is_valid
            )
            return result

    def remove_row(self, session_id: str, model_name: str, row_index: int) -> ValidationResult:
        record_type = self.validation_engine.catalog.require(model_name)
        with self._locked(session_id) as session:
            validation = self._require_validated(session, "remove rows from")
            group = validation.get_group(record_type.name)
            current = group.find_row(row_index) if group else None
            if current is None:
                raise RowNotFoundError(f"Row {row_index} not found in group '{record_type.name}'")
            group.rows.remove(current)
            if not group.rows:
                validation.model_groups.remove(group)
            return validation

    def remove_unmatched_row(self, session_id: str, row_index: int) -> ValidationResult:
        with self._locked(session_id) as session:
            validation = self._require_validated(session, "remove rows from")
            for unmatched in validation.unmatched_data:
                if unmatched.row_index == row_index:
                    validation.unmatched_data.remove(unmatched)
                    return validation
            raise RowNotFoundError(f"Unmatched row {row_index} not found")
