"""
Commit service: writes the valid rows of a validation snapshot.

Two modes, fixed when the service is built:

* ``transactional``: one transaction spans every group. A duplicate or any
  store error aborts it and nothing is persisted.
* ``best-effort``: each group is written in its own transaction. Rows that
  collide on a unique field, whether caught by the lookup or by the database
  constraint, are skipped and reported as duplicates while the rest of the
  group is written; any other store error rolls back that group only. Groups
  committed earlier stay committed.

Invalid and unmatched rows never reach the store.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Collection, Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError

from bulk_import.core.config import settings
from bulk_import.db.records import DuplicateRecordError, RecordStore
from bulk_import.domain.imports.catalog import SchemaCatalog
from bulk_import.domain.imports.validation import ModelGroup, ValidationResult
from bulk_import.utils.serialization import make_json_safe

logger = logging.getLogger(__name__)


class CommitMode(str, Enum):
    TRANSACTIONAL = "transactional"
    BEST_EFFORT = "best-effort"


def resolve_commit_mode(configured: str, store: RecordStore) -> CommitMode:
    """Turn the configured mode into a concrete one; ``auto`` asks the store."""
    if configured == "auto":
        return CommitMode.TRANSACTIONAL if store.supports_transactions else CommitMode.BEST_EFFORT
    mode = CommitMode(configured)
    if mode is CommitMode.TRANSACTIONAL and not store.supports_transactions:
        raise ValueError("Transactional commit requested but the record store does not support transactions")
    return mode


@dataclass
class CommitError:
    field: Optional[str]
    reason: str
    message: str
    row_index: Optional[int] = None
    value: Any = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "row_index": self.row_index,
            "field": self.field,
            "reason": self.reason,
            "message": self.message,
            "value": make_json_safe(self.value),
        }


@dataclass
class GroupCommitResult:
    model_name: str
    inserted_count: int = 0
    failed_count: int = 0
    status: str = "pending"
    errors: List[CommitError] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "model_name": self.model_name,
            "inserted_count": self.inserted_count,
            "failed_count": self.failed_count,
            "status": self.status,
            "errors": [error.to_dict() for error in self.errors],
        }


@dataclass
class CommitReport:
    mode: CommitMode
    groups: List[GroupCommitResult] = field(default_factory=list)
    rolled_back: bool = False
    error: Optional[str] = None

    @property
    def success(self) -> bool:
        return not self.rolled_back and all(group.status != "failed" for group in self.groups)

    @property
    def inserted_count(self) -> int:
        return sum(group.inserted_count for group in self.groups)

    @property
    def committed_groups(self) -> List[str]:
        return [group.model_name for group in self.groups if group.status == "committed"]

    @property
    def failed_groups(self) -> List[str]:
        return [group.model_name for group in self.groups if group.status == "failed"]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "mode": self.mode.value,
            "rolled_back": self.rolled_back,
            "error": self.error,
            "inserted_count": self.inserted_count,
            "per_group_result": [group.to_dict() for group in self.groups],
        }


def _duplicate_error(row_index: int, exc: DuplicateRecordError) -> CommitError:
    return CommitError(field=exc.field, reason="duplicate", message=exc.message, row_index=row_index, value=exc.value)


class _GroupAborted(Exception):
    def __init__(self, model_name: str, cause: Exception):
        self.model_name = model_name
        self.cause = cause
        super().__init__(str(cause))


class CommitService:
    def __init__(self, store: RecordStore, catalog: SchemaCatalog, mode: Optional[str] = None):
        self.store = store
        self.catalog = catalog
        self.mode = resolve_commit_mode(mode or settings.commit_mode, store)
        logger.info("Commit service running in %s mode", self.mode.value)

    def commit(
        self,
        validation: ValidationResult,
        session_id: str,
        skip_groups: Collection[str] = (),
    ) -> CommitReport:
        """
        Write every group with valid rows, except ``skip_groups`` (groups a
        previous best-effort commit already wrote).
        """
        groups = [g for g in validation.model_groups if g.valid_count > 0 and g.model_name not in skip_groups]
        try:
            self.store.ensure_tables(self.catalog.require(g.model_name) for g in groups)
        except SQLAlchemyError as exc:
            logger.error("Commit of session %s could not reach the record store: %s", session_id, exc)
            return self._unreachable_report(groups, exc)

        if self.mode is CommitMode.TRANSACTIONAL:
            report = self._commit_transactional(groups, session_id)
        else:
            report = self._commit_best_effort(groups, session_id)

        logger.info(
            "Session %s commit (%s): success=%s inserted=%d rolled_back=%s failed_groups=%s",
            session_id,
            self.mode.value,
            report.success,
            report.inserted_count,
            report.rolled_back,
            report.failed_groups,
        )
        return report

    def _unreachable_report(self, groups: List[ModelGroup], exc: SQLAlchemyError) -> CommitReport:
        report = CommitReport(mode=self.mode, error=str(exc))
        for group in groups:
            report.groups.append(
                GroupCommitResult(
                    model_name=group.model_name,
                    failed_count=group.valid_count,
                    status="failed",
                    errors=[CommitError(field=None, reason="error", message=str(exc))],
                )
            )
        return report

    def _insert_group(self, conn, group: ModelGroup, result: GroupCommitResult, session_id: str, stop_on_duplicate: bool):
        record_type = self.catalog.require(group.model_name)
        for row in group.valid_rows():
            try:
                self.store.insert(conn, record_type, row.coerced_value, session_id)
            except DuplicateRecordError as exc:
                result.failed_count += 1
                result.errors.append(_duplicate_error(row.row_index, exc))
                if stop_on_duplicate:
                    raise _GroupAborted(group.model_name, exc) from exc
                continue
            except SQLAlchemyError as exc:
                raise _GroupAborted(group.model_name, exc) from exc
            result.inserted_count += 1

    def _commit_transactional(self, groups: List[ModelGroup], session_id: str) -> CommitReport:
        report = CommitReport(mode=CommitMode.TRANSACTIONAL)
        results = [GroupCommitResult(model_name=g.model_name) for g in groups]
        report.groups = results

        try:
            with self.store.engine.begin() as conn:
                for group, result in zip(groups, results):
                    self._insert_group(conn, group, result, session_id, stop_on_duplicate=True)
        except (_GroupAborted, SQLAlchemyError) as exc:
            failed_model = exc.model_name if isinstance(exc, _GroupAborted) else None
            logger.warning("Transactional commit of session %s aborted: %s", session_id, exc)
            report.rolled_back = True
            report.error = str(exc)
            for group, result in zip(groups, results):
                result.inserted_count = 0
                if group.model_name == failed_model:
                    result.status = "failed"
                    if not result.errors:
                        result.errors.append(CommitError(field=None, reason="error", message=str(exc)))
                else:
                    result.status = "rolled_back"
            return report

        for result in results:
            result.status = "committed"
        return report

    def _commit_best_effort(self, groups: List[ModelGroup], session_id: str) -> CommitReport:
        report = CommitReport(mode=CommitMode.BEST_EFFORT)
        for group in groups:
            result = GroupCommitResult(model_name=group.model_name)
            report.groups.append(result)
            try:
                with self.store.engine.begin() as conn:
                    self._insert_group(conn, group, result, session_id, stop_on_duplicate=False)
            except (_GroupAborted, SQLAlchemyError) as exc:
                logger.error("Best-effort commit of group %s in session %s failed: %s", group.model_name, session_id, exc)
                result.status = "failed"
                # The group's transaction was rolled back; nothing from it is stored
                result.inserted_count = 0
                result.failed_count = group.valid_count
                result.errors.append(CommitError(field=None, reason="error", message=str(exc)))
                continue
            result.status = "committed"
        return report
