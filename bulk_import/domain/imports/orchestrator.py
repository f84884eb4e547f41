"""
Import pipeline orchestration.

``ImportPipeline`` wires the stages together: parse -> match/validate ->
session -> commit. It is the single entry point the HTTP layer (or any other
host) calls; each stage stays usable on its own for tests and tooling.
"""

import logging
import time
from typing import Any, Dict, List, Optional

from sqlalchemy.engine import Engine

from bulk_import.core.config import settings
from bulk_import.db.records import RecordStore
from bulk_import.domain.imports.catalog import SchemaCatalog, load_catalog
from bulk_import.domain.imports.commit import CommitService
from bulk_import.domain.imports.exports import ExportFile, generate_export_files
from bulk_import.domain.imports.matcher import ModelMatcher
from bulk_import.domain.imports.parser import FileParseError, FileParser
from bulk_import.domain.imports.sessions import ImportSessionService
from bulk_import.domain.imports.validation import ValidationEngine, ValidationResult

logger = logging.getLogger(__name__)


def build_upload_payload(
    session_id: str,
    file_type: str,
    headers: List[str],
    validation: ValidationResult,
    warnings: Optional[List[str]] = None,
) -> Dict[str, Any]:
    return {
        "session_id": session_id,
        "file_type": file_type,
        "total_rows": validation.total_rows,
        "headers": list(headers),
        "validation": validation.summary(),
        "model_groups": [group.to_dict() for group in validation.model_groups],
        "unmatched_data": [row.to_dict() for row in validation.unmatched_data],
        "all_errors": [error.to_dict() for error in validation.all_errors],
        "warnings": list(warnings or []),
    }


class ImportPipeline:
    def __init__(
        self,
        catalog: SchemaCatalog,
        store: RecordStore,
        *,
        commit_mode: Optional[str] = None,
        parser: Optional[FileParser] = None,
        validation_engine: Optional[ValidationEngine] = None,
        session_service: Optional[ImportSessionService] = None,
    ):
        self.catalog = catalog
        self.store = store
        self.parser = parser or FileParser()
        self.validation_engine = validation_engine or ValidationEngine(catalog, ModelMatcher(catalog))
        self.commit_service = CommitService(store, catalog, mode=commit_mode)
        self.sessions = session_service or ImportSessionService(self.validation_engine, self.commit_service)

    @classmethod
    def from_settings(cls, engine: Engine, catalog: Optional[SchemaCatalog] = None) -> "ImportPipeline":
        if catalog is None:
            catalog = load_catalog(settings.catalog_path) if settings.catalog_path else SchemaCatalog()
            if not len(catalog):
                logger.warning("No catalog configured (CATALOG_PATH is empty); every row will be unmatched")
        return cls(catalog, RecordStore(engine))

    @property
    def commit_mode(self) -> str:
        return self.commit_service.mode.value

    def upload(self, content: bytes, file_name: str, force_model_type: Optional[str] = None) -> Dict[str, Any]:
        """
        Parse and validate an uploaded file and open a session for it.

        Raises:
            FileParseError: The file could not be read; no session is created.
            UnknownRecordTypeError: ``force_model_type`` is not registered.
        """
        start = time.perf_counter()
        if force_model_type:
            # Fail before any work on a bad hint
            self.catalog.require(force_model_type)

        parsed = self.parser.parse(content, file_name)
        if not parsed.success:
            raise FileParseError(parsed)

        validation = self.validation_engine.validate_all(parsed.rows, force_model_type)
        session = self.sessions.create_session(file_name)
        self.sessions.attach_validation(
            session.id,
            validation,
            file_type=parsed.file_type,
            headers=parsed.headers,
            parse_warnings=parsed.warnings,
        )

        logger.info(
            "Upload '%s' -> session %s: %d rows (%d valid, %d invalid, %d unmatched) in %.2fs",
            file_name,
            session.id,
            validation.total_rows,
            validation.valid_rows,
            validation.invalid_rows,
            validation.unmatched_rows,
            time.perf_counter() - start,
        )
        return build_upload_payload(session.id, parsed.file_type, parsed.headers, validation, parsed.warnings)

    def commit(self, session_id: str) -> Dict[str, Any]:
        return self.sessions.commit(session_id).to_dict()

    def discard(self, session_id: str) -> None:
        self.sessions.discard(session_id)

    def session_payload(self, session_id: str) -> Dict[str, Any]:
        session = self.sessions.get_session(session_id)
        payload = session.summary()
        if session.validation is not None:
            payload.update(
                build_upload_payload(
                    session.id, session.file_type, session.headers, session.validation, session.parse_warnings
                )
            )
        if session.commit_report is not None:
            payload["last_commit"] = session.commit_report.to_dict()
        return payload

    def export_files(self, session_id: str) -> List[ExportFile]:
        session = self.sessions.get_session(session_id)
        if session.validation is None:
            return []
        return generate_export_files(session.validation)
