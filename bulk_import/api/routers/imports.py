"""
Bulk import endpoints: upload, review, edit, commit and discard import sessions.
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile

from bulk_import.api.dependencies import get_pipeline
from bulk_import.api.schemas.shared import (
    CommitResponse,
    ExportsResponse,
    ImportTemplateResponse,
    ModelsResponse,
    RowUpdateRequest,
    RowUpdateResponse,
    SessionResponse,
    UploadResponse,
)
from bulk_import.domain.imports.catalog import UnknownRecordTypeError
from bulk_import.domain.imports.exports import build_import_template
from bulk_import.domain.imports.orchestrator import ImportPipeline
from bulk_import.domain.imports.parser import FileParseError
from bulk_import.domain.imports.sessions import (
    RowNotFoundError,
    SessionExpiredError,
    SessionNotFoundError,
    SessionStateError,
)

router = APIRouter(prefix="/imports", tags=["imports"])

logger = logging.getLogger(__name__)


def _raise_session_error(exc: Exception) -> None:
    if isinstance(exc, SessionExpiredError):
        raise HTTPException(status_code=410, detail=str(exc)) from exc
    if isinstance(exc, SessionStateError):
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    if isinstance(exc, (SessionNotFoundError, RowNotFoundError, UnknownRecordTypeError)):
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    raise exc


@router.get("/models", response_model=ModelsResponse)
def list_models(pipeline: ImportPipeline = Depends(get_pipeline)):
    """List the record types rows can be imported as."""
    return {
        "record_types": [
            {
                "name": rt.name,
                "display_name": rt.display_name,
                "description": rt.description,
                "required_fields": sorted(rt.required_fields),
                "unique_fields": list(rt.unique_fields),
                "fields": [
                    {
                        "path": f.path,
                        "type": f.type.value,
                        "required": f.required,
                        "enum_values": sorted(f.enum_values),
                        "aliases": list(f.aliases),
                    }
                    for f in rt.fields
                ],
            }
            for rt in pipeline.catalog
        ]
    }


@router.get("/templates/{model_name}", response_model=ImportTemplateResponse)
def get_import_template(model_name: str, pipeline: ImportPipeline = Depends(get_pipeline)):
    """Header row and example values for a record type, as JSON and CSV."""
    try:
        record_type = pipeline.catalog.require(model_name)
    except UnknownRecordTypeError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return build_import_template(record_type).to_dict()


@router.post("/upload", response_model=UploadResponse)
def upload_file(
    file: UploadFile = File(...),
    force_model_type: Optional[str] = Form(None),
    pipeline: ImportPipeline = Depends(get_pipeline),
):
    """
    Parse and validate an uploaded file and open an import session.

    Parameters:
    - file: CSV, Excel or JSON export
    - force_model_type: Optional record type name; skips detection

    Returns:
    - Session id, per-group validation results, unmatched rows and every field error
    """
    file_name = file.filename or "upload"
    content = file.file.read()
    logger.info("Received upload '%s' (%d bytes, forced type=%s)", file_name, len(content), force_model_type)

    try:
        return pipeline.upload(content, file_name, force_model_type=force_model_type or None)
    except FileParseError as exc:
        raise HTTPException(
            status_code=400,
            detail={"message": "File could not be parsed", "errors": exc.result.errors},
        ) from exc
    except UnknownRecordTypeError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc


@router.get("/sessions/{session_id}", response_model=SessionResponse)
def get_session(session_id: str, pipeline: ImportPipeline = Depends(get_pipeline)):
    try:
        return pipeline.session_payload(session_id)
    except SessionNotFoundError as exc:
        _raise_session_error(exc)


@router.post("/sessions/{session_id}/commit", response_model=CommitResponse)
def commit_session(session_id: str, pipeline: ImportPipeline = Depends(get_pipeline)):
    """
    Write the session's valid rows.

    A rolled-back transactional commit or a failed best-effort group is still
    a 200 response; ``success`` and ``per_group_result`` say what happened.
    """
    try:
        return pipeline.commit(session_id)
    except (SessionNotFoundError, SessionStateError) as exc:
        _raise_session_error(exc)


@router.delete("/sessions/{session_id}")
def discard_session(session_id: str, pipeline: ImportPipeline = Depends(get_pipeline)):
    try:
        pipeline.discard(session_id)
    except (SessionNotFoundError, SessionStateError) as exc:
        _raise_session_error(exc)
    return {"success": True, "session_id": session_id, "status": "discarded"}


@router.patch("/sessions/{session_id}/groups/{model_name}/rows/{row_index}", response_model=RowUpdateResponse)
def update_row(
    session_id: str,
    model_name: str,
    row_index: int,
    request: RowUpdateRequest,
    pipeline: ImportPipeline = Depends(get_pipeline),
):
    """Edit one row's values and re-validate it against its record type."""
    try:
        row = pipeline.sessions.update_row(session_id, model_name, row_index, request.values)
        validation = pipeline.sessions.get_session(session_id).validation
    except (SessionNotFoundError, SessionStateError, RowNotFoundError, UnknownRecordTypeError) as exc:
        _raise_session_error(exc)
    return {"row": row.to_dict(), "validation": validation.summary()}


@router.delete("/sessions/{session_id}/groups/{model_name}/rows/{row_index}")
def remove_row(
    session_id: str,
    model_name: str,
    row_index: int,
    pipeline: ImportPipeline = Depends(get_pipeline),
):
    try:
        validation = pipeline.sessions.remove_row(session_id, model_name, row_index)
    except (SessionNotFoundError, SessionStateError, RowNotFoundError, UnknownRecordTypeError) as exc:
        _raise_session_error(exc)
    return {"success": True, "validation": validation.summary()}


@router.delete("/sessions/{session_id}/unmatched/{row_index}")
def remove_unmatched_row(session_id: str, row_index: int, pipeline: ImportPipeline = Depends(get_pipeline)):
    try:
        validation = pipeline.sessions.remove_unmatched_row(session_id, row_index)
    except (SessionNotFoundError, SessionStateError, RowNotFoundError) as exc:
        _raise_session_error(exc)
    return {"success": True, "validation": validation.summary()}


@router.get("/sessions/{session_id}/exports", response_model=ExportsResponse)
def get_exports(session_id: str, pipeline: ImportPipeline = Depends(get_pipeline)):
    """Per-group CSV/JSON exports of the session snapshot, plus unmatched rows."""
    try:
        exports = pipeline.export_files(session_id)
    except SessionNotFoundError as exc:
        _raise_session_error(exc)
    return {"session_id": session_id, "exports": [export.to_dict() for export in exports]}
