from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


class FieldSummary(BaseModel):
    path: str
    type: str
    required: bool = False
    enum_values: List[str] = Field(default_factory=list)
    aliases: List[str] = Field(default_factory=list)


class RecordTypeSummary(BaseModel):
    name: str
    display_name: str
    description: str = ""
    required_fields: List[str]
    unique_fields: List[str] = Field(default_factory=list)
    fields: List[FieldSummary]


class ModelsResponse(BaseModel):
    record_types: List[RecordTypeSummary]


class FieldErrorModel(BaseModel):
    model_config = ConfigDict(protected_namespaces=())

    field: str
    message: str
    value: Any = None
    error_type: str
    row_index: Optional[int] = None
    model_name: Optional[str] = None


class ValidationSummary(BaseModel):
    total_rows: int
    valid_rows: int
    invalid_rows: int
    unmatched_rows: int
    can_save: bool


class RowResultModel(BaseModel):
    row_index: int
    record_type: str
    confidence: float
    is_valid: bool
    data: Dict[str, Any]
    coerced: Dict[str, Any]
    errors: List[FieldErrorModel] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)
    unmapped_fields: List[str] = Field(default_factory=list)
    empty_fields: List[str] = Field(default_factory=list)


class ModelGroupModel(BaseModel):
    model_config = ConfigDict(protected_namespaces=())

    model_name: str
    display_name: str
    valid_count: int
    invalid_count: int
    total_count: int
    rows: List[RowResultModel]


class UnmatchedRowModel(BaseModel):
    row_index: int
    data: Dict[str, Any]
    reason: str
    best_attempt: Optional[str] = None
    confidence: float
    required_coverage: float


class UploadResponse(BaseModel):
    session_id: str
    file_type: str
    total_rows: int
    headers: List[str]
    validation: ValidationSummary
    model_groups: List[ModelGroupModel]
    unmatched_data: List[UnmatchedRowModel]
    all_errors: List[FieldErrorModel]
    warnings: List[str] = Field(default_factory=list)


class CommitErrorModel(BaseModel):
    row_index: Optional[int] = None
    field: Optional[str] = None
    reason: str
    message: str
    value: Any = None


class GroupCommitModel(BaseModel):
    model_config = ConfigDict(protected_namespaces=())

    model_name: str
    inserted_count: int
    failed_count: int
    status: str
    errors: List[CommitErrorModel] = Field(default_factory=list)


class CommitResponse(BaseModel):
    success: bool
    mode: Literal["transactional", "best-effort"]
    rolled_back: bool = False
    error: Optional[str] = None
    inserted_count: int
    per_group_result: List[GroupCommitModel]


class SessionResponse(BaseModel):
    session_id: str
    file_name: str
    file_type: Optional[str] = None
    status: Literal["uploaded", "validated", "committed", "discarded", "expired"]
    created_at: str
    expires_at: str
    validated_at: Optional[str] = None
    committed_at: Optional[str] = None
    committed_groups: List[str] = Field(default_factory=list)
    validation: Optional[ValidationSummary] = None
    headers: List[str] = Field(default_factory=list)
    model_groups: List[ModelGroupModel] = Field(default_factory=list)
    unmatched_data: List[UnmatchedRowModel] = Field(default_factory=list)
    all_errors: List[FieldErrorModel] = Field(default_factory=list)
    last_commit: Optional[CommitResponse] = None


class RowUpdateRequest(BaseModel):
    values: Dict[str, Any] = Field(..., description="Column -> new raw value; merged into the row before re-validation")


class RowUpdateResponse(BaseModel):
    row: RowResultModel
    validation: ValidationSummary


class ExportFileModel(BaseModel):
    model_config = ConfigDict(protected_namespaces=())

    model_name: str
    file_name: str
    row_count: int
    csv_content: str
    json_content: str


class ExportsResponse(BaseModel):
    session_id: str
    exports: List[ExportFileModel]


class ImportTemplateResponse(BaseModel):
    model_config = ConfigDict(protected_namespaces=())

    model_name: str
    headers: List[str]
    example_row: Dict[str, Any]
    csv_template: str
