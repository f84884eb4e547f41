"""
Pytest configuration and fixtures for the bulk import tests.

Every test that touches the record store gets its own SQLite file under
``tmp_path``, so tests never share rows and never need a running database.
"""

import os

# The app must not build the default pipeline (and its database) at import time.
os.environ.setdefault("SKIP_PIPELINE_INIT", "1")

import pytest

from bulk_import.db.records import RecordStore
from bulk_import.db.session import build_engine
from bulk_import.domain.imports.catalog import SchemaCatalog
from bulk_import.domain.imports.matcher import ModelMatcher
from bulk_import.domain.imports.orchestrator import ImportPipeline
from bulk_import.domain.imports.parser import FileParser
from bulk_import.domain.imports.validation import ValidationEngine

CATALOG_DEFINITIONS = [
    {
        "name": "Contact",
        "display_name": "Contact",
        "fields": [
            {"path": "firstName", "type": "string", "required": True},
            {"path": "lastName", "type": "string"},
            {"path": "email", "type": "string", "required": True, "format": "email"},
            {"path": "phone", "type": "string", "format": "phone"},
        ],
        "unique_fields": ["email"],
    },
    {
        "name": "Recipe",
        "display_name": "Recipe",
        "fields": [
            {"path": "title", "type": "string", "required": True},
            {"path": "category", "type": "enum", "enum": ["breakfast", "lunch", "dinner"], "required": True},
            {"path": "calories", "type": "number", "min": 0},
            {"path": "ingredients", "type": "array"},
            {"path": "tags", "type": "array", "item_type": "string"},
            {"path": "isPublic", "type": "boolean"},
            {"path": "authorId", "type": "reference"},
            {"path": "publishedAt", "type": "date"},
        ],
    },
    {
        "name": "NutritionGoal",
        "display_name": "Nutrition goal",
        "fields": [
            {"path": "clientRef", "type": "reference", "required": True, "aliases": ["client_id"]},
            {"path": "startDate", "type": "date", "required": True},
            {"path": "targets.calories", "type": "number", "min": 0},
            {"path": "targets.protein", "type": "number", "min": 0},
        ],
        "unique_fields": ["clientRef"],
    },
]


@pytest.fixture
def catalog() -> SchemaCatalog:
    return SchemaCatalog.from_definitions(CATALOG_DEFINITIONS)


@pytest.fixture
def parser() -> FileParser:
    return FileParser(max_file_size_mb=5)


@pytest.fixture
def matcher(catalog) -> ModelMatcher:
    return ModelMatcher(catalog, threshold=0.5, required_weight=0.7, field_weight=0.3)


@pytest.fixture
def validation_engine(catalog, matcher) -> ValidationEngine:
    return ValidationEngine(catalog, matcher, max_workers=2, chunk_size=2)


@pytest.fixture
def db_engine(tmp_path):
    sql_engine = build_engine(f"sqlite:///{tmp_path / 'records.db'}")
    yield sql_engine
    sql_engine.dispose()


@pytest.fixture
def store(db_engine) -> RecordStore:
    return RecordStore(db_engine)


@pytest.fixture
def make_pipeline(catalog, store, validation_engine):
    """Build a pipeline over the test store in the requested commit mode."""

    def _make(commit_mode: str = "transactional") -> ImportPipeline:
        return ImportPipeline(catalog, store, commit_mode=commit_mode, validation_engine=validation_engine)

    return _make
