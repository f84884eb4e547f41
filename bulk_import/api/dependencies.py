"""
Shared dependencies for the API.

The pipeline (and with it the in-memory session store) is process-wide
state, built lazily on first use so importing the app never touches the
database. Tests swap it out through ``app.dependency_overrides``.
"""
import threading
from typing import Optional

from bulk_import.db.session import get_engine
from bulk_import.domain.imports.orchestrator import ImportPipeline

_pipeline: Optional[ImportPipeline] = None
_pipeline_lock = threading.Lock()


def get_pipeline() -> ImportPipeline:
    global _pipeline
    if _pipeline is None:
        with _pipeline_lock:
            if _pipeline is None:
                _pipeline = ImportPipeline.from_settings(get_engine())
    return _pipeline
