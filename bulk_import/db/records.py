"""
Record store: one SQL table per record-type collection.

Imported documents are stored whole in a JSON column. Fields a record type
declares as unique get their own indexed column with a unique constraint so
duplicate detection is a cheap lookup and the database enforces it as a
backstop.
"""

import logging
import re
import threading
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from sqlalchemy import Column, DateTime, MetaData, String, Table, func, select
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import IntegrityError
from sqlalchemy.types import JSON

from bulk_import.domain.imports.catalog import RecordTypeDescriptor
from bulk_import.utils.serialization import make_json_safe

logger = logging.getLogger(__name__)

# Columns the store manages itself; user fields never map onto these
SYSTEM_COLUMNS = ("_id", "_import_session_id", "_imported_at")

_MISSING = object()


class DuplicateRecordError(Exception):
    """Raised when a document collides with an existing record on a unique field."""

    def __init__(
        self,
        collection: str,
        field: str,
        value: Any,
        message: Optional[str] = None,
        constraint_violation: bool = False,
    ):
        self.collection = collection
        self.field = field
        self.value = value
        # True when the database constraint rejected the write rather than the lookup
        self.constraint_violation = constraint_violation
        self.message = message or f"Duplicate value {value!r} for unique field '{field}' in '{collection}'"
        super().__init__(self.message)


def unique_column_name(path: str) -> str:
    return "uq_" + re.sub(r"[^a-z0-9_]+", "_", path.replace(".", "__").lower()).strip("_")


def unique_key(value: Any) -> str:
    """Comparable text form of a unique-field value."""
    safe = make_json_safe(value)
    return safe.strip() if isinstance(safe, str) else str(safe)


def lookup_path(document: Mapping[str, Any], path: str) -> Any:
    current: Any = document
    for part in path.split("."):
        if not isinstance(current, Mapping) or part not in current:
            return _MISSING
        current = current[part]
    return current


class RecordStore:
    """SQLAlchemy Core access to record-type tables."""

    def __init__(self, engine: Engine):
        self.engine = engine
        self.metadata = MetaData()
        self._tables: Dict[str, Table] = {}
        self._created: set = set()
        self._lock = threading.Lock()

    @property
    def supports_transactions(self) -> bool:
        # Every SQL backend SQLAlchemy drives here can wrap several inserts in one transaction
        return True

    def table_for(self, record_type: RecordTypeDescriptor) -> Table:
        with self._lock:
            table = self._tables.get(record_type.collection)
            if table is None:
                unique_columns = [
                    Column(unique_column_name(path), String(512), unique=True, nullable=True)
                    for path in record_type.unique_fields
                ]
                table = Table(
                    record_type.collection,
                    self.metadata,
                    Column("_id", String(32), primary_key=True),
                    Column("document", JSON, nullable=False),
                    *unique_columns,
                    Column("_import_session_id", String(64), index=True),
                    Column("_imported_at", DateTime(timezone=True), nullable=False),
                )
                self._tables[record_type.collection] = table
            return table

    def ensure_tables(self, record_types: Iterable[RecordTypeDescriptor]) -> None:
        pending = []
        for record_type in record_types:
            table = self.table_for(record_type)
            if table.name not in self._created:
                pending.append(table)
        if not pending:
            return
        self.metadata.create_all(self.engine, tables=pending, checkfirst=True)
        with self._lock:
            self._created.update(table.name for table in pending)
        logger.info("Ensured record tables: %s", [table.name for table in pending])

    def count(self, record_type: RecordTypeDescriptor) -> int:
        self.ensure_tables([record_type])
        table = self.table_for(record_type)
        with self.engine.connect() as conn:
            return conn.execute(select(func.count()).select_from(table)).scalar_one()

    def fetch_documents(self, record_type: RecordTypeDescriptor) -> List[Dict[str, Any]]:
        self.ensure_tables([record_type])
        table = self.table_for(record_type)
        with self.engine.connect() as conn:
            rows = conn.execute(select(table.c.document).order_by(table.c["_imported_at"], table.c["_id"]))
            return [row.document for row in rows]

    def _unique_values(self, record_type: RecordTypeDescriptor, document: Mapping[str, Any]) -> Dict[str, Optional[str]]:
        values = {}
        for path in record_type.unique_fields:
            value = lookup_path(document, path)
            values[path] = None if value is _MISSING or value is None else unique_key(value)
        return values

    def find_duplicate(
        self, conn: Connection, record_type: RecordTypeDescriptor, document: Mapping[str, Any]
    ) -> Optional[Tuple[str, str]]:
        """Return (field, value) of the first unique field already taken, if any."""
        table = self.table_for(record_type)
        for path, key in self._unique_values(record_type, document).items():
            if key is None:
                continue
            column = table.c[unique_column_name(path)]
            existing = conn.execute(select(table.c["_id"]).where(column == key).limit(1)).first()
            if existing is not None:
                return path, key
        return None

    def insert(
        self,
        conn: Connection,
        record_type: RecordTypeDescriptor,
        document: Mapping[str, Any],
        session_id: str,
    ) -> str:
        """
        Insert one document inside the caller's transaction.

        Raises:
            DuplicateRecordError: If a unique field value is already stored.
        """
        duplicate = self.find_duplicate(conn, record_type, document)
        if duplicate is not None:
            raise DuplicateRecordError(record_type.collection, *duplicate)

        table = self.table_for(record_type)
        record_id = uuid.uuid4().hex
        values = {
            "_id": record_id,
            "document": make_json_safe(dict(document)),
            "_import_session_id": session_id,
            "_imported_at": datetime.now(timezone.utc),
        }
        unique_values = self._unique_values(record_type, document)
        for path, key in unique_values.items():
            values[unique_column_name(path)] = key

        try:
            # A savepoint per row keeps the caller's transaction usable after a constraint violation
            with conn.begin_nested():
                conn.execute(table.insert().values(**values))
        except IntegrityError as exc:
            # Lost a race with a concurrent commit; name the field the database complained about
            detail = str(exc.orig)
            field = next(
                (path for path in record_type.unique_fields if unique_column_name(path) in detail),
                record_type.unique_fields[0] if record_type.unique_fields else "_id",
            )
            raise DuplicateRecordError(
                record_type.collection, field, unique_values.get(field), constraint_violation=True
            ) from exc
        return record_id
