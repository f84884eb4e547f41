"""
Bulk data-import pipeline.

Parses uploaded CSV, spreadsheet and JSON exports, detects which registered
record type each row belongs to, validates and coerces every field, and
commits the valid rows from a time-bounded import session.
"""
