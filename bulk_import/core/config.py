from typing import Literal, Optional

from pydantic import ConfigDict
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    database_url: str = "sqlite:///./bulk_import.db"
    debug: bool = True
    log_level: str = "INFO"

    # Path to a JSON catalog of record-type definitions supplied by the host app
    catalog_path: str = ""

    date_default_dayfirst: bool = False
    upload_max_file_size_mb: int = 100

    # Model detection heuristics (tunable, not fixed law)
    match_confidence_threshold: float = 0.5
    match_required_weight: float = 0.7
    match_field_weight: float = 0.3
    # Row shapes whose scores are kept; distinct JSON key sets each take one slot
    match_cache_size: int = 1024

    # Validation worker pool; None means one worker per CPU
    validation_max_workers: Optional[int] = None
    validation_chunk_size: int = 500

    # Import sessions live in process memory
    session_ttl_seconds: int = 900
    session_max_entries: int = 256

    # "auto" asks the record store whether it supports multi-statement transactions
    commit_mode: Literal["auto", "transactional", "best-effort"] = "auto"

    model_config = ConfigDict(env_file=".env", extra="ignore")


settings = Settings()
