from typing import Optional

from pydantic import ConfigDict
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    database_url: str = "sqlite:///./crm_import.db"
    debug: bool = True
    date_default_dayfirst: bool = False
    log_level: str = "INFO"
    # Level for the import pipeline (parser, matching, runner); falls back to log_level
    import_log_level: Optional[str] = None
    allowed_origins: str = "http://localhost:5173,http://localhost:3000"

    # Upload + preview
    upload_max_file_size_mb: int = 5
    preview_rows: int = 5
    parsed_file_cache_ttl_seconds: int = 300
    mapping_similarity_threshold: float = 0.6

    # Files above these row counts run as background jobs
    contact_async_threshold: int = 1000
    deal_async_threshold: int = 500

    # Rows per cooperative unit of work (deals pay for contact lookups)
    contact_chunk_size: int = 50
    deal_chunk_size: int = 30

    # Job book-keeping
    job_error_retention: int = 1000
    status_error_limit: int = 100
    job_retention_seconds: int = 3600

    model_config = ConfigDict(env_file=".env", extra="ignore")


settings = Settings()
