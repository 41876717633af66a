from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # Database settings
    DATABASE_URL: str

    # Logging
    LOG_LEVEL: str = "INFO"

    # Subsystem switch; when off, sync batches return without touching files
    FILESTORAGE_ENABLED: bool = True

    # Backend selection
    DEFAULT_BACKEND_TYPE: str = "local"  # local | s3 | spaces | gcs | azure
    DEFAULT_BACKEND_CONFIG: str | None = None
    LOCAL_STORAGE_PATH: str = "storage/files"
    LOCAL_STORAGE_URL: str = "/files"
    ENTITY_TABLE_PREFIX: str = "civicrm_"

    # Placement and policy rules (JSON lists in the environment)
    # e.g. [{"mime_pattern": "image/*", "backend": "s3", "max_size": 10485760}]
    PLACEMENT_RULES: list[dict] = []
    # e.g. [{"entity_type": "activity", "visibility": "private"}]
    VISIBILITY_RULES: list[dict] = []
    DEFAULT_VISIBILITY: str = "private"
    DELETE_AFTER_SYNC: bool = False
    # e.g. [{"source": "local", "target": "s3", "delete": true}]
    DELETE_RULES: list[dict] = []

    # Sync and migration settings
    SYNC_BATCH_SIZE: int = 100
    MIGRATION_BATCH_SIZE: int = 50
    LARGE_FILE_THRESHOLD_BYTES: int = 50 * 1024 * 1024
    SYNC_LOCK_PATH: str = "storage/.sync.lock"
    SYNC_LOCK_TIMEOUT_SECONDS: float = 0

    # URL settings
    URL_DEFAULT_TTL: int = 3600
    URL_MAX_TTL: int = 86400

    # Upload validation
    MAX_UPLOAD_SIZE_MB: int = 50
    BLOCKED_MIME_TYPES: list[str] = [
        "application/x-executable",
        "application/x-sh",
        "text/x-php",
    ]

    model_config = {"env_file": ".env", "extra": "ignore"}


settings = Settings()
