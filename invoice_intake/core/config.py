
from pydantic import Field
from pydantic_settings import BaseSettings

class Settings(BaseSettings):
    app_name: str = Field("invoice-intake", alias="APP_NAME")
    app_env: str = Field("dev", alias="APP_ENV")
    log_level: str = Field("INFO", alias="LOG_LEVEL")

    # Document understanding ("openai" or "azure")
    document_model: str = Field("openai", alias="DOCUMENT_MODEL")
    openai_api_key: str | None = Field(default=None, alias="OPENAI_API_KEY")
    openai_model: str = Field("gpt-4o", alias="OPENAI_MODEL")

    # Azure Document Intelligence
    az_di_endpoint: str | None = Field(default=None, alias="AZ_DI_ENDPOINT")
    az_di_api_key: str | None = Field(default=None, alias="AZ_DI_API_KEY")

    # Google OAuth client (consent flow lives outside this service)
    google_client_id: str | None = Field(default=None, alias="GOOGLE_CLIENT_ID")
    google_client_secret: str | None = Field(default=None, alias="GOOGLE_CLIENT_SECRET")
    token_db_path: str = Field("credentials.db", alias="TOKEN_DB_PATH")

    # Archive (Drive) and ledger (Sheets)
    drive_root_folder_id: str | None = Field(default=None, alias="GOOGLE_DRIVE_ROOT_FOLDER_ID")
    ledger_sheet_id: str | None = Field(default=None, alias="GOOGLE_SHEET_ID")
    ledger_range: str = Field("Sheet1!A:K", alias="LEDGER_RANGE")
    ledger_invoice_number_range: str = Field("Sheet1!C:C", alias="LEDGER_INVOICE_NUMBER_RANGE")
    ledger_include_sender: bool = Field(False, alias="LEDGER_INCLUDE_SENDER")

    # Scan behaviour
    scan_batch_size: int = Field(1, alias="SCAN_BATCH_SIZE")  # 1 = strict serial
    scan_max_messages: int = Field(50, alias="SCAN_MAX_MESSAGES")
    scan_default_lookback_hours: int = Field(24, alias="SCAN_DEFAULT_LOOKBACK_HOURS")
    remote_timeout_seconds: float = Field(60.0, alias="REMOTE_TIMEOUT_SECONDS")
    progress_queue_size: int = Field(100, alias="PROGRESS_QUEUE_SIZE")

    # Optional JSON file with the ordered entity registry
    entity_registry_path: str | None = Field(default=None, alias="ENTITY_REGISTRY_PATH")

    # CORS allowed origins (comma-separated list)
    cors_origins: str = Field("http://localhost:5173,http://127.0.0.1:5173", alias="CORS_ORIGINS")

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "populate_by_name": True}

settings = Settings()
