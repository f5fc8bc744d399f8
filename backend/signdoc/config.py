from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # Application
    app_name: str = "SignDoc"
    app_version: str = "1.0.0"
    environment: str = "production"
    debug: bool = False

    # Database
    database_url: str = "postgresql+asyncpg://signdoc:signdoc@db:5432/signdoc"
    auto_create_schema: bool = False

    # Auth (tokens are issued by the identity service; we only verify them)
    secret_key: str = "CHANGE_ME"
    jwt_algorithm: str = "HS256"
    jwt_access_token_expire_minutes: int = 60 * 24

    # Documents
    public_base_url: str = "http://localhost:3000"
    document_id_prefix: str = "3DO-"
    document_id_length: int = 12
    store_max_retries: int = 3

    # Signature preview frame
    preview_width: int = 300
    preview_height: int = 120
    preview_padding: int = 10
    preview_stroke_width: float = 2.0
    preview_default_color: str = "#000000"

    # Logging
    log_level: str = "INFO"
    log_json: bool = True

    # CORS
    backend_cors_origins: list[str] = ["http://localhost", "http://localhost:3000"]

    model_config = {"env_file": ".env", "case_sensitive": False}


settings = Settings()
