from typing import List

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
        extra="ignore",
    )

    APP_NAME: str = "atelier-messaging"
    LOG_LEVEL: str = "INFO"
    CORS_ORIGINS: str = "http://localhost:3000"

    MONGO_URL: str = "mongodb://localhost:27017"
    MONGO_DB: str = "atelier"
    # empty -> in-process bus (single worker only)
    # push suppression for open conversations reads the local socket registry,
    # so with several workers a recipient connected to another worker may
    # still get a device push
    REDIS_URL: str = ""

    JWT_SECRET: str = "change-me-to-a-long-random-signing-secret"
    JWT_ALGORITHM: str = "HS256"
    JWT_AUDIENCE: str = ""

    TYPING_IDLE_SECONDS: float = 2.0
    TYPING_DISPLAY_SECONDS: float = 3.0
    TYPING_RECORD_TTL_SECONDS: int = 10

    REALTIME_MAX_RECONNECTS: int = 5
    REALTIME_RECONNECT_DELAY_SECONDS: float = 0.5

    STORE_RETRY_ATTEMPTS: int = 3
    STORE_RETRY_DELAY_SECONDS: float = 0.2

    S3_ENDPOINT: str = ""
    S3_ACCESS_KEY: str = ""
    S3_SECRET_KEY: str = ""
    S3_BUCKET: str = "message-attachments"
    S3_REGION: str = "us-east-1"
    S3_PUBLIC_BASE_URL: str = ""
    MAX_ATTACHMENT_MB: int = 10
    ATTACHMENT_ALLOWED_MIME_TYPES: str = (
        "image/jpeg,image/png,image/gif,image/webp,application/pdf,"
        "application/zip,application/x-rar-compressed,application/vnd.rar,"
        "application/msword,"
        "application/vnd.openxmlformats-officedocument.wordprocessingml.document"
    )

    FCM_PROJECT_ID: str = ""
    FCM_SERVICE_ACCOUNT_FILE: str = ""

    @property
    def cors_origins_list(self) -> List[str]:
        return [o.strip() for o in self.CORS_ORIGINS.split(",") if o.strip()]

    @property
    def allowed_mime_types(self) -> set[str]:
        return {m.strip().lower() for m in self.ATTACHMENT_ALLOWED_MIME_TYPES.split(",") if m.strip()}


settings = Settings()
