from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",   # ignore unknown keys in .env
    )

    DATABASE_URL: str

    JWT_SECRET: str
    JWT_ALG: str = "HS256"

    # Transaction lifecycle windows
    PAYMENT_WINDOW_MINUTES: int = 120
    CONFIRMATION_WINDOW_MINUTES: int = 3 * 24 * 60

    # Payment proof uploads
    PROOF_MAX_BYTES: int = 1024 * 1024
    PROOF_ALLOWED_EXTENSIONS: list[str] = ["jpg", "jpeg", "png", "webp"]

    SWEEPER_ENABLED: bool = True
    SWEEP_INTERVAL_SECONDS: int = 300

    STORAGE_API_URL: str = "http://localhost:9000"
    STORAGE_API_TOKEN: str = "change-me"
    STORAGE_TIMEOUT_SECONDS: int = 15

    MAIL_API_URL: str = "http://localhost:8025"
    MAIL_API_TOKEN: str = "change-me"
    MAIL_FROM: str = "no-reply@localhost"
    FRONTEND_URL: str = "http://localhost:3000"

    LOG_LEVEL: str = "INFO"


settings = Settings()
