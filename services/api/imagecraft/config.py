# services/api/imagecraft/config.py

from pydantic_settings import BaseSettings

class Settings(BaseSettings):
    APP_ENV: str = "production"  # "development" adds error details to responses
    LOG_LEVEL: str = "INFO"

    # Media provider (Cloudinary)
    CLOUDINARY_CLOUD_NAME: str | None = None
    CLOUDINARY_API_KEY: str | None = None
    CLOUDINARY_API_SECRET: str | None = None
    PROVIDER_TIMEOUT_SEC: float = 30.0
    PROBE_TIMEOUT_SEC: float = 30.0

    # Rate limiting + handoff slots live in Redis when configured,
    # otherwise in process memory (dev).
    REDIS_URL: str | None = None
    RATE_LIMIT_MAX_REQUESTS: int = 10
    RATE_LIMIT_WINDOW_SEC: int = 10
    RATE_LIMIT_FAIL_OPEN: bool = True

    MAX_UPLOAD_MB: int = 10

    HANDOFF_TTL_MIN: int = 30
    SESSION_COOKIE_NAME: str = "imagecraft_sid"

    # Identity provider
    SESSION_SECRET: str = "dev-only-change-me"
    SIGN_IN_URL: str = "/sign-in"
    SESSION_TOKEN_COOKIE: str = "__session"

    # Download proxy only fetches from these hosts
    DOWNLOAD_ALLOWED_HOSTS: list[str] = ["res.cloudinary.com"]

    @property
    def is_development(self) -> bool:
        return self.APP_ENV.lower() == "development"

    @property
    def max_upload_bytes(self) -> int:
        return int(self.MAX_UPLOAD_MB) * 1024 * 1024

settings = Settings()
