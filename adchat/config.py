from pathlib import Path

from dotenv import load_dotenv
from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Load env values for components that read os.environ directly.
_project_root = Path(__file__).resolve().parents[1]
load_dotenv(_project_root / ".env", override=False)


class Settings(BaseSettings):
    ENVIRONMENT: str = "development"

    # Comma separated.
    BACKEND_CORS_ORIGINS: str = "http://localhost:5173"

    VIDEO_CHAT_API_BASE_URL: str | None = None
    VIDEO_CHAT_API_BEARER_TOKEN: str | None = None
    VIDEO_CHAT_TIMEOUT_SECONDS: float = 30.0
    # LLM replies can take a while; finalize produces the whole brief.
    VIDEO_CHAT_MESSAGE_TIMEOUT_SECONDS: float = 120.0
    VIDEO_CHAT_SUBMIT_TIMEOUT_SECONDS: float = 60.0
    VIDEO_CHAT_STATUS_TIMEOUT_SECONDS: float = 10.0
    # Avatar-only conversations: product id is optional and the reference image may be empty.
    VIDEO_CHAT_ALLOW_NO_PRODUCT: bool = True

    JOB_POLL_INTERVAL_SECONDS: float = 10.0
    JOB_POLL_MAX_CONSECUTIVE_NOT_FOUND: int = 3
    JOB_TRACKING_STALE_AFTER_SECONDS: float = 30 * 60
    JOB_NOTIFICATION_TTL_SECONDS: float = 10.0

    SETTLED_JOB_RETENTION_SECONDS: float = 15 * 60
    OPEN_CONVERSATION_IDLE_SECONDS: float = 60 * 60

    ARTIFACT_FETCH_LIMIT: int = 100

    @field_validator("JOB_POLL_MAX_CONSECUTIVE_NOT_FOUND")
    @classmethod
    def validate_not_found_budget(cls, value: int) -> int:
        if value < 1:
            raise ValueError("JOB_POLL_MAX_CONSECUTIVE_NOT_FOUND must be at least 1")
        return value

    @property
    def cors_origins(self) -> list[str]:
        return sorted({origin.strip() for origin in self.BACKEND_CORS_ORIGINS.split(",") if origin.strip()})

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")


settings = Settings()
