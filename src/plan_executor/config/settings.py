"""Application settings."""

from functools import lru_cache
import os
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

PROJECT_ROOT = Path(__file__).resolve().parents[3]


class Settings(BaseSettings):
    """Runtime settings loaded from environment variables."""

    app_name: str = "plan-executor"
    log_level: str = "INFO"
    execution_mode: str = "guided"
    max_tool_iterations: int = Field(default=50, ge=1)
    tool_max_retries: int = Field(default=2, ge=0)
    tool_retry_base_delay_s: float = Field(default=1.0, ge=0.0)
    tool_timeout_s: float = Field(default=120.0, ge=0.01)
    cancel_resume_window_s: float = Field(default=300.0, ge=0.0)
    failure_excerpt_chars: int = Field(default=200, ge=10)
    state_backend: str = "file"
    state_dir: str = ".plan-executor"
    database_url: str = ""
    workspace_root: str = "."
    auto_commit: bool = True
    llm_provider: str = "openai"
    llm_model: str = "gpt-4o-mini"
    llm_base_url: str = "https://api.openai.com/v1"
    llm_timeout_s: float = Field(default=60.0, ge=0.5)
    llm_max_retries: int = Field(default=1, ge=0)
    llm_backoff_s: float = Field(default=1.0, ge=0.0)
    openai_api_key: str = ""

    model_config = SettingsConfigDict(
        env_prefix="PLAN_EXECUTOR_",
        extra="ignore",
        env_file=(PROJECT_ROOT / ".env", PROJECT_ROOT / ".env.local"),
        env_file_encoding="utf-8",
    )

    def resolved_database_url(self) -> str:
        return self.database_url or os.getenv("DATABASE_URL", "")

    def resolved_openai_api_key(self) -> str:
        return self.openai_api_key or os.getenv("OPENAI_API_KEY", "")

    def resolved_workspace_root(self) -> Path:
        return Path(self.workspace_root).expanduser().resolve()


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
