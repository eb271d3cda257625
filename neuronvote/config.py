"""Configuration settings for the voting agent."""

from pathlib import Path

from pydantic_settings import BaseSettings

# Project root (parent of the package directory)
_PROJECT_DIR = Path(__file__).parent.parent

# 4 days, the network's standard voting window
DEFAULT_VOTING_PERIOD_SECONDS = 4 * 24 * 60 * 60

# Approximately 7 months
DEFAULT_MINIMUM_DISSOLVE_DELAY_SECONDS = 7 * 30 * 24 * 60 * 60


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database
    database_url: str = f"sqlite+aiosqlite:///{_PROJECT_DIR / 'neuronvote.db'}"
    database_echo: bool = False

    # Governance gateway
    governance_api_url: str = "http://localhost:8090"
    governance_timeout: float = 60.0

    # Reasoning service (OpenAI-compatible Responses API)
    reasoning_api_url: str = "https://api.openai.com/v1"
    reasoning_model: str = "gpt-4.1"
    reasoning_timeout: float = 300.0

    # Redis (event publishing only)
    redis_url: str = "redis://localhost:16379/0"
    redis_events_enabled: bool = False

    # Timers (seconds)
    sync_interval_seconds: int = 30 * 60
    vote_sweep_interval_seconds: int = 10
    analysis_interval_seconds: int = 60

    # Sync
    sync_page_size: int = 30
    sync_max_pages: int = 100

    # Voting
    vote_cast_timeout: float = 120.0
    default_vote_delay_seconds: int = 3600
    voting_period_seconds: int = DEFAULT_VOTING_PERIOD_SECONDS
    minimum_dissolve_delay_seconds: int = DEFAULT_MINIMUM_DISSOLVE_DELAY_SECONDS

    # Analysis
    trusted_proposer_threshold: int = 200
    analysis_candidate_window: int = 50
    prompt_summary_limit: int = 8000
    prompt_action_limit: int = 8000
    analysis_poll_attempts: int = 10
    analysis_poll_interval: float = 3.0

    log_level: str = "INFO"

    class Config:
        env_prefix = "NEURONVOTE_"
        env_file = ".env"


# Global settings instance
settings = Settings()
