"""Configuration schema using Pydantic."""

from pathlib import Path

from pydantic import BaseModel, Field

from coderace.config import defaults


class GlobalConfig(BaseModel):
    """Global coderace configuration."""

    color: bool = True
    verbose: bool = False
    log_level: str = "WARNING"


class DatabaseConfig(BaseModel):
    """Where executions, agents and competitions are stored."""

    path: str | None = None  # None means ~/.config/coderace/coderace.db
    busy_timeout_ms: int = 5000

    def resolve_path(self) -> Path:
        """Get the database file path, creating its directory."""
        if self.path:
            db_path = Path(self.path).expanduser()
            db_path.parent.mkdir(parents=True, exist_ok=True)
            return db_path
        return get_config_dir() / defaults.DEFAULT_DATABASE_FILE


class SessionConfig(BaseModel):
    """Timings for tmux session bring-up."""

    step_settle_seconds: float = Field(default=defaults.DEFAULT_STEP_SETTLE_SECONDS, ge=0)
    settle_timeout_seconds: float = Field(default=defaults.DEFAULT_SETTLE_TIMEOUT_SECONDS, ge=0)
    settle_poll_interval_seconds: float = Field(
        default=defaults.DEFAULT_SETTLE_POLL_INTERVAL_SECONDS, gt=0
    )
    prompt_delay_seconds: float = Field(default=defaults.DEFAULT_PROMPT_DELAY_SECONDS, ge=0)
    shell: str = "bash"


class WaitingConfig(BaseModel):
    """Idle detection for agent sessions."""

    threshold_seconds: float = Field(default=defaults.DEFAULT_WAITING_THRESHOLD_SECONDS, gt=0)
    sweep_interval_seconds: float = Field(default=defaults.DEFAULT_SWEEP_INTERVAL_SECONDS, gt=0)


class CleanupConfig(BaseModel):
    """Teardown behaviour when executions are deleted."""

    teardown_timeout_seconds: float = Field(default=defaults.DEFAULT_TEARDOWN_TIMEOUT_SECONDS, gt=0)


class RankingConfig(BaseModel):
    """ELO parameters."""

    default_rating: float = defaults.DEFAULT_ELO_RATING
    provisional_games: int = defaults.PROVISIONAL_GAMES
    provisional_k_factor: float = defaults.MAX_K_FACTOR
    default_k_factor: float = defaults.DEFAULT_K_FACTOR
    master_k_factor: float = defaults.MIN_K_FACTOR
    master_rating: float = defaults.MASTER_RATING


class CoderaceConfig(BaseModel):
    """Root configuration model for coderace."""

    global_: GlobalConfig = Field(default_factory=GlobalConfig, alias="global")
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    session: SessionConfig = Field(default_factory=SessionConfig)
    waiting: WaitingConfig = Field(default_factory=WaitingConfig)
    cleanup: CleanupConfig = Field(default_factory=CleanupConfig)
    ranking: RankingConfig = Field(default_factory=RankingConfig)

    class Config:
        populate_by_name = True

    @classmethod
    def default(cls) -> "CoderaceConfig":
        """Create default configuration."""
        return cls()


def get_config_dir() -> Path:
    """Get the configuration directory path."""
    config_dir = Path.home() / ".config" / "coderace"
    config_dir.mkdir(parents=True, exist_ok=True)
    return config_dir


def get_config_file() -> Path:
    """Get the main configuration file path."""
    return get_config_dir() / "config.toml"
