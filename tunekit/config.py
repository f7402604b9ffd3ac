"""
Configuration management using Pydantic settings.
Loads from environment variables (TUNEKIT_*) and .env files.

Settings are passed explicitly to the experiment; there is no global instance.
"""

from pathlib import Path
from typing import Annotated, List, Literal, Optional

from pydantic import Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

from .exceptions import ConfigurationError


class Settings(BaseSettings):
    """Experiment settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="TUNEKIT_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    # Algorithm selection
    sweep_cutoff: int = Field(
        default=100,
        gt=0,
        description="Largest space size searched exhaustively; larger spaces use tabu search"
    )

    # Tabu search
    tabu_tenure: int = Field(default=5, ge=1, description="Moves a tabu attribute stays forbidden")
    max_iterations: int = Field(default=100, ge=1, description="Evaluation budget for tabu search")
    stall_limit: Optional[int] = Field(
        default=20,
        ge=1,
        description="Stop after this many evaluations without improvement (None disables)"
    )
    neighbourhood_size: Optional[int] = Field(
        default=None,
        ge=1,
        description="Neighbours scored per move (None scores the full neighbourhood)"
    )
    seed: Optional[int] = Field(default=None, description="Random seed for reproducible runs")

    # Objectives
    threads: int = Field(default=6, ge=1, description="Worker count hinted to objective plugins")
    parallel_objectives: bool = Field(default=False, description="Score objectives concurrently")
    objective_mode: Literal["single", "reduced"] = Field(
        default="single",
        description="'single' uses the first objective, 'reduced' the negated distance from optimum"
    )
    maximize: bool = Field(default=True, description="Higher objective results are better")
    objectives_dir: Path = Field(default=Path("objectives"), description="Objective plugin directory")
    objectives_subset: Annotated[Optional[List[str]], NoDecode] = Field(default=None, description="Objective files to load")

    # Failure handling
    failure_policy: Literal["penalize", "retry"] = Field(
        default="penalize",
        description="What to do when a candidate fails to run or produce output"
    )
    max_retries: int = Field(default=0, ge=0, description="Retries per candidate under 'retry'")
    failure_fitness: float = Field(default=float("-inf"), description="Fitness given to failed candidates")

    # Targets
    target_dirs: List[Path] = Field(default_factory=lambda: [Path("targets")], description="Target search path")
    work_dir: Optional[Path] = Field(default=None, description="Parent directory for per-run working dirs")
    retain_intermediates: bool = Field(default=False, description="Keep per-run working dirs")

    # Database
    database_url: str = Field(
        default="sqlite:///./tunekit.db",
        description="Database connection URL"
    )

    # Logging
    log_level: str = Field(default="INFO", description="Logging level")
    log_file: str = Field(default="tunekit.log", description="Log file path")

    @field_validator("maximize", "parallel_objectives", "retain_intermediates", mode="before")
    @classmethod
    def parse_bool(cls, v):
        """Parse flags from string or bool."""
        if isinstance(v, str):
            return v.lower() in ("true", "1", "yes", "on")
        return bool(v)

    @field_validator("stall_limit", mode="before")
    @classmethod
    def parse_stall_limit(cls, v):
        """Empty, 'none' or 'off' disables the stall stop."""
        if isinstance(v, str) and v.strip().lower() in ("", "none", "off"):
            return None
        return v

    @field_validator("log_level")
    @classmethod
    def check_log_level(cls, v):
        level = v.upper()
        if level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"unknown log level: {v}")
        return level

    @field_validator("objectives_subset", mode="before")
    @classmethod
    def parse_subset(cls, v):
        """Accept a comma separated string of objective names."""
        if isinstance(v, str):
            return [name.strip() for name in v.split(",") if name.strip()]
        return v


def load_settings(**overrides) -> Settings:
    """
    Build settings from the environment plus explicit overrides.

    None-valued overrides are ignored so CLI flags that were not given
    fall back to the environment.

    Raises:
        ConfigurationError: if any value fails validation
    """
    values = {k: v for k, v in overrides.items() if v is not None}
    try:
        return Settings(**values)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid settings: {e}") from e
