from __future__ import annotations

from functools import lru_cache
from pathlib import Path

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from ..services.corpus import DEFAULT_MOTIF_DIR
from ..services.rng import DEFAULT_FALLBACK_SEED, MASK_32


def _default_artifact_root() -> Path:
    return Path.home() / "Music" / "Chiptune"


class Settings(BaseSettings):
    """Runtime configuration for the chiptune composer service."""

    model_config = SettingsConfigDict(
        env_prefix="CHIPTUNE_",
        env_nested_delimiter="__",
        extra="ignore",
    )

    artifact_root: Path = Field(default_factory=_default_artifact_root)
    motif_dir: Path = Field(
        default=DEFAULT_MOTIF_DIR,
        description="Directory holding the JSON motif corpus.",
    )
    default_length_measures: int = Field(default=32, ge=1, le=512)
    max_length_measures: int = Field(
        default=256,
        ge=1,
        le=512,
        description="Upper bound on requested composition length.",
    )
    rng_fallback_seed: int = Field(
        default=DEFAULT_FALLBACK_SEED,
        description="Generator state used when a seed reduces to zero.",
    )
    loop_window_seconds: float = Field(
        default=0.1,
        gt=0.0,
        le=5.0,
        description="Width of the head/tail loop window in diagnostics.",
    )

    @model_validator(mode="after")
    def _align_defaults(self) -> "Settings":
        if self.default_length_measures > self.max_length_measures:
            self.default_length_measures = self.max_length_measures
        if self.rng_fallback_seed & MASK_32 == 0:
            self.rng_fallback_seed = DEFAULT_FALLBACK_SEED
        return self

    def ensure_directories(self) -> None:
        self.artifact_root.mkdir(parents=True, exist_ok=True)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    settings = Settings()
    settings.ensure_directories()
    return settings
