"""Application configuration using pydantic-settings."""

import functools
from pathlib import Path
from typing import Any

import yaml
from pydantic import Field
from pydantic_settings import BaseSettings, PydanticBaseSettingsSource, SettingsConfigDict

from kiip_trainer.entitlements.mutations import ProgressPolicy
from kiip_trainer.models.progress import EntitlementKind


def _find_project_root() -> Path:
    """Find project root by locating pyproject.toml."""
    current = Path(__file__).resolve()
    for parent in [current] + list(current.parents):
        if (parent / "pyproject.toml").exists():
            return parent
    return Path.cwd()


# (yaml section, yaml key) -> Settings field
_YAML_FIELDS: dict[tuple[str, str], str] = {
    ("practice", "target_count"): "target_count",
    ("practice", "hearts"): "hearts",
    ("practice", "base_xp"): "base_xp",
    ("practice", "streak_bonus"): "streak_bonus",
    ("practice", "completion_floor"): "completion_floor",
    ("practice", "correct_phrase"): "correct_phrase",
    ("practice", "incorrect_phrase"): "incorrect_phrase",
    ("progress", "completion_threshold"): "completion_threshold",
    ("progress", "policy"): "progress_policy",
    ("progress", "max_level"): "max_level",
    ("entitlements", "tutoring_days"): "tutoring_days",
    ("entitlements", "assessment_days"): "assessment_days",
    ("paths", "data_dir"): "data_dir",
    ("paths", "corpus_dir"): "corpus_dir",
}


class YamlSettingsSource(PydanticBaseSettingsSource):
    """Custom settings source that loads from config/settings.yaml."""

    def get_field_value(self, field_name: str) -> tuple[Any, str, bool]:
        """Not used - we implement __call__ instead."""
        return None, "", False

    def __call__(self) -> dict[str, Any]:
        """Load settings from YAML file."""
        yaml_path = _find_project_root() / "config" / "settings.yaml"
        if not yaml_path.exists():
            return {}

        with open(yaml_path, encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}

        # Flatten nested sections to match Settings field names
        flattened = {}
        for (section, key), field_name in _YAML_FIELDS.items():
            value = (data.get(section) or {}).get(key)
            if value is not None:
                flattened[field_name] = value
        return flattened


class Settings(BaseSettings):
    """Application settings loaded from environment and config files."""

    model_config = SettingsConfigDict(
        env_prefix="KIIP_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Practice session
    target_count: int = Field(default=10, ge=0)
    hearts: int = Field(default=5, ge=1)
    base_xp: int = Field(default=10, gt=0)
    streak_bonus: int = Field(default=5, ge=0)
    completion_floor: int = Field(default=50, ge=0, le=100)
    correct_phrase: str = Field(default="정답입니다")
    incorrect_phrase: str = Field(default="오답입니다")

    # Progress
    completion_threshold: int = Field(default=70, ge=0, le=100)
    progress_policy: ProgressPolicy = Field(default=ProgressPolicy.RATCHET)
    max_level: int = Field(default=5, ge=2)

    # Timed entitlements
    tutoring_days: int = Field(default=30, gt=0)
    assessment_days: int = Field(default=30, gt=0)

    # Paths (relative paths resolve against the project root)
    project_root: Path = Field(default_factory=_find_project_root)
    data_dir: Path = Field(default=Path("data"))
    corpus_dir: Path = Field(default=Path("config") / "corpus")

    def _resolve(self, path: Path) -> Path:
        return path if path.is_absolute() else self.project_root / path

    @property
    def learners_dir(self) -> Path:
        d = self._resolve(self.data_dir) / "learners"
        d.mkdir(parents=True, exist_ok=True)
        return d

    @property
    def history_dir(self) -> Path:
        d = self._resolve(self.data_dir) / "history"
        d.mkdir(parents=True, exist_ok=True)
        return d

    @property
    def corpus_path(self) -> Path:
        return self._resolve(self.corpus_dir)

    def entitlement_days(self, kind: EntitlementKind) -> int:
        """Length of one purchase of a timed entitlement."""
        if kind is EntitlementKind.TUTORING:
            return self.tutoring_days
        return self.assessment_days

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        """Customise settings sources to include YAML file.

        Priority order (highest to lowest):
        1. init_settings (arguments passed to Settings())
        2. env_settings (KIIP_* environment variables)
        3. dotenv_settings (.env file)
        4. YamlSettingsSource (config/settings.yaml)
        5. file_secret_settings
        """
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            YamlSettingsSource(settings_cls),
            file_secret_settings,
        )


@functools.lru_cache
def get_settings() -> Settings:
    """Get application settings singleton."""
    return Settings()
