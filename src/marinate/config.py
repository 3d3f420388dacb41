"""Configuration management for marinate."""

import os
import tomllib
from pathlib import Path
from typing import Any, Literal, Optional

from pydantic import BaseModel, Field


def _find_repo_root(start_dir: Path) -> Path:
    """Find repository root by walking upward looking for .git or pyproject.toml."""
    current_dir = start_dir

    while True:
        if (current_dir / ".git").exists() or (current_dir / "pyproject.toml").exists():
            return current_dir

        parent_dir = current_dir.parent

        # Stop if we reach filesystem root
        if parent_dir == current_dir:
            return start_dir

        current_dir = parent_dir


def _load_repo_config_data(repo_root: Path) -> Optional[dict]:
    """Load repo config data from .marinate/config.toml if it exists."""
    config_file = repo_root / ".marinate" / "config.toml"

    if not config_file.exists():
        return None

    with open(config_file, "rb") as f:
        try:
            return tomllib.load(f)
        except tomllib.TOMLDecodeError as e:
            raise ValueError(f"Invalid config file {config_file}: {e}") from e


def _as_float(value: Any, *, name: str) -> float:
    if isinstance(value, bool):
        raise ValueError(f"Invalid config: {name} must be a number")
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value.strip())
        except ValueError:
            pass
    raise ValueError(f"Invalid config: {name} must be a number")


def _as_int(value: Any, *, name: str) -> int:
    if isinstance(value, bool):
        raise ValueError(f"Invalid config: {name} must be an int")
    if isinstance(value, int):
        return value
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip())
    raise ValueError(f"Invalid config: {name} must be an int")


def _env_bool(name: str, default: bool) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "y", "on"}


class EngineSettings(BaseModel):
    """Scheduling thresholds for the marination engine."""

    poll_interval_seconds: float = Field(default=45.0, gt=0)
    idle_threshold_seconds: float = Field(default=30.0, ge=0)
    max_consecutive_marinations: int = Field(default=5, ge=1)
    min_content_length: int = Field(default=50, ge=0)
    request_timeout_seconds: float = Field(default=120.0, gt=0)
    prompt_grace_seconds: float = Field(default=0.5, ge=0)


class GeneratorSettings(BaseModel):
    """Which text generator backs marination requests."""

    engine: Literal["auto", "fake", "anthropic"] = Field(default="auto")
    model: Optional[str] = Field(default=None)


# (section key, env var suffix, parser) for every EngineSettings field.
_ENGINE_FIELDS = [
    ("poll_interval_seconds", "POLL_INTERVAL", _as_float),
    ("idle_threshold_seconds", "IDLE_THRESHOLD", _as_float),
    ("max_consecutive_marinations", "MAX_MARINATIONS", _as_int),
    ("min_content_length", "MIN_CONTENT_LENGTH", _as_int),
    ("request_timeout_seconds", "REQUEST_TIMEOUT", _as_float),
    ("prompt_grace_seconds", "PROMPT_GRACE", _as_float),
]


class MarinateConfig(BaseModel):
    """Configuration for the marination engine and its host."""

    data_dir: Path = Field(
        default_factory=lambda: Path(os.environ.get("MARINATE_DATA_DIR", "./.marinate"))
    )
    engine: EngineSettings = Field(default_factory=EngineSettings)
    generator: GeneratorSettings = Field(default_factory=GeneratorSettings)
    journal_enabled: bool = Field(default=True)

    model_config = {"frozen": False}

    @property
    def db_path(self) -> Path:
        return self.data_dir / "marination.sqlite"

    @property
    def journal_path(self) -> Path:
        return self.data_dir / "journal.jsonl"

    @classmethod
    def from_env(cls, cli_data_dir: Optional[str] = None) -> "MarinateConfig":
        """Load configuration with the following precedence:

        1. CLI --data-dir option (data directory only)
        2. MARINATE_* environment variables
        3. repo-local .marinate/config.toml (walk upward from CWD)
        4. Defaults

        Raises:
            ValueError: If a configured value is malformed
        """
        repo_root = _find_repo_root(Path.cwd())
        data = _load_repo_config_data(repo_root) or {}

        engine_section = data.get("engine") if isinstance(data.get("engine"), dict) else {}
        generator_section = data.get("generator") if isinstance(data.get("generator"), dict) else {}

        engine_values: dict[str, Any] = {}
        for key, env_suffix, parse in _ENGINE_FIELDS:
            raw = os.environ.get(f"MARINATE_{env_suffix}", engine_section.get(key))
            if raw is not None:
                engine_values[key] = parse(raw, name=f"[engine].{key}")

        data_dir_value = cli_data_dir or os.environ.get("MARINATE_DATA_DIR") or data.get("data_dir")
        if data_dir_value:
            data_dir = Path(str(data_dir_value)).expanduser()
            if not data_dir.is_absolute():
                data_dir = (repo_root / data_dir).resolve()
        else:
            data_dir = (repo_root / ".marinate").resolve()

        return cls(
            data_dir=data_dir,
            engine=EngineSettings(**engine_values),
            generator=GeneratorSettings(
                engine=os.environ.get("MARINATE_GENERATOR", generator_section.get("engine", "auto")),
                model=os.environ.get("MARINATE_MODEL", generator_section.get("model")),
            ),
            journal_enabled=_env_bool("MARINATE_JOURNAL_ENABLED", bool(data.get("journal_enabled", True))),
        )

    def to_toml_str(self) -> str:
        """Generate a config.toml for the current settings."""
        model_line = f'model = "{self.generator.model}"\n' if self.generator.model else ""
        return f"""# marinate configuration

journal_enabled = {str(self.journal_enabled).lower()}

[engine]
poll_interval_seconds = {self.engine.poll_interval_seconds}
idle_threshold_seconds = {self.engine.idle_threshold_seconds}
max_consecutive_marinations = {self.engine.max_consecutive_marinations}
min_content_length = {self.engine.min_content_length}
request_timeout_seconds = {self.engine.request_timeout_seconds}
prompt_grace_seconds = {self.engine.prompt_grace_seconds}

[generator]
engine = "{self.generator.engine}"
{model_line}"""
