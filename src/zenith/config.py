"""Configuration loading for zenith.

Settings come from, in increasing precedence: built-in defaults, a TOML file
(explicit ``--config`` path, else ``~/.config/zenith/config.toml`` if present),
then command-line flags.
"""

import dataclasses
import os
import sys
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from zenith.errors import ConfigError
from zenith.layout import PanelId
from zenith.logs import LEVELS

MIN_REFRESH_RATE_MS = 1000

_DEFAULT_CONFIG_PATH = Path.home() / ".config" / "zenith" / "config.toml"


def default_db_path() -> Path:
    """The platform cache directory plus ``zenith``, or ``./zenith`` if there is none."""
    if sys.platform == "win32":
        base = os.environ.get("LOCALAPPDATA")
        cache = Path(base) if base else None
    elif sys.platform == "darwin":
        cache = Path.home() / "Library" / "Caches"
    else:
        xdg = os.environ.get("XDG_CACHE_HOME")
        cache = Path(xdg) if xdg else Path.home() / ".cache"
    return (cache if cache is not None else Path("./")) / "zenith"


@dataclass(frozen=True)
class Config:
    refresh_rate_ms: int = 2000
    cpu_height: int = 10
    net_height: int = 10
    disk_height: int = 10
    process_height: int = 8
    sensor_height: int = 0
    history_enabled: bool = True
    db_path: Path = field(default_factory=default_db_path)
    retention_hours: float = 24.0
    log_level: str | None = None
    log_file: Path | None = None

    @property
    def refresh_rate(self) -> float:
        """Refresh rate in seconds."""
        return self.refresh_rate_ms / 1000.0

    @property
    def panel_heights(self) -> dict[PanelId, int]:
        return {
            PanelId.CPU: self.cpu_height,
            PanelId.NET: self.net_height,
            PanelId.DISK: self.disk_height,
            PanelId.SENSORS: self.sensor_height,
            PanelId.PROCESS: self.process_height,
        }

    def validate(self) -> "Config":
        """Return self, or raise ConfigError listing every invalid field."""
        problems = []
        if self.refresh_rate_ms < MIN_REFRESH_RATE_MS:
            problems.append(
                f"{self.refresh_rate_ms} Enter a refresh rate that is at least {MIN_REFRESH_RATE_MS} ms"
            )
        for name, height in self.panel_heights.items():
            if height < 0:
                problems.append(f"{name.value} height {height}: enter a height greater than or equal to 0")
        if self.retention_hours <= 0:
            problems.append(f"retention of {self.retention_hours} hours must be positive")
        if self.log_level is not None and self.log_level.lower() not in LEVELS:
            problems.append(f"unknown log level {self.log_level!r}")
        if problems:
            raise ConfigError(problems)
        return self


_FIELDS = {f.name: f for f in dataclasses.fields(Config)}


def _coerce(name: str, value: Any) -> Any:
    if name in ("db_path", "log_file"):
        return Path(value).expanduser() if value is not None else None
    if name == "history_enabled":
        if not isinstance(value, bool):
            raise ConfigError([f"{name} must be true or false"])
        return value
    if name == "retention_hours":
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise ConfigError([f"{name} must be a number"])
        return float(value)
    if name == "log_level":
        return str(value)
    if isinstance(value, bool) or not isinstance(value, int):
        raise ConfigError([f"{name} must be an integer"])
    return value


def load_config(path: Path | None = None, overrides: dict[str, Any] | None = None) -> Config:
    """Build a validated Config from defaults, an optional TOML file and overrides.

    Args:
        path: Explicit config file. If None, tries ~/.config/zenith/config.toml.
        overrides: Values from the command line; None values are ignored.

    Raises:
        ConfigError: The file is missing, unparsable, or a value is invalid.
    """
    values: dict[str, Any] = {}

    file_path = path
    if file_path is None and _DEFAULT_CONFIG_PATH.is_file():
        file_path = _DEFAULT_CONFIG_PATH
    if file_path is not None:
        if not file_path.is_file():
            raise ConfigError([f"config file not found: {file_path}"])
        try:
            user_config = tomllib.loads(file_path.read_text(encoding="utf-8"))
        except tomllib.TOMLDecodeError as e:
            raise ConfigError([f"invalid TOML in {file_path}: {e}"]) from e
        unknown = sorted(set(user_config) - set(_FIELDS))
        if unknown:
            raise ConfigError([f"unknown setting {name!r} in {file_path}" for name in unknown])
        values.update(user_config)

    for name, value in (overrides or {}).items():
        if value is not None:
            values[name] = value

    coerced = {name: _coerce(name, value) for name, value in values.items()}
    return Config(**coerced).validate()
