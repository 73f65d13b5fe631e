"""
Settings management for Ollie
"""

import json
from dataclasses import dataclass, field, asdict, fields
from pathlib import Path
from typing import Optional

from ollie.exceptions import ConfigError

DEFAULT_SERVER_URL = "http://localhost:11434"


@dataclass
class DefaultParams:
    """Default generation parameters"""
    temperature: Optional[float] = None
    top_k: Optional[int] = None
    top_p: Optional[float] = None
    max_tokens: Optional[int] = None


@dataclass
class Settings:
    """Ollie settings"""

    # Server settings
    server_url: str = DEFAULT_SERVER_URL

    # Chat defaults
    default_model: Optional[str] = None
    default_params: Optional[DefaultParams] = None

    # UI settings
    theme: Optional[str] = "light"

    _config_path: Optional[Path] = field(default=None, repr=False)

    @classmethod
    def get_default_config_path(cls) -> Path:
        """Get the default settings file path"""
        config_dir = Path.home() / ".config" / "ollie"
        config_dir.mkdir(parents=True, exist_ok=True)
        return config_dir / "settings.json"

    @classmethod
    def load(cls, path: Optional[Path] = None) -> "Settings":
        """Load settings from file"""
        config_path = path or cls.get_default_config_path()

        if config_path.exists():
            try:
                with open(config_path) as f:
                    data = json.load(f)
            except (OSError, ValueError) as e:
                raise ConfigError(f"Invalid settings JSON: {e}") from e

            settings = cls.from_dict(data)
            settings._config_path = config_path
            return settings

        # Return default settings if file doesn't exist
        settings = cls()
        settings._config_path = config_path
        return settings

    @classmethod
    def from_dict(cls, data: dict) -> "Settings":
        """Build settings from a decoded JSON object, ignoring unknown keys"""
        if not isinstance(data, dict):
            raise ConfigError("Invalid settings JSON: expected an object")

        known = {f.name for f in fields(cls) if not f.name.startswith("_")}
        values = {k: v for k, v in data.items() if k in known}

        if "server_url" in values and not isinstance(values["server_url"], str):
            raise ConfigError("Invalid settings JSON: server_url must be a string")

        params = values.get("default_params")
        if isinstance(params, dict):
            param_names = {f.name for f in fields(DefaultParams)}
            values["default_params"] = DefaultParams(
                **{k: v for k, v in params.items() if k in param_names}
            )

        return cls(**values)

    def save(self, path: Optional[Path] = None) -> None:
        """Save settings to file"""
        config_path = path or self._config_path or self.get_default_config_path()

        # Convert to dict, excluding private fields
        data = {k: v for k, v in asdict(self).items() if not k.startswith("_")}

        try:
            with open(config_path, "w") as f:
                json.dump(data, f, indent=2)
        except OSError as e:
            raise ConfigError(f"Failed to write settings: {e}") from e

    @property
    def base_url(self) -> str:
        """Server URL without a trailing slash"""
        return self.server_url.rstrip("/")
