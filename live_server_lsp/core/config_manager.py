import json
import logging
from pathlib import Path
from typing import Any, Optional
from dataclasses import dataclass, fields

logger = logging.getLogger(__name__)

DEFAULT_PORT = 57391

@dataclass
class ServerConfig:
    port: int = DEFAULT_PORT  # coordinator port
    public: bool = False
    eager: bool = False
    heartbeat_interval: float = 60.0  # seconds
    probe_timeout: float = 2.0  # seconds
    event_buffer: int = 10
    log_level: str = "INFO"

class ConfigManager:
    def __init__(self, config_path: Optional[str] = None):
        self.config_path = Path(config_path) if config_path else None
        self.config = self._load_config()

    def _load_config(self) -> ServerConfig:
        """Load configuration from file or create default"""
        if self.config_path and self.config_path.exists():
            with open(self.config_path) as f:
                config_dict = json.load(f)
            known = {field.name for field in fields(ServerConfig)}
            unknown = set(config_dict) - known
            if unknown:
                logger.warning(f"Ignoring unknown configuration keys: {sorted(unknown)}")
            return ServerConfig(**{k: v for k, v in config_dict.items() if k in known})
        return ServerConfig()

    def save_config(self):
        """Save current configuration to file"""
        if self.config_path is None:
            raise ValueError("No configuration path set")
        config_dict = {
            field.name: getattr(self.config, field.name)
            for field in fields(self.config)
        }
        with open(self.config_path, 'w') as f:
            json.dump(config_dict, f, indent=2)

    def get(self, key: str) -> Any:
        """Get configuration value"""
        return getattr(self.config, key)

    def update(self, key: str, value: Any):
        """Update configuration value"""
        if hasattr(self.config, key):
            setattr(self.config, key, value)
            if self.config_path is not None:
                self.save_config()
        else:
            raise KeyError(f"Unknown configuration key: {key}")

    def override(self, **values: Any) -> ServerConfig:
        """Apply command line overrides, skipping values left unset"""
        for key, value in values.items():
            if value is None:
                continue
            if not hasattr(self.config, key):
                raise KeyError(f"Unknown configuration key: {key}")
            setattr(self.config, key, value)
        return self.config
