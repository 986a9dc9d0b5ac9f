"""Server configuration read from the environment."""

from __future__ import annotations

import dataclasses
import os
from importlib.metadata import PackageNotFoundError, version
from pathlib import Path
from typing import Any

DISTRIBUTION_NAME = "card-state-sync"


def get_version() -> str:
    try:
        return version(DISTRIBUTION_NAME)
    except PackageNotFoundError:
        return "0+local"


@dataclasses.dataclass(frozen=True)
class ServerConfig:
    """Card server configuration.

    Parameters
    ----------
    env : str
        ``"dev"`` or ``"prod"``. Selects the logger implementation.
    cards_directory : str
        Directory holding one sub-directory per card pack.
    db_path : str
        SQLite database file used by the ``sqlite`` backends.
    state_backend : str
        ``"sqlite"`` or ``"memory"``.
    analytics_backend : str
        ``"sqlite"``, ``"memory"`` or ``"log"`` (log only, nothing stored).
    card_secret : str
        Secret mixed into every card instance key. Changing it re-addresses
        every stored state.
    api_key_ttl : float
        Seconds an issued card API key stays valid. ``0`` disables expiry.
    base_url : str
        Public URL of this server, used for card links and icons.
    port : int
        Port for ``uvicorn`` when run as a script.
    log_dir : str
        Directory the prod file loggers write to.
    """

    env: str = "dev"
    cards_directory: str = "cards"
    db_path: str = "db/card_state.db"
    state_backend: str = "sqlite"
    analytics_backend: str = "sqlite"
    card_secret: str = "#"
    api_key_ttl: float = 3600.0
    base_url: str = "http://localhost:4000"
    port: int = 4000
    log_dir: str = "logs"

    @property
    def cards_path(self) -> Path:
        path = Path(self.cards_directory)
        if not path.is_absolute():
            path = Path.cwd() / path
        return path

    @classmethod
    def from_env(cls, **overrides: Any) -> ServerConfig:
        """Build configuration from environment variables.

        Explicit keyword arguments take precedence over the environment.
        """
        env = os.environ

        _ENV_CONFIG_MAP = {
            "ENV": "env",
            "CARDS_DIRECTORY": "cards_directory",
            "DB_PATH": "db_path",
            "STATE_BACKEND": "state_backend",
            "ANALYTICS_BACKEND": "analytics_backend",
            "CARD_SECRET": "card_secret",
            "BASE_URL": "base_url",
            "LOG_DIR": "log_dir",
        }
        config_kwargs: dict[str, Any] = {}
        for env_key, field_name in _ENV_CONFIG_MAP.items():
            val = env.get(env_key)
            if val is not None:
                config_kwargs[field_name] = val

        ttl_env = env.get("API_KEY_TTL")
        if ttl_env is not None and "api_key_ttl" not in overrides:
            config_kwargs["api_key_ttl"] = float(ttl_env)

        port_env = env.get("PORT")
        if port_env is not None and "port" not in overrides:
            config_kwargs["port"] = int(port_env)

        config_kwargs.update(overrides)
        config_kwargs["base_url"] = config_kwargs.get("base_url", cls.base_url).rstrip("/")

        return cls(**config_kwargs)
