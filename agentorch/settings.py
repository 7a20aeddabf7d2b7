"""Application settings: ~/.config/agentorch/config.toml overlaid by AGENTORCH_* env vars.

These are process-level knobs (where to keep data, HTTP timeout). Per-provider
OAuth client IDs and base URLs live in the registry's git-providers.json.
"""

from functools import lru_cache
from pathlib import Path

import tomlkit
from pydantic_settings import BaseSettings, SettingsConfigDict

CONFIG_PATH = Path.home() / ".config" / "agentorch" / "config.toml"
DEFAULT_DATA_DIR = Path.home() / ".config" / "agentorch"


class AppSettings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="AGENTORCH_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    data_dir: Path = DEFAULT_DATA_DIR
    http_timeout: float = 30.0
    # Used only until a baseUrl is saved in git-providers.json
    gitlab_base_url: str = "https://gitlab.com"


@lru_cache(maxsize=1)
def _load_toml() -> tomlkit.TOMLDocument:
    """Load ~/.config/agentorch/config.toml, returning empty document if missing."""
    if not CONFIG_PATH.exists():
        return tomlkit.document()
    return tomlkit.load(CONFIG_PATH.open())


def get_settings() -> AppSettings:
    """Return AppSettings with config.toml values as defaults.

    Precedence (highest to lowest):
    1. AGENTORCH_* environment variables
    2. .env in cwd
    3. keys in ~/.config/agentorch/config.toml
    4. built-in defaults
    """
    file_defaults = {k: v for k, v in _load_toml().unwrap().items() if k in AppSettings.model_fields}
    # init kwargs normally outrank env vars; keep only file keys the environment doesn't set
    env = AppSettings()
    overridden = env.model_fields_set
    return AppSettings(**{k: v for k, v in file_defaults.items() if k not in overridden})
