"""Application configuration loaded from environment variables."""

from functools import lru_cache
from pathlib import Path

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Process-level settings (``REMINDKIT_*`` environment variables or .env file).

    Engine tunables (horizons, cycle bounds, birthday times) live in
    ``engine_config.yaml`` instead; see ``remindkit.config_loader``.
    """

    # --- App ---
    app_name: str = "remindkit"
    app_version: str = "0.1.0"
    debug: bool = False
    log_level: str = "INFO"

    # --- Storage ---
    storage_dir: Path = Path.home() / ".remindkit"

    # --- Engine config ---
    engine_config_path: Path | None = None  # None = bundled engine_config.yaml

    model_config = {
        "env_prefix": "REMINDKIT_",
        "env_file": ".env",
        "env_file_encoding": "utf-8",
    }


@lru_cache
def get_settings() -> Settings:
    return Settings()
