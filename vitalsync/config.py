"""SDK settings loaded from environment variables."""

from functools import lru_cache
from pathlib import Path

from pydantic_settings import BaseSettings

_DEFAULT_HOME = Path.home() / ".vitalsync"


class Settings(BaseSettings):
    """Process-level settings (``VITALSYNC_*`` environment variables or .env file).

    These cover the host integration only.  The per-session SDK configuration
    (auth strategy, backfill window, push mode) is supplied through
    ``VitalClient.configure`` / ``VitalHealthKitClient.configure`` and persisted
    in the secure store.
    """

    # --- SDK ---
    sdk_name: str = "vitalsync"
    sdk_version: str = "0.10.2"
    api_version: str = "v2"
    log_level: str = "INFO"

    # --- Storage ---
    secure_storage_path: Path = _DEFAULT_HOME / "secure_storage.json"
    sync_state_path: Path = _DEFAULT_HOME / "sync_state.json"

    # --- Transport ---
    http_timeout_seconds: float = 30.0

    # --- Identity (User JWT mode) ---
    identity_toolkit_url: str = "https://identitytoolkit.googleapis.com/v1"
    secure_token_url: str = "https://securetoken.googleapis.com/v1"
    token_refresh_buffer_seconds: int = 300

    # IANA zone sent with every push; None means the device's local zone
    time_zone: str | None = None

    model_config = {
        "env_prefix": "VITALSYNC_",
        "env_file": ".env",
        "env_file_encoding": "utf-8",
    }


@lru_cache
def get_settings() -> Settings:
    return Settings()
