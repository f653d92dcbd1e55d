"""Application entry point wiring.

The host builds one ``VitalClient`` and one ``VitalHealthKitClient`` at
start-up and keeps them for the life of the process::

    configure_logging()
    vital, health = build_clients(store=MyHealthKitBinding())
    await health.automatic_configuration()
"""

from __future__ import annotations

import logging
import sys

import httpx

from vitalsync.config import Settings, get_settings
from vitalsync.core.client import VitalClient
from vitalsync.core.secure_storage import JSONFileBackend, SecureStorage
from vitalsync.healthkit.client import VitalHealthKitClient
from vitalsync.healthkit.storage import VitalHealthKitStorage
from vitalsync.healthkit.store import HealthKitStore

logger = logging.getLogger("vitalsync")


# ---------- Logging ----------


def configure_logging(level: str | None = None) -> None:
    logging.basicConfig(
        level=(level or get_settings().log_level).upper(),
        format="%(asctime)s %(levelname)-8s %(name)s — %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        stream=sys.stdout,
    )


# ---------- Clients ----------


def build_clients(
    store: HealthKitStore,
    settings: Settings | None = None,
    http_client: httpx.AsyncClient | None = None,
) -> tuple[VitalClient, VitalHealthKitClient]:
    """Create the core and HealthKit clients backed by files under the settings paths."""
    settings = settings or get_settings()
    secure_storage = SecureStorage(JSONFileBackend(settings.secure_storage_path))

    vital_client = VitalClient(
        secure_storage=secure_storage,
        http_client=http_client,
        settings=settings,
    )
    health_client = VitalHealthKitClient(
        vital_client,
        store,
        storage=VitalHealthKitStorage(JSONFileBackend(settings.sync_state_path)),
        secure_storage=secure_storage,
        settings=settings,
    )
    logger.info("%s v%s ready (API %s)", settings.sdk_name, settings.sdk_version, settings.api_version)
    return vital_client, health_client
