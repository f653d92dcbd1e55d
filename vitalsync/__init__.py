"""vitalsync: Vital health-data sync core.

Bridges a platform health store (HealthKit, through an abstract binding) with
the Vital ingestion API.

Subpackages:
    core/      — Client configuration, auth strategies, reauthentication, API client
    healthkit/ — Resource mapping, sync state, change observer, sync orchestrator
"""

from vitalsync.core.client import VitalClient
from vitalsync.healthkit.client import VitalHealthKitClient

__all__ = [
    "VitalClient",
    "VitalHealthKitClient",
]
