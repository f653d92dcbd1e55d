"""Load, validate, and reload the resource → HealthKit type map.

The map lives in ``resource_map.yaml`` alongside this module.  It is loaded
once and cached.  Call ``reload_resource_map()`` to re-read it, e.g. in tests
that point at a custom file.

Usage::

    from vitalsync.healthkit.config_loader import get_resource_map

    mapping = get_resource_map()
    mapping.resource(VitalResource.SLEEP).triggers
    # frozenset({"HKCategoryTypeIdentifierSleepAnalysis"})
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from pathlib import Path

import yaml

from vitalsync.healthkit.resources import VitalResource, WritableVitalResource

logger = logging.getLogger("vitalsync.healthkit.config")

_CONFIG_PATH = Path(__file__).parent / "resource_map.yaml"


@dataclass(frozen=True)
class ResourceTypes:
    """Data types behind one resource."""

    types: frozenset[str]
    triggers: frozenset[str]
    historical: bool = True


@dataclass
class ResourceMap:
    """Validated in-memory form of resource_map.yaml.

    Attributes:
        version:   Schema version string.
        resources: Per-resource data types.
        writable:  HealthKit type written for each writable resource.
    """

    version: str
    resources: dict[VitalResource, ResourceTypes]
    writable: dict[WritableVitalResource, str]
    _raw: dict = field(default_factory=dict, repr=False)

    def resource(self, resource: VitalResource) -> ResourceTypes:
        return self.resources[resource]


class ConfigValidationError(ValueError):
    """Raised when resource_map.yaml fails validation."""


def _load_yaml(path: Path) -> dict:
    """Read and parse a YAML file.

    Raises:
        FileNotFoundError:     If the file does not exist.
        ConfigValidationError: If the YAML is malformed.
    """
    if not path.exists():
        raise FileNotFoundError(f"Resource map not found: {path}")

    with path.open("r", encoding="utf-8") as fh:
        try:
            return yaml.safe_load(fh) or {}
        except yaml.YAMLError as exc:
            raise ConfigValidationError(f"YAML parse error in {path}: {exc}") from exc


def _string_set(value: object, where: str, errors: list[str]) -> frozenset[str]:
    if value is None:
        return frozenset()
    if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
        errors.append(f"{where} must be a list of strings")
        return frozenset()
    return frozenset(value)


def _validate_and_build(raw: dict) -> ResourceMap:
    """Validate the parsed YAML and construct a ResourceMap.

    Every ``VitalResource`` and ``WritableVitalResource`` must be mapped and
    triggers must be a subset of the resource's types.

    Raises:
        ConfigValidationError: Listing every problem found.
    """
    errors: list[str] = []
    version = str(raw.get("version", "1.0"))

    # ── Resources ──
    resources_raw = raw.get("resources") or {}
    if not isinstance(resources_raw, dict):
        errors.append("'resources' must be a mapping")
        resources_raw = {}

    resources: dict[VitalResource, ResourceTypes] = {}
    for name, section in resources_raw.items():
        try:
            resource = VitalResource(name)
        except ValueError:
            errors.append(f"resources.{name} is not a known resource")
            continue
        if not isinstance(section, dict):
            errors.append(f"resources.{name} must be a mapping")
            continue

        types = _string_set(section.get("types"), f"resources.{name}.types", errors)
        triggers = _string_set(section.get("triggers"), f"resources.{name}.triggers", errors)
        if not types:
            errors.append(f"resources.{name}.types is empty")
        if not triggers <= types:
            errors.append(
                f"resources.{name}.triggers {sorted(triggers - types)} are not in its types"
            )
        resources[resource] = ResourceTypes(
            types=types,
            triggers=triggers,
            historical=bool(section.get("historical", True)),
        )

    for resource in VitalResource:
        if resource not in resources and resource.value not in resources_raw:
            errors.append(f"resources.{resource.value} is missing")

    # ── Writable ──
    writable_raw = raw.get("writable") or {}
    writable: dict[WritableVitalResource, str] = {}
    for name, type_id in (writable_raw if isinstance(writable_raw, dict) else {}).items():
        try:
            writable[WritableVitalResource(name)] = str(type_id)
        except ValueError:
            errors.append(f"writable.{name} is not a known writable resource")
    for resource in WritableVitalResource:
        if resource not in writable and resource.value not in writable_raw:
            errors.append(f"writable.{resource.value} is missing")

    if errors:
        raise ConfigValidationError(
            f"resource_map.yaml has {len(errors)} validation error(s):\n"
            + "\n".join(f"  • {e}" for e in errors)
        )

    return ResourceMap(version=version, resources=resources, writable=writable, _raw=raw)


def load_resource_map(path: Path | None = None) -> ResourceMap:
    """Load and validate the resource map from disk."""
    target = path or _CONFIG_PATH
    mapping = _validate_and_build(_load_yaml(target))
    logger.debug("Loaded resource map v%s from %s", mapping.version, target)
    return mapping


# ---------------------------------------------------------------------------
# Global singleton with reload support
# ---------------------------------------------------------------------------

_mapping: ResourceMap | None = None
_mapping_lock = threading.Lock()


def get_resource_map() -> ResourceMap:
    """Return the cached ResourceMap, loading it on first call.  Thread-safe."""
    global _mapping
    if _mapping is None:
        with _mapping_lock:
            if _mapping is None:  # double-checked locking
                _mapping = load_resource_map()
    return _mapping


def reload_resource_map(path: Path | None = None) -> ResourceMap:
    """Re-read the map and replace the cached instance.

    If validation fails the previous map is kept and the error re-raised.
    """
    global _mapping
    new_mapping = load_resource_map(path)  # validate before acquiring lock
    with _mapping_lock:
        _mapping = new_mapping
    logger.info("Reloaded resource map v%s", new_mapping.version)
    return new_mapping
