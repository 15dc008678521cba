"""Scheduler configuration: disk selectors, strategy and device-group naming."""

from __future__ import annotations

import json
import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

CSI_PLUGIN_NAME = "carina.storage.io"
DEVICE_DISK_KEY = "carina.storage.io/disk-group-name"
VOLUME_DEVICE_NODE = "carina.storage.io/node"
DEVICE_CAPACITY_KEY_PREFIX = "carina.storage.io/"
VOLUME_BACKEND_DISK_TYPE = "carina.storage.io/backend-disk-group-name"
VOLUME_CACHE_DISK_TYPE = "carina.storage.io/cache-disk-group-name"
# value 1-100: share of the volume size given to the cache device
VOLUME_CACHE_DISK_RATIO = "carina.storage.io/cache-disk-ratio"
LVM_VOLUME_TYPE = "lvm"
RAW_VOLUME_TYPE = "raw"
# "true" marks a raw disk used by a single pod only
EXCLUSIVITY_DISK = "carina.storage.io/exclusively-raw-disk"

CONFIG_PATH = "/etc/carina/"
CONFIG_NAME = "config.json"

SCHEDULER_BINPACK = "binpack"
SCHEDULER_SPREADOUT = "spreadout"

_LEGACY_GROUPS = ("ssd", "hdd")
_LEGACY_GROUP_FORMAT = "carina-vg-{}"


@dataclass
class DiskSelectorItem:
    """A named group of disks selected by regular expressions."""

    name: str = ""
    patterns: list[str] = field(default_factory=list)
    policy: str = ""
    node_label: str = ""

    @property
    def is_raw(self) -> bool:
        return self.policy.lower() == RAW_VOLUME_TYPE


def _lower_keys(data: Mapping[str, Any]) -> dict[str, Any]:
    return {str(key).lower(): value for key, value in data.items()}


def _as_list(value: Any) -> list[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return value.split(",") if value else []
    return [str(item) for item in value]


def _selector(data: Mapping[str, Any]) -> DiskSelectorItem:
    values = _lower_keys(data)
    return DiskSelectorItem(
        name=str(values.get("name", "")),
        patterns=_as_list(values.get("re")),
        policy=str(values.get("policy", "")),
        node_label=str(values.get("nodelabel", "")),
    )


def _legacy_name(disk_type: str) -> str:
    group = disk_type.lower()
    if group in _LEGACY_GROUPS:
        return _LEGACY_GROUP_FORMAT.format(group)
    return group


@dataclass
class SchedulerConfig:
    """Disk selectors and scheduling strategy read from the configuration file."""

    disk_selectors: list[DiskSelectorItem] = field(default_factory=list)
    disk_scan_interval: int = 0
    strategy: str = ""

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> SchedulerConfig:
        """Build a configuration from decoded JSON; keys are case-insensitive."""
        values = _lower_keys(data)
        selectors = values.get("diskselector", values.get("diskselectors")) or []
        return cls(
            disk_selectors=[_selector(item) for item in selectors],
            disk_scan_interval=int(values.get("diskscaninterval", 0) or 0),
            strategy=str(values.get("schedulerstrategy", "") or ""),
        )

    def scheduler_strategy(self) -> str:
        """Return ``binpack`` or ``spreadout``; anything else means ``binpack``."""
        strategy = self.strategy.lower()
        if strategy in (SCHEDULER_BINPACK, SCHEDULER_SPREADOUT):
            return strategy
        return SCHEDULER_BINPACK

    def get_device_group(self, disk_type: str) -> str:
        """Map a storage-class disk type to the device group it names.

        A configured non-raw group is returned as given; the legacy names
        ``ssd`` and ``hdd`` become ``carina-vg-ssd`` and ``carina-vg-hdd``.
        """
        for selector in self.disk_selectors:
            if selector.is_raw:
                continue
            if selector.name == disk_type:
                return disk_type
        return _legacy_name(disk_type)

    def check_raw_device_group(self, disk_type: str) -> bool:
        """Tell whether ``disk_type`` names a configured raw disk group."""
        group = _legacy_name(disk_type)
        return any(s.name == group and s.is_raw for s in self.disk_selectors)


def load_config(path: str = CONFIG_PATH) -> SchedulerConfig:
    """Read the JSON configuration from a file, or ``config.json`` in a directory."""
    if os.path.isdir(path):
        path = os.path.join(path, CONFIG_NAME)
    with open(path, encoding="utf-8") as handle:
        data = json.load(handle)
    if not isinstance(data, Mapping):
        raise ValueError(f"configuration in {path} is not a JSON object")
    return SchedulerConfig.from_dict(data)