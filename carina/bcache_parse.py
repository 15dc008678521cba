"""Parsers for bcache-super-show and lsblk output."""

from __future__ import annotations

import logging

from carina.types import BcacheDeviceInfo

_log = logging.getLogger(__name__)

_SUPER_FIELDS = {
    "sb.magic": "magic",
    "sb.first_sector": "first_sector",
    "sb.csum": "csum",
    "sb.version": "version",
    "dev.label": "label",
    "dev.uuid": "uuid",
    "dev.sectors_per_block": "sectors_per_block",
    "dev.sectors_per_bucket": "sectors_per_bucket",
    "dev.data.first_sector": "data_first_sector",
    "dev.data.cache_mode": "data_cache_mode",
    "dev.data.cache_state": "data_cache_state",
    "cset.uuid": "cset_uuid",
}


def _uint32(value: str) -> int:
    if not value.isascii() or not value.isdigit():
        return 0
    return min(int(value), (1 << 32) - 1)


def parse_bcache(text: str) -> BcacheDeviceInfo:
    """Parse the tab-separated output of ``bcache-super-show -f``."""
    info = BcacheDeviceInfo()
    for line in text.split("\n"):
        parts = line.replace("\t\t\t", "\t").replace("\t\t", "\t").split("\t")
        if len(parts) < 2:
            continue
        key, value = parts[0], parts[1]
        attr = _SUPER_FIELDS.get(key)
        if attr is None:
            _log.warning("undefined field %s=%s", key, value)
            continue
        setattr(info, attr, value)
    return info


def parse_device(text: str) -> BcacheDeviceInfo:
    """Parse ``lsblk --pairs --output KNAME,MAJ:MIN`` output; the last line wins."""
    info = BcacheDeviceInfo()
    if not text:
        _log.error("the device information is empty")
        return info
    for line in text.replace('"', "").split("\n"):
        for item in line.split(" "):
            parts = item.split("=")
            if len(parts) < 2:
                continue
            key, value = parts[0], parts[1]
            if key == "MAJ:MIN":
                numbers = value.split(":")
                info.kernel_major = _uint32(numbers[0])
                info.kernel_minor = _uint32(numbers[1]) if len(numbers) > 1 else 0
            elif key == "KNAME":
                info.name = value
            else:
                _log.warning("undefined field %s-%s", key, value)
    info.bcache_path = "/dev/" + info.name
    return info