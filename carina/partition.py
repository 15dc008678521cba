"""Listing local block devices and probing partition tables."""

from __future__ import annotations

import logging
import os
from collections.abc import Iterable

from carina.commands import CommandExecutor
from carina.types import KEYWORD, PART_TYPE, LocalDisk

_log = logging.getLogger(__name__)

MIN_DISK_SIZE = 10 << 30

_LSBLK_ARGS = (
    "--pairs",
    "--paths",
    "--bytes",
    "--output",
    "NAME,FSTYPE,MOUNTPOINT,SIZE,STATE,TYPE,ROTA,RO,PKNAME,MAJ:MIN",
)

_STRING_FIELDS = {
    "NAME": "name",
    "MOUNTPOINT": "mount_point",
    "STATE": "state",
    "TYPE": "type",
    "ROTA": "rotational",
    "FSTYPE": "filesystem",
    "PKNAME": "parent_name",
    "MAJ:MIN": "device_number",
}


def _uint(value: str) -> int:
    if not value.isascii() or not value.isdigit():
        return 0
    return min(int(value), (1 << 64) - 1)


def parse_udev_info(output: str) -> dict[str, str]:
    """Turn ``KEY=value`` lines into a dict; lines without ``=`` are skipped."""
    result: dict[str, str] = {}
    for line in output.split("\n"):
        pairs = line.split("=")
        if len(pairs) > 1:
            result[pairs[0]] = pairs[1]
    return result


def parse_disk_string(text: str) -> list[LocalDisk]:
    """Parse ``lsblk --pairs`` output into one LocalDisk per line."""
    disks: list[LocalDisk] = []
    if not text:
        return disks
    for line in text.replace('"', "").split("\n"):
        if not line.strip():
            continue
        disk = LocalDisk()
        for item in line.split(" "):
            parts = item.split("=")
            if len(parts) < 2:
                continue
            key, value = parts[0], parts[1]
            if key == "SIZE":
                disk.size = _uint(value)
            elif key == "RO":
                disk.readonly = value == "1"
            elif key in _STRING_FIELDS:
                setattr(disk, _STRING_FIELDS[key], value)
            else:
                _log.warning("undefined field %s-%s", key, value)
        disks.append(disk)
    return disks


def filter_disks(disks: Iterable[LocalDisk]) -> list[LocalDisk]:
    """Keep whole, writable, unused disks of at least 10 GiB not made by carina."""
    return [
        d
        for d in disks
        if d.type != PART_TYPE
        and not d.parent_name
        and KEYWORD not in d.name
        and not d.readonly
        and d.size >= MIN_DISK_SIZE
        and not d.filesystem
        and not d.mount_point
    ]


class LocalPartition:
    """Block device discovery through lsblk and udev."""

    def __init__(self, executor: CommandExecutor | None = None) -> None:
        self.executor = executor if executor is not None else CommandExecutor()

    def udev_settle(self) -> None:
        self.executor.output("udevadm", "settle")

    def part_probe(self) -> None:
        self.executor.execute("bash", "-c", "partprobe")

    def list_devices_detail_without_filter(self, device: str = "") -> list[LocalDisk]:
        """List every block device, or only ``device`` when given."""
        args = list(_LSBLK_ARGS)
        if device:
            args.append(device)
        return parse_disk_string(self.executor.output("lsblk", *args))

    def list_devices_detail(self, device: str = "") -> list[LocalDisk]:
        """List block devices that are free to be used whole."""
        return filter_disks(self.list_devices_detail_without_filter(device))

    def get_disk_used(self, device: str) -> int:
        """Return the used block count of the filesystem holding ``device``."""
        os.stat(device)
        try:
            stat = os.statvfs(device)
        except OSError as exc:
            _log.warning("statvfs %s failed: %s", device, exc)
            return 0
        return stat.f_blocks - stat.f_bavail

    def get_device(self, device_number: str) -> LocalDisk | None:
        """Return the device with the given ``major:minor`` number, if any."""
        for disk in self.list_devices_detail_without_filter():
            if disk.device_number == device_number:
                return disk
        return None