"""Creating, registering and removing bcache devices."""

from __future__ import annotations

import logging

from carina.bcache_parse import parse_bcache, parse_device
from carina.commands import CommandError, CommandExecutor
from carina.types import BcacheDeviceInfo

_log = logging.getLogger(__name__)


class Bcache:
    """bcache operations carried out through make-bcache and sysfs."""

    def __init__(self, executor: CommandExecutor | None = None) -> None:
        self.executor = executor if executor is not None else CommandExecutor()

    def _shell(self, script: str) -> None:
        self.executor.execute("/bin/sh", "-c", script)

    def create_bcache(self, dev: str, cache_dev: str, block: str = "", bucket: str = "") -> None:
        """Wipe both devices and make ``dev`` a backing device cached by ``cache_dev``."""
        for device in (dev, cache_dev):
            try:
                self.executor.execute("wipefs", "-af", device)
            except CommandError as exc:
                _log.warning("wipefs %s failed: %s", device, exc)
        if block and bucket:
            self.executor.execute(
                "make-bcache",
                "--block", block,
                "--bucket", bucket,
                "-B", dev,
                "-C", cache_dev,
                "--wipe-bcache",
            )
            return
        self.executor.execute("make-bcache", "-B", dev, "-C", cache_dev, "--wipe-bcache")

    def remove_bcache(self, info: BcacheDeviceInfo) -> None:
        """Detach the cache set, unregister it, unmount and stop the backing device."""
        self._shell(f"echo {info.cset_uuid} > /sys/block/{info.name}/bcache/detach")
        try:
            self._shell(f"echo 1 > /sys/fs/bcache/{info.cset_uuid}/unregister")
        except CommandError as exc:
            _log.warning("unregister cache set %s failed: %s", info.cset_uuid, exc)
        try:
            self.executor.execute("umount", f"/dev/{info.name}")
        except CommandError as exc:
            _log.warning("umount /dev/%s failed: %s", info.name, exc)
        self._shell(f"echo 1 > /sys/block/{info.name}/bcache/stop")

    def get_device_bcache(self, dev: str) -> BcacheDeviceInfo:
        """Return the kernel name and device numbers of the bcache device over ``dev``."""
        text = self.executor.output(
            "lsblk", "--pairs", "--noheadings", "--output", "KNAME,MAJ:MIN", dev
        )
        return parse_device(text)

    def register_device(self, *args: str) -> None:
        """Register each device with bcache, stopping at the first failure."""
        for device in args:
            self.executor.execute("bcache-register", device)

    def show_device(self, dev: str) -> BcacheDeviceInfo:
        """Read the bcache superblock of ``dev``."""
        return parse_bcache(self.executor.output("bcache-super-show", "-f", dev))

    def set_cache_mode(self, bcache: str, cache_policy: str) -> None:
        self._shell(f"echo {cache_policy} > /sys/block/{bcache}/bcache/cache_mode")