"""Local volume management on top of LVM2 and bcache."""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterable, Iterator
from contextlib import contextmanager

from carina.bcache import Bcache
from carina.commands import CommandError
from carina.lvm import VOLUME_PREFIX, Lvm2, NotFoundError
from carina.types import BcacheDeviceInfo, LvInfo, PVInfo, VgGroup

_log = logging.getLogger(__name__)

VOLUME_MUTEX = "VolumeMutex"
DEFAULT_RESERVED_SPACE = 10 << 30
RESOURCE_EXHAUSTED = "ResourceExhausted"
DEVICE_VG_HDD = "carina-vg-hdd"
DEVICE_VG_SSD = "carina-vg-ssd"


class VolumeError(Exception):
    """A volume operation was refused or could not be completed."""


class NamedLocks:
    """A set of non-blocking locks identified by name."""

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._held: set[str] = set()

    def try_acquire(self, name: str) -> bool:
        """Take the lock ``name`` if it is free; return whether it was taken."""
        with self._guard:
            if name in self._held:
                return False
            self._held.add(name)
            return True

    def release(self, name: str) -> None:
        with self._guard:
            self._held.discard(name)


class LocalVolume:
    """Creates, resizes and removes logical volumes and the disks under them."""

    def __init__(
        self,
        lv: Lvm2 | None = None,
        bcache: Bcache | None = None,
        locks: NamedLocks | None = None,
        *,
        reserved_space: int = DEFAULT_RESERVED_SPACE,
        volume_prefix: str = VOLUME_PREFIX,
        health_check_groups: Iterable[str] = (DEVICE_VG_HDD, DEVICE_VG_SSD),
    ) -> None:
        self.lv = lv if lv is not None else Lvm2()
        self.bcache = bcache if bcache is not None else Bcache()
        self.locks = locks if locks is not None else NamedLocks()
        self.reserved_space = reserved_space
        self.volume_prefix = volume_prefix
        self.health_check_groups = tuple(health_check_groups)

    @contextmanager
    def _volume_lock(self) -> Iterator[None]:
        if not self.locks.try_acquire(VOLUME_MUTEX):
            _log.info("wait other task release mutex, please retry...")
            raise VolumeError("get global mutex failed")
        try:
            yield
        finally:
            self.locks.release(VOLUME_MUTEX)

    def _find_lv(self, lv: str, vg: str) -> LvInfo | None:
        if not lv:
            return None
        try:
            return self.lv.lv_display(lv, vg)
        except (NotFoundError, CommandError):
            return None

    def create_volume(self, lv_name: str, vg_name: str, size: int, ratio: int = 1) -> None:
        """Create the volume ``lv_name`` of ``size`` bytes unless it already exists."""
        with self._volume_lock():
            vg = self.lv.vg_display(vg_name)
            if vg.vg_free - size < self.reserved_space:
                _log.warning("%s don't have enough space, reserved 10 g", vg_name)
                raise VolumeError(RESOURCE_EXHAUSTED)
            name = self.volume_prefix + lv_name
            existing = self._find_lv(name, vg_name)
            if existing is not None and existing.vg_name == vg_name:
                _log.info("%s/%s volume exists", vg_name, name)
                return
            self.lv.lv_create_from_vg(name, vg_name, size, [], 0, "")

    def delete_volume(self, lv_name: str, vg_name: str) -> None:
        """Remove a volume, its bcache device and any thin pool beneath it."""
        with self._volume_lock():
            name = lv_name if lv_name.startswith(self.volume_prefix) else self.volume_prefix + lv_name
            try:
                info = self.lv.lv_display(name, vg_name)
            except NotFoundError:
                _log.warning("volume %s/%s not exist", vg_name, lv_name)
                return
            try:
                self.delete_bcache(f"/dev/{vg_name}/{name}", "")
            except CommandError as exc:
                _log.debug("no bcache device over %s/%s: %s", vg_name, name, exc)
            self.lv.lv_remove(name, vg_name)
            if self._find_lv(info.pool_lv, vg_name) is None:
                return
            self.lv.delete_thin_pool(info.pool_lv, vg_name)

    def resize_volume(self, lv_name: str, vg_name: str, size: int, ratio: int = 1) -> None:
        """Grow a volume to ``size`` bytes, growing its thin pool first if needed."""
        with self._volume_lock():
            vg = self.lv.vg_display(vg_name)
            name = self.volume_prefix + lv_name
            try:
                info = self.lv.lv_display(name, vg_name)
            except (NotFoundError, CommandError) as exc:
                _log.error("get volume info failed %s/%s %s", vg_name, name, exc)
                return
            if info.lv_size == size:
                _log.info("%s/%s have expend", vg_name, lv_name)
                return
            if vg.vg_free - (size - info.lv_size) < self.reserved_space:
                _log.warning("%s don't have enough space, reserved 10 g", vg_name)
                raise VolumeError(RESOURCE_EXHAUSTED)
            thin = self._find_lv(info.pool_lv, vg_name)
            if thin is not None and thin.lv_size < size:
                self.lv.resize_thin_pool(info.pool_lv, vg_name, size * ratio)
            self.lv.lv_resize(name, vg_name, size)

    def volume_list(self, lv_name: str = "", vg_name: str = "") -> list[LvInfo]:
        """List managed volumes, or only ``vg_name/lv_name`` when both are given."""
        name = f"{vg_name}/{lv_name}" if lv_name and vg_name else ""
        return self.lv.lvs(name)

    def volume_info(self, lv_name: str, vg_name: str) -> LvInfo:
        try:
            volumes = self.volume_list(lv_name, vg_name)
        except CommandError as exc:
            raise VolumeError(f"failed to list lv :{exc}") from exc
        for volume in volumes:
            if volume.lv_name == lv_name:
                return volume
        raise NotFoundError("not found")

    def get_current_vg_struct(self) -> list[VgGroup]:
        """Return every volume group with the physical volumes that belong to it."""
        groups = self.lv.vgs()
        by_name = {group.vg_name: group for group in groups}
        for pv in self.lv.pvs():
            group = by_name.get(pv.vg_name) if pv.vg_name else None
            if group is not None:
                group.pvs.append(pv)
        return list(by_name.values())

    def get_current_pv_struct(self) -> list[PVInfo]:
        return self.lv.pvs()

    def add_new_disk_to_vg(self, disk: str, vg_name: str) -> None:
        """Make ``disk`` a PV and add it to ``vg_name``, creating the group if needed."""
        vg_name = vg_name.lower()
        with self._volume_lock():
            try:
                pv = self.lv.pv_display(disk)
            except NotFoundError:
                pv = None
            if pv is None:
                self.lv.pv_create(disk)
            elif pv.vg_name:
                _log.error("pv %s have bind vg %s", pv.pv_name, pv.vg_name)
                raise VolumeError(f"pv {pv.pv_name} have bind vg {pv.vg_name} ")
            try:
                self.lv.vg_display(vg_name)
            except NotFoundError:
                self.lv.vg_create(vg_name, [vg_name], [disk])
            else:
                self.lv.vg_extend(vg_name, disk)

    def remove_disk_in_vg(self, disk: str, vg_name: str) -> None:
        """Take ``disk`` out of ``vg_name``, removing the group if it was the last PV."""
        with self._volume_lock():
            pv = self.lv.pv_display(disk)
            if pv.vg_name != vg_name:
                _log.error("pv %s have bind vg %s not %s", pv.pv_name, pv.vg_name, vg_name)
                raise VolumeError(f"pv {pv.pv_name} have bind vg {pv.vg_name} not {vg_name} ")
            if not pv.vg_name:
                self.lv.pv_remove(disk)
                return
            vg = self.lv.vg_display(vg_name)
            if vg.pv_count == 1:
                if vg.lv_count > 0:
                    _log.warning(
                        "cannot remove the disk %s because there are still have logic volumes", disk
                    )
                    raise VolumeError("still have logical volumes")
                self.lv.vg_remove(vg_name)
                self.lv.pv_remove(disk)
                return
            if vg.vg_free < pv.pv_size:
                _log.warning("cannot remove the disk %s because there will not enough space", disk)
                raise VolumeError(RESOURCE_EXHAUSTED)
            self.lv.vg_reduce(vg_name, disk)

    def health_check(self) -> None:
        """Drop missing devices from the default volume groups."""
        if not self.locks.try_acquire(VOLUME_MUTEX):
            _log.info("wait other task release mutex, please retry...")
            return
        try:
            for group in self.health_check_groups:
                try:
                    self.lv.remove_unknown_device(group)
                except CommandError as exc:
                    _log.debug("remove unknown device in %s: %s", group, exc)
        finally:
            self.locks.release(VOLUME_MUTEX)

    def refresh_lvm_cache(self) -> None:
        """Start lvmpolld and rescan PVs and VGs into the metadata cache."""
        try:
            self.lv.start_lvm2()
        except CommandError as exc:
            _log.warning("start lvm2 failed: %s", exc)
        try:
            self.lv.pv_scan("")
        except CommandError as exc:
            _log.warning("error during pvscan: %s", exc)
        try:
            self.lv.vg_scan("")
        except CommandError as exc:
            _log.warning("error during vgscan: %s", exc)

    def create_bcache(
        self, dev: str, cache_dev: str, block: str, bucket: str, cache_policy: str
    ) -> BcacheDeviceInfo:
        """Build a bcache device from ``dev`` and ``cache_dev`` and set its cache mode."""
        try:
            self.bcache.create_bcache(dev, cache_dev, block, bucket)
            self.bcache.register_device(dev, cache_dev)
            info = self.bcache.get_device_bcache(dev)
            self.bcache.set_cache_mode(info.name, cache_policy)
        except CommandError as exc:
            _log.error("create bcache failed device %s cache device %s error %s", dev, cache_dev, exc)
            raise
        return info

    def delete_bcache(self, dev: str, cache_dev: str = "") -> None:
        info = self.bcache_device_info(dev)
        self.bcache.remove_bcache(info)

    def bcache_device_info(self, dev: str) -> BcacheDeviceInfo:
        """Combine the bcache superblock of ``dev`` with its kernel device details."""
        info = self.bcache.show_device(dev)
        info.device_path = dev
        device = self.bcache.get_device_bcache(dev)
        info.kernel_major = device.kernel_major
        info.kernel_minor = device.kernel_minor
        info.name = device.name
        info.bcache_path = device.bcache_path
        return info