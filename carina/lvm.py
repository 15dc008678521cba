"""LVM2 operations carried out through the lvm command-line tools."""

from __future__ import annotations

import logging
import os
import time
from collections.abc import Iterable

from carina.commands import CommandError, CommandExecutor
from carina.lvm_parse import parse_lvs, parse_pvs, parse_vgs
from carina.types import LvInfo, PVInfo, VgGroup

_log = logging.getLogger(__name__)

VOLUME_PREFIX = "volume-"
THIN_PREFIX = "thin-"
LVMPOLLD_SOCKET = "/run/lvm/lvmpolld.socket"

_REPORT_ARGS = (
    "--noheadings",
    "--separator=,",
    "--units=b",
    "--nosuffix",
    "--unbuffered",
    "--nameprefixes",
)
_VG_FIELDS = ("-o", "VG_NAME,PV_COUNT,LV_COUNT,VG_ATTR,VG_SIZE,VG_FREE")
_LV_FIELDS = (
    "-o",
    "lv_name,vg_name,lv_path,lv_size,data_percent,lv_attr,lv_kernel_major,"
    "lv_kernel_minor,origin,origin_size,pool_lv,thin_count,lv_tags,lv_active",
)


class NotFoundError(LookupError):
    """A physical volume, volume group or logical volume does not exist."""


def _gigabytes(size: int) -> str:
    return f"{size >> 30}g"


class Lvm2:
    """Physical volumes, volume groups, logical volumes, thin pools and snapshots."""

    def __init__(
        self,
        executor: CommandExecutor | None = None,
        *,
        volume_prefixes: Iterable[str] = (VOLUME_PREFIX, THIN_PREFIX),
        settle_delay: float = 1.0,
        lvmpolld_socket: str = LVMPOLLD_SOCKET,
    ) -> None:
        self.executor = executor if executor is not None else CommandExecutor()
        self.volume_prefixes = tuple(volume_prefixes)
        self.settle_delay = settle_delay
        self.lvmpolld_socket = lvmpolld_socket

    # physical volumes

    def pv_check(self, dev: str) -> str:
        return self.executor.combined_output("pvck", dev)

    def pv_create(self, dev: str) -> None:
        self.executor.execute("pvcreate", dev)

    def pv_remove(self, dev: str) -> None:
        self.executor.execute("pvremove", dev)

    def pv_resize(self, dev: str) -> None:
        self.executor.execute("pvresize", dev)

    def pvs(self) -> list[PVInfo]:
        return parse_pvs(self.executor.output("pvs", *_REPORT_ARGS))

    def pv_scan(self, dev: str = "") -> None:
        """Scan ``dev`` (or every device when empty) into the LVM metadata cache."""
        args = ["--cache"]
        if dev:
            args.append(dev)
        self.executor.execute("pvscan", *args)

    def pv_display(self, dev: str) -> PVInfo:
        for pv in self.pvs():
            if pv.pv_name == dev:
                return pv
        raise NotFoundError("disk not found")

    # volume groups

    def vg_check(self, vg: str) -> None:
        self.executor.execute("vgck", vg)

    def vg_create(self, vg: str, tags: Iterable[str], pvs: Iterable[str]) -> None:
        args = [f"--add-tag={tag}" for tag in tags if tag]
        args.append(vg)
        args.extend(pvs)
        self.executor.execute("vgcreate", *args)

    def vg_remove(self, vg: str) -> None:
        self.executor.execute("vgremove", "-f", vg)

    def vgs(self) -> list[VgGroup]:
        return parse_vgs(self.executor.output("vgs", *_VG_FIELDS, *_REPORT_ARGS))

    def vg_display(self, vg: str) -> VgGroup:
        for group in self.vgs():
            if group.vg_name == vg:
                return group
        raise NotFoundError("vg not found")

    def vg_scan(self, vg: str = "") -> None:
        """Scan ``vg`` (or every volume group when empty) into the metadata cache."""
        args = ["--cache"]
        if vg:
            args.append(vg)
        self.executor.execute("vgscan", *args)

    def vg_extend(self, vg: str, pv: str) -> None:
        self.executor.execute("vgextend", vg, pv)

    def vg_reduce(self, vg: str, pv: str) -> None:
        """Move data off ``pv``, drop it from ``vg`` and wipe its label."""
        try:
            self.executor.output("pvmove", pv)
        except CommandError as exc:
            if "No data to move" not in exc.output:
                _log.error("%s", exc.output)
                raise
        _log.info("wait %ss to exec vgreduce", self.settle_delay)
        time.sleep(self.settle_delay)
        self.executor.execute("vgreduce", vg, pv)
        self.pv_remove(pv)

    # thin pools and logical volumes

    def create_thin_pool(self, lv: str, vg: str, size: int) -> None:
        self.executor.execute("lvcreate", "-T", f"{vg}/{lv}", "--size", _gigabytes(size))

    def resize_thin_pool(self, lv: str, vg: str, size: int) -> None:
        self.executor.execute("lvresize", "-f", "-L", _gigabytes(size), f"{vg}/{lv}")

    def delete_thin_pool(self, lv: str, vg: str) -> None:
        self.lv_remove(lv, vg)

    def lv_create_from_pool(self, lv: str, thin: str, vg: str, size: int) -> None:
        self.executor.execute(
            "lvcreate", "-T", f"{vg}/{thin}", "-n", lv, "-V", _gigabytes(size)
        )

    def lv_create_from_vg(
        self,
        lv: str,
        vg: str,
        size: int,
        tags: Iterable[str] = (),
        stripe: int = 0,
        stripe_size: str = "",
    ) -> None:
        """Create a linear (or striped) logical volume of ``size`` bytes in ``vg``."""
        args = ["-n", lv, "-L", _gigabytes(size), "-W", "y", "-y"]
        args.extend(f"--add-tag={tag}" for tag in tags if tag)
        if stripe:
            args.extend(["-i", str(stripe)])
            if stripe_size:
                args.extend(["-I", stripe_size])
        args.append(vg)
        self.executor.execute("lvcreate", *args)

    def lv_remove(self, lv: str, vg: str) -> None:
        self.executor.execute("lvremove", "-f", f"{vg}/{lv}")

    def lv_resize(self, lv: str, vg: str, size: int) -> None:
        self.executor.execute("lvresize", "-L", _gigabytes(size), f"{vg}/{lv}")

    def lv_display(self, lv: str, vg: str) -> LvInfo:
        found = self.lvs(f"{vg}/{lv}")
        if not found:
            raise NotFoundError("not found")
        return found[0]

    def lvs(self, lv_name: str = "") -> list[LvInfo]:
        """List managed logical volumes, or just ``lv_name`` (as ``vg/lv``)."""
        args = [*_LV_FIELDS, *_REPORT_ARGS]
        if lv_name:
            args.append(lv_name)
        try:
            text = self.executor.output("lvs", *args)
        except CommandError as exc:
            if "Failed to find logical volume" in exc.output:
                return []
            raise
        return parse_lvs(text, self.volume_prefixes)

    # snapshots

    def create_snapshot(self, snap: str, lv: str, vg: str) -> None:
        self.executor.execute("lvcreate", "-s", f"{vg}/{lv}", "-n", snap, "-ay", "-Ky")

    def delete_snapshot(self, snap: str, vg: str) -> None:
        self.lv_remove(snap, vg)

    def restore_snapshot(self, snap: str, vg: str) -> None:
        """Merge a snapshot back into its origin; the snapshot disappears."""
        self.executor.execute("lvconvert", "--merge", f"{vg}/{snap}")

    # maintenance

    def start_lvm2(self) -> None:
        """Start lvmpolld unless its socket is already present."""
        if not os.path.exists(self.lvmpolld_socket):
            self.executor.run_resident(3, "lvmpolld")

    def remove_unknown_device(self, vg: str) -> None:
        self.executor.execute("vgreduce", "--removemissing", vg)

    def part_probe(self) -> None:
        self.executor.execute("bash", "-c", "partprobe")