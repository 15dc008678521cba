"""Parsers for the name-prefixed output of pvs, vgs and lvs."""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Iterator
from typing import Any

from carina.types import LvInfo, PVInfo, VgGroup

_log = logging.getLogger(__name__)


def _parse_uint(value: str, bits: int = 64) -> int:
    """Parse an unsigned decimal; malformed text gives 0, overflow saturates."""
    if not value.isascii() or not value.isdigit():
        return 0
    return min(int(value), (1 << bits) - 1)


def _parse_uint32(value: str) -> int:
    return _parse_uint(value, 32)


def _parse_float(value: str) -> float:
    try:
        return float(value)
    except ValueError:
        return 0.0


def _lines(text: str) -> Iterator[list[tuple[str, str]]]:
    """Yield the key/value pairs of each non-empty record line."""
    cleaned = text.replace("'", "").replace(" ", "")
    for line in cleaned.split("\n"):
        if not line:
            continue
        pairs = []
        for item in line.split(","):
            parts = item.split("=")
            if len(parts) < 2:
                _log.warning("malformed field %r", item)
                continue
            pairs.append((parts[0], parts[1]))
        yield pairs


_Spec = dict[str, tuple[str, Callable[[str], Any]]]


def _records(text: str, factory: Callable[..., Any], spec: _Spec) -> Iterator[Any]:
    if not text:
        return
    for pairs in _lines(text):
        values: dict[str, Any] = {}
        for key, raw in pairs:
            entry = spec.get(key)
            if entry is None:
                _log.warning("undefined field %s=%s", key, raw)
                continue
            attr, convert = entry
            values[attr] = convert(raw)
        yield factory(**values)


_VG_FIELDS: _Spec = {
    "LVM2_VG_NAME": ("vg_name", str),
    "LVM2_PV_COUNT": ("pv_count", _parse_uint),
    "LVM2_LV_COUNT": ("lv_count", _parse_uint),
    "LVM2_VG_ATTR": ("vg_attr", str),
    "LVM2_VG_SIZE": ("vg_size", _parse_uint),
    "LVM2_VG_FREE": ("vg_free", _parse_uint),
}

_LV_FIELDS: _Spec = {
    "LVM2_LV_NAME": ("lv_name", str),
    "LVM2_VG_NAME": ("vg_name", str),
    "LVM2_LV_PATH": ("lv_path", str),
    "LVM2_LV_SIZE": ("lv_size", _parse_uint),
    "LVM2_LV_KERNEL_MAJOR": ("lv_kernel_major", _parse_uint32),
    "LVM2_LV_KERNEL_MINOR": ("lv_kernel_minor", _parse_uint32),
    "LVM2_ORIGIN": ("origin", str),
    "LVM2_ORIGIN_SIZE": ("origin_size", _parse_uint),
    "LVM2_POOL_LV": ("pool_lv", str),
    "LVM2_THIN_COUNT": ("thin_count", _parse_uint),
    "LVM2_LV_TAGS": ("lv_tags", str),
    "LVM2_DATA_PERCENT": ("data_percent", _parse_float),
    "LVM2_LV_ATTR": ("lv_attr", str),
    "LVM2_LV_ACTIVE": ("lv_active", str),
}

_PV_FIELDS: _Spec = {
    "LVM2_PV_NAME": ("pv_name", str),
    "LVM2_VG_NAME": ("vg_name", str),
    "LVM2_PV_FMT": ("pv_fmt", str),
    "LVM2_PV_ATTR": ("pv_attr", str),
    "LVM2_PV_SIZE": ("pv_size", _parse_uint),
    "LVM2_PV_FREE": ("pv_free", _parse_uint),
}


def parse_vgs(text: str) -> list[VgGroup]:
    """Parse vgs output; every group starts with an empty list of PVs."""
    return list(_records(text, VgGroup, _VG_FIELDS))


def parse_lvs(text: str, prefixes: Iterable[str] | str) -> list[LvInfo]:
    """Parse lvs output, keeping only volumes whose name starts with a prefix."""
    wanted = (prefixes,) if isinstance(prefixes, str) else tuple(prefixes)
    return [lv for lv in _records(text, LvInfo, _LV_FIELDS) if lv.lv_name.startswith(wanted)]


def parse_pvs(text: str) -> list[PVInfo]:
    """Parse pvs output."""
    return list(_records(text, PVInfo, _PV_FIELDS))