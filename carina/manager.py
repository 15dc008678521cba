"""The device manager: volume and partition access plus capacity notices."""

from __future__ import annotations

import logging
import queue
import threading
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

from carina.commands import CommandExecutor
from carina.lvm import Lvm2
from carina.bcache import Bcache
from carina.partition import LocalPartition
from carina.scheduler_config import DiskSelectorItem
from carina.volume import LocalVolume, NamedLocks

_log = logging.getLogger(__name__)

NOTICE_TIMEOUT = 10.0


class Trigger(str, Enum):
    """What caused a capacity update notice."""

    DUMMY = "dummy"
    CONFIG_MODIFY = "configModify"
    LVM_CHECK = "lvmCheck"
    CLEANUP_ORPHAN = "cleanupOrphan"
    LOGIC_VOLUME_CONTROLLER = "logicVolumeController"


@dataclass
class VolumeEvent:
    """A request to refresh node capacity; ``done`` is set once it is handled."""

    trigger: Trigger
    trigger_at: datetime = field(default_factory=datetime.now)
    done: threading.Event | None = None


def _no_selectors() -> list[DiskSelectorItem]:
    return []


def _no_labels() -> Mapping[str, str]:
    return {}


class DeviceManager:
    """Holds the node's volume and partition managers and its notice queues."""

    def __init__(
        self,
        node_name: str,
        *,
        disk_selectors: Callable[[], Iterable[DiskSelectorItem]] = _no_selectors,
        node_labels: Callable[[], Mapping[str, str]] = _no_labels,
        volume_manager: LocalVolume | None = None,
        partition: LocalPartition | None = None,
        notice_timeout: float = NOTICE_TIMEOUT,
    ) -> None:
        executor = CommandExecutor()
        self.node_name = node_name
        self.disk_selectors = disk_selectors
        self.node_labels = node_labels
        self.volume_manager = (
            volume_manager
            if volume_manager is not None
            else LocalVolume(Lvm2(executor), Bcache(executor), NamedLocks())
        )
        self.partition = partition if partition is not None else LocalPartition(executor)
        self.notice_timeout = notice_timeout
        self._notice_queues: list[queue.Queue[VolumeEvent]] = []

    def node_disk_select_group(self) -> dict[str, DiskSelectorItem] | None:
        """Return the disk selectors that apply to this node, keyed by name.

        A selector applies when it has no node label or the node carries
        that label. None is returned when the node's labels cannot be read.
        """
        try:
            labels = self.node_labels()
        except (LookupError, OSError) as exc:
            _log.error("get node %s error %s", self.node_name, exc)
            return None
        return {
            item.name: item
            for item in self.disk_selectors()
            if not item.node_label or item.node_label in labels
        }

    def notice_update_capacity(
        self, trigger: Trigger, done: threading.Event | None = None
    ) -> None:
        """Send an update event to every registered queue, skipping full ones."""
        for notice in self._notice_queues:
            event = VolumeEvent(trigger=trigger, trigger_at=datetime.now(), done=done)
            try:
                notice.put(event, timeout=self.notice_timeout)
            except queue.Full:
                _log.debug(
                    "Notice channel is full, send update channel timeout(%ss).",
                    self.notice_timeout,
                )

    def register_notice_queue(self, queue: queue.Queue[VolumeEvent]) -> None:
        self._notice_queues.append(queue)