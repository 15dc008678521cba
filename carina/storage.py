"""Local-storage scheduling: filter and score nodes by free disk capacity."""

from __future__ import annotations

import logging
import math
import re
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field
from enum import Enum

from carina.scheduler_config import (
    CSI_PLUGIN_NAME,
    DEVICE_CAPACITY_KEY_PREFIX,
    DEVICE_DISK_KEY,
    EXCLUSIVITY_DISK,
    SCHEDULER_BINPACK,
    SCHEDULER_SPREADOUT,
    VOLUME_BACKEND_DISK_TYPE,
    VOLUME_CACHE_DISK_RATIO,
    VOLUME_CACHE_DISK_TYPE,
    VOLUME_DEVICE_NODE,
    SchedulerConfig,
)

_log = logging.getLogger(__name__)

NAME = "local-storage"
MAX_SCORE = 10
NEUTRAL_SCORE = 5
CLAIM_BOUND = "Bound"

_INTEGER = re.compile(r"[+-]?[0-9]+")
_RATIO_MESSAGE = "carina.storage.io/cache-disk-ratio should be in 1-100"


class Code(Enum):
    """Outcome of a scheduling step."""

    SUCCESS = "Success"
    ERROR = "Error"
    UNSCHEDULABLE = "Unschedulable"
    UNSCHEDULABLE_AND_UNRESOLVABLE = "UnschedulableAndUnresolvable"


@dataclass(frozen=True)
class Status:
    """A scheduling result code with an explanation."""

    code: Code
    message: str = ""

    @property
    def is_success(self) -> bool:
        return self.code is Code.SUCCESS


@dataclass
class PvcRequest:
    """Bytes a claim asks for, and whether it wants a whole disk to itself."""

    exclusive: bool
    request: int


@dataclass
class StorageClass:
    name: str
    provisioner: str = CSI_PLUGIN_NAME
    parameters: dict[str, str] = field(default_factory=dict)


@dataclass
class PersistentVolumeClaim:
    name: str
    namespace: str = "default"
    storage_class_name: str | None = None
    request: int = 0
    phase: str = "Pending"
    volume_name: str = ""


@dataclass
class PersistentVolume:
    name: str
    volume_attributes: dict[str, str] = field(default_factory=dict)


@dataclass
class Pod:
    name: str
    namespace: str = "default"
    claim_names: list[str] = field(default_factory=list)


def _gigabytes(size: int) -> int:
    """Round a byte count up to whole GiB."""
    return ((size - 1) >> 30) + 1


def minimum_value_minus(array: list[int], request: PvcRequest) -> int:
    """Take ``request`` from the smallest capacity in ``array`` that holds it.

    ``array`` is sorted in place. The chosen entry is reduced by the request
    in GiB, or set to 0 for an exclusive request. Returns its index, or -1
    if no entry is large enough.
    """
    array.sort()
    request_gb = _gigabytes(request.request)
    index = next((i for i, value in enumerate(array) if value >= request_gb), -1)
    if index < 0:
        return index
    if request.exclusive:
        array[index] = 0
    else:
        array[index] -= request_gb
    return index


def _ratio(numerator: float, denominator: float) -> float:
    if denominator:
        return numerator / denominator
    if numerator:
        return math.inf
    return math.nan


class LocalStorage:
    """Decides which nodes have room for a pod's carina volumes."""

    name = NAME

    def __init__(
        self,
        config: SchedulerConfig,
        *,
        storage_classes: Mapping[str, StorageClass],
        claims: Mapping[tuple[str, str], PersistentVolumeClaim],
        volumes: Mapping[str, PersistentVolume],
        node_allocatable: Callable[[str], Mapping[str, int]],
        exclusive_disks: Callable[[str], Iterable[str]] | None = None,
    ) -> None:
        self.config = config
        self.storage_classes = storage_classes
        self.claims = claims
        self.volumes = volumes
        self.node_allocatable = node_allocatable
        self.exclusive_disks = exclusive_disks

    def _claim(self, namespace: str, name: str) -> PersistentVolumeClaim:
        try:
            return self.claims[(namespace, name)]
        except KeyError:
            raise LookupError(f'persistentvolumeclaim "{name}" not found') from None

    def _storage_class(self, name: str) -> StorageClass:
        try:
            return self.storage_classes[name]
        except KeyError:
            raise LookupError(f'storageclass "{name}" not found') from None

    def _volume(self, name: str) -> PersistentVolume:
        try:
            return self.volumes[name]
        except KeyError:
            raise LookupError(f'persistentvolume "{name}" not found') from None

    def pvc_request_map(self, pod: Pod) -> tuple[dict[str, list[PvcRequest]], str, bool]:
        """Group the pod's unbound carina claims by device group.

        Returns the requests by group, the node any bound claim is pinned to
        (or ""), and whether a raw disk group is asked for. Raises
        LookupError for missing objects and ValueError for bad settings.
        """
        node_name = ""
        requests: dict[str, list[PvcRequest]] = {}
        use_raw = False
        exclusive = False
        for claim_name in pod.claim_names:
            pvc = self._claim(pod.namespace, claim_name)
            if pvc.storage_class_name is None:
                continue
            sc = self._storage_class(pvc.storage_class_name)
            if sc.provisioner != CSI_PLUGIN_NAME:
                continue

            # a bound claim pins every new volume of the pod to its node
            if pvc.phase == CLAIM_BOUND:
                pv = self._volume(pvc.volume_name)
                pv_node = pv.volume_attributes.get(VOLUME_DEVICE_NODE, "")
                if not node_name:
                    node_name = pv_node
                elif node_name != pv_node:
                    raise ValueError("pvc node clash")
                continue

            device_group = sc.parameters.get(DEVICE_DISK_KEY, "")
            if self.config.check_raw_device_group(device_group):
                use_raw = True
            if not device_group:
                device_group = sc.parameters.get(VOLUME_BACKEND_DISK_TYPE, "")

            cache_group = sc.parameters.get(VOLUME_CACHE_DISK_TYPE, "")
            if cache_group:
                cache_group = self.config.get_device_group(device_group)
                ratio_text = sc.parameters.get(VOLUME_CACHE_DISK_RATIO, "")
                if not _INTEGER.fullmatch(ratio_text):
                    raise ValueError(_RATIO_MESSAGE)
                ratio = int(ratio_text)
                if ratio < 1 or ratio >= 100:
                    raise ValueError(_RATIO_MESSAGE)
                cache_bytes = pvc.request * ratio // 100
                requests.setdefault(cache_group, []).append(PvcRequest(False, cache_bytes))

            if not device_group:
                raise ValueError(f"not set deviceGroup in storageClass {sc.name}")
            device_group = self.config.get_device_group(device_group)
            if sc.parameters.get(EXCLUSIVITY_DISK) == "true":
                exclusive = True
            requests[device_group] = [
                *requests.get(cache_group, []),
                PvcRequest(exclusive, pvc.request),
            ]
        _log.debug("pvcRequestMap: %s, node: %s, useRaw: %s", requests, node_name, use_raw)
        return requests, node_name, use_raw

    def allocatable_map(self, use_raw: bool, pod_name: str, node_name: str) -> dict[str, int]:
        """Return the node's allocatable GiB by device group, skipping exclusive disks."""
        exclusive: list[str] = []
        if use_raw and self.exclusive_disks is not None:
            try:
                exclusive = list(self.exclusive_disks(node_name))
            except (LookupError, OSError) as exc:
                _log.debug("failed to obtain node lvs, pod: %s node: %s, err: %s", pod_name, node_name, exc)
                raise LookupError(f"failed to obtain node lvs, {exc}") from exc

        try:
            allocatable = dict(self.node_allocatable(node_name))
        except (LookupError, OSError) as exc:
            _log.debug(
                "failed to obtain node storages, pod: %s node: %s, err: %s", pod_name, node_name, exc
            )
            raise LookupError(f"Failed to obtain node storages, {exc}") from exc

        result: dict[str, int] = {}
        for key, value in allocatable.items():
            if not key.startswith(DEVICE_CAPACITY_KEY_PREFIX):
                continue
            group = key[len(DEVICE_CAPACITY_KEY_PREFIX):]
            if self.config.check_raw_device_group(group.split("/")[0]) and group in exclusive:
                continue
            result[group] = value

        if not result:
            _log.debug("can't get device allocatableMap, pod: %s, node: %s", pod_name, node_name)
            raise LookupError("can't get device allocatableMap")
        return result

    def _raw_capacities(self, group: str, allocatable: Mapping[str, int]) -> list[int]:
        return [value for key, value in allocatable.items() if group in key]

    def filter(self, pod: Pod, node_name: str) -> Status:
        """Tell whether ``node_name`` has room for every volume the pod asks for."""
        try:
            requests, bound_node, use_raw = self.pvc_request_map(pod)
        except (LookupError, ValueError) as exc:
            return Status(Code.ERROR, str(exc))

        if bound_node and bound_node != node_name:
            return Status(Code.UNSCHEDULABLE_AND_UNRESOLVABLE, "pv node mismatch")
        if not requests:
            return Status(Code.SUCCESS)

        try:
            allocatable = self.allocatable_map(use_raw, pod.name, node_name)
        except LookupError as exc:
            return Status(Code.UNSCHEDULABLE_AND_UNRESOLVABLE, str(exc))

        insufficient = Status(Code.UNSCHEDULABLE_AND_UNRESOLVABLE, "node storage resource insufficient")
        for group, group_requests in requests.items():
            ordered = sorted(group_requests, key=lambda r: r.request, reverse=True)
            if self.config.check_raw_device_group(group):
                capacities = self._raw_capacities(group, allocatable)
                for request in ordered:
                    if minimum_value_minus(capacities, request) < 0:
                        return insufficient
            else:
                total_gb = _gigabytes(sum(r.request for r in ordered))
                if total_gb >= allocatable.get(group, 0):
                    return insufficient
        return Status(Code.SUCCESS)

    def score(self, pod: Pod, node_name: str) -> tuple[int, Status]:
        """Score ``node_name`` from 0 to MAX_SCORE by the configured strategy."""
        try:
            requests, bound_node, use_raw = self.pvc_request_map(pod)
        except (LookupError, ValueError) as exc:
            return 0, Status(Code.UNSCHEDULABLE_AND_UNRESOLVABLE, str(exc))

        if bound_node == node_name:
            return MAX_SCORE, Status(Code.SUCCESS)
        if not requests:
            return NEUTRAL_SCORE, Status(Code.SUCCESS)

        try:
            allocatable = self.allocatable_map(use_raw, pod.name, node_name)
        except LookupError as exc:
            return 0, Status(Code.UNSCHEDULABLE_AND_UNRESOLVABLE, str(exc))

        strategy = self.config.scheduler_strategy()
        total = 0.0
        for group, group_requests in requests.items():
            request_gb = _gigabytes(sum(r.request for r in group_requests))
            if self.config.check_raw_device_group(group):
                capacity = sum(self._raw_capacities(group, allocatable))
            else:
                capacity = allocatable.get(group, 0)
            used = _ratio(request_gb, capacity)
            if strategy == SCHEDULER_SPREADOUT:
                total += 1.0 - used
            elif strategy == SCHEDULER_BINPACK:
                total += used

        value = total / len(requests) * MAX_SCORE
        score = int(value) if math.isfinite(value) else 0
        _log.debug("score pod: %s, node: %s, score: %d", pod.name, node_name, score)
        return score, Status(Code.SUCCESS)