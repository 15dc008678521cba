import pytest

from carina.scheduler_config import (
    DEVICE_DISK_KEY,
    EXCLUSIVITY_DISK,
    VOLUME_BACKEND_DISK_TYPE,
    VOLUME_CACHE_DISK_RATIO,
    VOLUME_CACHE_DISK_TYPE,
    VOLUME_DEVICE_NODE,
    SchedulerConfig,
)
from carina.storage import (
    Code,
    LocalStorage,
    PersistentVolume,
    PersistentVolumeClaim,
    Pod,
    PvcRequest,
    StorageClass,
    minimum_value_minus,
)

GIB = 1 << 30


def make_config(strategy="binpack"):
    return SchedulerConfig.from_dict(
        {
            "diskSelector": [
                {"name": "carina-vg-ssd", "re": ["loop"], "policy": "LVM"},
                {"name": "carina-raw-ssd", "re": ["loop"], "policy": "RAW"},
            ],
            "schedulerStrategy": strategy,
        }
    )


STORAGE_CLASSES = {
    "lvm": StorageClass("lvm", parameters={DEVICE_DISK_KEY: "ssd"}),
    "raw": StorageClass("raw", parameters={DEVICE_DISK_KEY: "carina-raw-ssd"}),
    "raw-exclusive": StorageClass(
        "raw-exclusive",
        parameters={DEVICE_DISK_KEY: "carina-raw-ssd", EXCLUSIVITY_DISK: "true"},
    ),
    "other": StorageClass("other", provisioner="example.com/other"),
    "empty": StorageClass("empty"),
    "cache": StorageClass(
        "cache",
        parameters={
            VOLUME_BACKEND_DISK_TYPE: "ssd",
            VOLUME_CACHE_DISK_TYPE: "ssd",
            VOLUME_CACHE_DISK_RATIO: "50",
        },
    ),
    "bad-ratio": StorageClass(
        "bad-ratio",
        parameters={
            VOLUME_BACKEND_DISK_TYPE: "ssd",
            VOLUME_CACHE_DISK_TYPE: "ssd",
            VOLUME_CACHE_DISK_RATIO: "100",
        },
    ),
}

ALLOCATABLE = {
    "node1": {
        "carina.storage.io/carina-vg-ssd": 100,
        "carina.storage.io/carina-raw-ssd/loop1": 50,
        "carina.storage.io/carina-raw-ssd/loop2": 60,
        "unrelated": 5,
    },
    "empty-node": {"unrelated": 5},
}


def node_allocatable(node):
    return ALLOCATABLE[node]


def make_storage(claims, volumes=None, strategy="binpack", exclusive=()):
    return LocalStorage(
        make_config(strategy),
        storage_classes=STORAGE_CLASSES,
        claims={(c.namespace, c.name): c for c in claims},
        volumes={v.name: v for v in (volumes or [])},
        node_allocatable=node_allocatable,
        exclusive_disks=lambda node: list(exclusive),
    )


def pod_for(*claims):
    return Pod("pod", claim_names=[c.name for c in claims])


def test_minimum_value_minus_takes_smallest_fitting():
    array = [3, 4, 5, 2, 5, 23, 1]
    index = minimum_value_minus(array, PvcRequest(exclusive=False, request=3 * GIB))
    assert index == 2
    assert array == [1, 2, 0, 4, 5, 5, 23]


def test_minimum_value_minus_no_fit():
    array = [3, 4, 5, 2, 5, 23, 1]
    index = minimum_value_minus(array, PvcRequest(exclusive=False, request=33 * GIB))
    assert index == -1
    assert array == [1, 2, 3, 4, 5, 5, 23]


def test_minimum_value_minus_exclusive_zeroes_entry():
    array = [10, 5]
    assert minimum_value_minus(array, PvcRequest(exclusive=True, request=3 * GIB)) == 0
    assert array == [0, 10]


def test_pvc_request_map_lvm_claim():
    claim = PersistentVolumeClaim("data", storage_class_name="lvm", request=5 * GIB)
    storage = make_storage([claim])
    requests, node, use_raw = storage.pvc_request_map(pod_for(claim))
    assert requests == {"carina-vg-ssd": [PvcRequest(False, 5 * GIB)]}
    assert node == ""
    assert use_raw is False


def test_pvc_request_map_skips_foreign_and_classless_claims():
    foreign = PersistentVolumeClaim("a", storage_class_name="other", request=GIB)
    classless = PersistentVolumeClaim("b", request=GIB)
    storage = make_storage([foreign, classless])
    assert storage.pvc_request_map(pod_for(foreign, classless)) == ({}, "", False)


def test_pvc_request_map_bound_claim_pins_node():
    claim = PersistentVolumeClaim(
        "data", storage_class_name="lvm", phase="Bound", volume_name="pv1"
    )
    pv = PersistentVolume("pv1", {VOLUME_DEVICE_NODE: "node1"})
    storage = make_storage([claim], [pv])
    assert storage.pvc_request_map(pod_for(claim)) == ({}, "node1", False)


def test_pvc_request_map_node_clash():
    a = PersistentVolumeClaim("a", storage_class_name="lvm", phase="Bound", volume_name="pv1")
    b = PersistentVolumeClaim("b", storage_class_name="lvm", phase="Bound", volume_name="pv2")
    volumes = [
        PersistentVolume("pv1", {VOLUME_DEVICE_NODE: "node1"}),
        PersistentVolume("pv2", {VOLUME_DEVICE_NODE: "node2"}),
    ]
    storage = make_storage([a, b], volumes)
    with pytest.raises(ValueError, match="pvc node clash"):
        storage.pvc_request_map(pod_for(a, b))


def test_pvc_request_map_missing_claim():
    storage = make_storage([])
    with pytest.raises(LookupError):
        storage.pvc_request_map(Pod("pod", claim_names=["missing"]))


def test_pvc_request_map_cache_ratio():
    claim = PersistentVolumeClaim("data", storage_class_name="cache", request=4 * GIB)
    storage = make_storage([claim])
    requests, _, use_raw = storage.pvc_request_map(pod_for(claim))
    assert requests == {
        "carina-vg-ssd": [PvcRequest(False, 2 * GIB), PvcRequest(False, 4 * GIB)]
    }
    assert use_raw is False


def test_pvc_request_map_bad_ratio():
    claim = PersistentVolumeClaim("data", storage_class_name="bad-ratio", request=GIB)
    storage = make_storage([claim])
    with pytest.raises(ValueError, match="cache-disk-ratio"):
        storage.pvc_request_map(pod_for(claim))


def test_pvc_request_map_without_device_group():
    claim = PersistentVolumeClaim("data", storage_class_name="empty", request=GIB)
    storage = make_storage([claim])
    with pytest.raises(ValueError, match="not set deviceGroup in storageClass empty"):
        storage.pvc_request_map(pod_for(claim))


def test_pvc_request_map_raw_claim():
    claim = PersistentVolumeClaim("data", storage_class_name="raw-exclusive", request=GIB)
    storage = make_storage([claim])
    requests, _, use_raw = storage.pvc_request_map(pod_for(claim))
    assert requests == {"carina-raw-ssd": [PvcRequest(True, GIB)]}
    assert use_raw is True


def test_allocatable_map_skips_exclusive_raw_disks():
    storage = make_storage([], exclusive=["carina-raw-ssd/loop2"])
    assert storage.allocatable_map(True, "pod", "node1") == {
        "carina-vg-ssd": 100,
        "carina-raw-ssd/loop1": 50,
    }
    assert storage.allocatable_map(False, "pod", "node1") == {
        "carina-vg-ssd": 100,
        "carina-raw-ssd/loop1": 50,
        "carina-raw-ssd/loop2": 60,
    }


def test_allocatable_map_empty_node():
    storage = make_storage([])
    with pytest.raises(LookupError, match="can't get device allocatableMap"):
        storage.allocatable_map(False, "pod", "empty-node")


def test_allocatable_map_unknown_node():
    storage = make_storage([])
    with pytest.raises(LookupError, match="Failed to obtain node storages"):
        storage.allocatable_map(False, "pod", "ghost")


def test_filter_lvm_capacity():
    small = PersistentVolumeClaim("small", storage_class_name="lvm", request=5 * GIB)
    large = PersistentVolumeClaim("large", storage_class_name="lvm", request=200 * GIB)
    storage = make_storage([small, large])
    assert storage.filter(pod_for(small), "node1").code is Code.SUCCESS
    status = storage.filter(pod_for(large), "node1")
    assert status.code is Code.UNSCHEDULABLE_AND_UNRESOLVABLE
    assert status.message == "node storage resource insufficient"


def test_filter_no_claims_succeeds():
    storage = make_storage([])
    assert storage.filter(Pod("pod"), "node1").is_success is True


def test_filter_bound_elsewhere():
    claim = PersistentVolumeClaim(
        "data", storage_class_name="lvm", phase="Bound", volume_name="pv1"
    )
    storage = make_storage([claim], [PersistentVolume("pv1", {VOLUME_DEVICE_NODE: "node2"})])
    status = storage.filter(pod_for(claim), "node1")
    assert status.code is Code.UNSCHEDULABLE_AND_UNRESOLVABLE
    assert status.message == "pv node mismatch"


def test_filter_missing_claim_is_error():
    storage = make_storage([])
    assert storage.filter(Pod("pod", claim_names=["missing"]), "node1").code is Code.ERROR


def test_filter_unknown_node_is_unresolvable():
    claim = PersistentVolumeClaim("data", storage_class_name="lvm", request=GIB)
    storage = make_storage([claim])
    assert storage.filter(pod_for(claim), "empty-node").code is Code.UNSCHEDULABLE_AND_UNRESOLVABLE


def test_filter_raw_disks():
    a = PersistentVolumeClaim("a", storage_class_name="raw", request=40 * GIB)
    b = PersistentVolumeClaim("b", storage_class_name="raw", request=40 * GIB)
    fits = make_storage([a, b])
    assert fits.filter(Pod("pod", claim_names=["a"]), "node1").code is Code.SUCCESS
    crowded = make_storage([a], exclusive=["carina-raw-ssd/loop1", "carina-raw-ssd/loop2"])
    assert crowded.filter(pod_for(a), "node1").code is Code.UNSCHEDULABLE_AND_UNRESOLVABLE


def test_score_binpack_and_spreadout():
    claim = PersistentVolumeClaim("data", storage_class_name="lvm", request=20 * GIB)
    binpack = make_storage([claim], strategy="binpack")
    spreadout = make_storage([claim], strategy="spreadout")
    assert binpack.score(pod_for(claim), "node1") == (2, binpack.score(pod_for(claim), "node1")[1])
    assert binpack.score(pod_for(claim), "node1")[0] == 2
    assert spreadout.score(pod_for(claim), "node1")[0] == 8


def test_score_bound_node_and_no_claims():
    claim = PersistentVolumeClaim(
        "data", storage_class_name="lvm", phase="Bound", volume_name="pv1"
    )
    storage = make_storage([claim], [PersistentVolume("pv1", {VOLUME_DEVICE_NODE: "node1"})])
    score, status = storage.score(pod_for(claim), "node1")
    assert (score, status.code) == (10, Code.SUCCESS)
    score, status = storage.score(pod_for(claim), "node2")
    assert (score, status.code) == (5, Code.SUCCESS)


def test_score_error():
    storage = make_storage([])
    score, status = storage.score(Pod("pod", claim_names=["missing"]), "node1")
    assert score == 0
    assert status.code is Code.UNSCHEDULABLE_AND_UNRESOLVABLE