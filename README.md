# carina

Node-local storage management in Python. The package drives the standard Linux
tools (`lvm2`, `lsblk`, `bcache-tools`, `partprobe`, `udevadm`) through
`subprocess` and parses their output into plain dataclasses. It also provides a
capacity-aware filter and scorer that decide which nodes have room for a pod's
volume claims.

It has no dependencies outside the standard library.

## Installation

```
pip install .
```

Running the tests needs the `test` extra:

```
pip install ".[test]"
pytest
```

## Modules

- `carina.types`: the records `LvInfo`, `VgGroup`, `PVInfo`, `LocalDisk` and
  `BcacheDeviceInfo`, plus device-type constants such as `LVM_TYPE` and
  `LVM2_FS_TYPE`.
- `carina.lvm_parse`: `parse_vgs`, `parse_pvs` and `parse_lvs` read the output
  of `vgs`, `pvs` and `lvs` run with `--nameprefixes`. `parse_lvs` keeps only
  volumes whose names start with one of the given prefixes.
- `carina.bcache_parse`: `parse_bcache` reads `bcache-super-show -f` output;
  `parse_device` reads `lsblk --pairs --output KNAME,MAJ:MIN` output.
- `carina.commands`: `CommandExecutor` runs external commands with `execute`,
  `output`, `combined_output` and `run_resident`. A command that cannot be
  started or exits with an error raises `CommandError`, which carries the
  command, its exit status and its output.
- `carina.lvm`: `Lvm2` wraps the LVM2 command set for physical volumes, volume
  groups, logical volumes, thin pools and snapshots. Lookups such as
  `pv_display`, `vg_display` and `lv_display` raise `NotFoundError` when
  nothing matches.
- `carina.bcache`: `Bcache` creates, registers, inspects and removes bcache
  devices and sets their cache mode.
- `carina.partition`: `LocalPartition` lists block devices with `lsblk`,
  returns the filesystem block usage of a device, looks a device up by its
  `major:minor` number, and runs `udevadm settle` and `partprobe`.
  `parse_disk_string`, `parse_udev_info` and `filter_disks` are available on
  their own; `filter_disks` keeps whole, writable, unmounted disks of at least
  10 GiB with no filesystem.
- `carina.volume`: `LocalVolume` creates, resizes, lists and deletes volumes,
  adds disks to and removes them from volume groups, and builds or removes
  bcache devices. Operations that change volumes take a non-blocking lock from
  `NamedLocks`; if it is already held they raise `VolumeError`, as they do when
  a volume group would drop below its reserved free space.
- `carina.scheduler_config`: `SchedulerConfig` and `load_config` read the JSON
  disk-selector configuration; `DiskSelectorItem` describes one selector.
- `carina.manager`: `DeviceManager` picks the disk selectors that apply to this
  node and sends `VolumeEvent` notices, tagged with a `Trigger`, to the
  `queue.Queue` objects registered with it.
- `carina.readiness`: `ReadinessCheck` runs a check function at a fixed
  interval until a `threading.Event` is set. The check fails by raising; the
  plugin counts as ready from its first success.
- `carina.storage`: `LocalStorage.filter` and `LocalStorage.score` judge a node
  for a `Pod`, using `StorageClass`, `PersistentVolumeClaim` and
  `PersistentVolume` records and a function returning the node's allocatable
  GiB per device group. Results come back as a `Status` with a `Code`.
  `minimum_value_minus` takes a request out of the smallest capacity that fits.

## Examples

Parsing LVM output:

```python
from carina.lvm_parse import parse_vgs

groups = parse_vgs(
    "LVM2_VG_NAME='v1',LVM2_PV_COUNT='2',LVM2_LV_COUNT='0',"
    "LVM2_VG_ATTR='wz--n-',LVM2_VG_SIZE='32203866112',LVM2_VG_FREE='32203866112'"
)
print(groups[0].vg_name, groups[0].vg_size)  # v1 32203866112
```

Reading the scheduler configuration:

```python
from carina.scheduler_config import SchedulerConfig

config = SchedulerConfig.from_dict({
    "diskSelector": [{"name": "carina-raw-ssd", "re": ["loop"], "policy": "raw"}],
    "schedulerStrategy": "spreadout",
})
config.scheduler_strategy()                      # "spreadout"
config.check_raw_device_group("carina-raw-ssd")  # True
config.get_device_group("ssd")                   # "carina-vg-ssd"
```

Judging a node for a pod:

```python
from carina.scheduler_config import DEVICE_DISK_KEY, SchedulerConfig
from carina.storage import LocalStorage, PersistentVolumeClaim, Pod, StorageClass

storage = LocalStorage(
    SchedulerConfig(),
    storage_classes={"local": StorageClass("local", parameters={DEVICE_DISK_KEY: "hdd"})},
    claims={("default", "data"): PersistentVolumeClaim("data", storage_class_name="local",
                                                       request=20 << 30)},
    volumes={},
    node_allocatable=lambda node: {"carina.storage.io/carina-vg-hdd": 100},
)
pod = Pod("app", claim_names=["data"])
storage.filter(pod, "node-1").is_success  # True
storage.score(pod, "node-1")[0]           # 2 (binpack: 20 of 100 GiB)
```

Most operations call system tools, so they need root privileges on a Linux
host that has those tools installed.

## What the package does not do

- It does not talk to a Kubernetes API server. Node labels, disk selectors,
  storage classes, claims, volumes and node capacities are handed in as
  callables and mappings.
- It has no command-line program and no long-running service of its own: no
  periodic disk discovery that adds disks to volume groups, no node capacity
  publisher, no metrics exporter and no RPC server. `ReadinessCheck` and the
  notice queues of `DeviceManager` are the building blocks left to the caller.
- `LocalPartition` lists and inspects block devices but does not create,
  resize, delete or wipe partitions.