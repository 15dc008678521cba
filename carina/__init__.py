"""Node-local storage management: LVM2, bcache and block-device discovery, with a capacity-aware node filter and scorer."""

__version__ = "0.1.0"