from therasched.dataloader.config_loader import ConfigLoader
from therasched.dataloader.snapshot_loader import (
    EntitySnapshot,
    SnapshotEntitySource,
    SnapshotLoader,
)

__all__ = ["ConfigLoader", "EntitySnapshot", "SnapshotEntitySource", "SnapshotLoader"]
