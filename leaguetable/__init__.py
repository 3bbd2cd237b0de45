"""League table automation: change detection, queued recalculation and snapshots."""

__version__ = "1.0.0"
