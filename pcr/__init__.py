"""Cross-cluster replication and failover playground."""

__version__ = "0.1.0"
