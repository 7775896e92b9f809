"""TTH blocklist filtering for Direct Connect download queues."""

__version__ = "1.21.0"
