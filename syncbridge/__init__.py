"""SyncBridge: bidirectional work item synchronization"""

__version__ = "1.0.0"
