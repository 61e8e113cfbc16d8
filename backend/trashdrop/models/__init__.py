from .batches import Batch, Bag, BagScan, UserStats
from .local import SyncQueueEntry, ScanCacheEntry

__all__ = [
    'Batch', 'Bag', 'BagScan', 'UserStats',
    'SyncQueueEntry', 'ScanCacheEntry',
]
