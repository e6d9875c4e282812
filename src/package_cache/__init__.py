"""Package cache.

- store.py: PackageCache (lookup, fetch, eviction)
- locking.py: LockProvider protocol and the portalocker-backed implementation
- archive.py: archive download and extraction
- models.py: CacheEntry
"""

from .locking import FileLockProvider, LockProvider, read_lock_holder
from .models import CacheEntry
from .store import PackageCache

__all__ = ["CacheEntry", "FileLockProvider", "LockProvider", "PackageCache", "read_lock_holder"]
