"""
Sync machinery.

Components:
- retry.py: ResilientOperationRunner (backoff, jitter, retry classification)
- versioned.py: VersionedRecordStore (version-conditional writes)
- optimistic.py: apply/commit/rollback of cached records around a remote write
"""
