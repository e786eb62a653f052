"""Couchbase bucket definitions."""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass

MIN_QUOTA_MB = 100
MAX_REPLICAS = 3


@dataclass(frozen=True)
class Bucket:
    """A bucket to create once the cluster is up; each ``with_*`` returns a copy."""

    name: str
    flush_enabled: bool = False
    query_primary_index: bool = True
    quota: int = MIN_QUOTA_MB
    num_replicas: int = 0

    def with_replicas(self, num_replicas: int) -> Bucket:
        """Set the number of replicas, clamped to the range 0..3."""
        clamped = min(max(num_replicas, 0), MAX_REPLICAS)
        return dataclasses.replace(self, num_replicas=clamped)

    def with_flush_enabled(self, flush_enabled: bool) -> Bucket:
        """Set whether the bucket may be flushed."""
        return dataclasses.replace(self, flush_enabled=flush_enabled)

    def with_quota(self, quota: int) -> Bucket:
        """Set the bucket quota in megabytes; the minimum is 100 MB."""
        return dataclasses.replace(self, quota=max(quota, MIN_QUOTA_MB))

    def with_primary_index(self, primary_index: bool) -> Bucket:
        """Set whether a primary index is created for the bucket."""
        return dataclasses.replace(self, query_primary_index=primary_index)