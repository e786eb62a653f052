"""Couchbase services, their ports and index storage modes."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Iterable

MGMT_PORT = "8091"
MGMT_SSL_PORT = "18091"

VIEW_PORT = "8092"
VIEW_SSL_PORT = "18092"

QUERY_PORT = "8093"
QUERY_SSL_PORT = "18093"

SEARCH_PORT = "8094"
SEARCH_SSL_PORT = "18094"

ANALYTICS_PORT = "8095"
ANALYTICS_SSL_PORT = "18095"

EVENTING_PORT = "8096"
EVENTING_SSL_PORT = "18096"

KV_PORT = "11210"
KV_SSL_PORT = "11207"


@dataclass(frozen=True)
class Service:
    """A Couchbase service: its identifier, memory quota and container ports."""

    identifier: str
    minimum_quota_mb: int = 0
    ports: tuple[str, ...] = ()

    def has_quota(self) -> bool:
        return self.minimum_quota_mb > 0


KV = Service("kv", 256, (KV_PORT, KV_SSL_PORT, VIEW_PORT, VIEW_SSL_PORT))
QUERY = Service("n1ql", 0, (QUERY_PORT, QUERY_SSL_PORT))
SEARCH = Service("fts", 256, (SEARCH_PORT, SEARCH_SSL_PORT))
INDEX = Service("index", 256)
ANALYTICS = Service("cbas", 256, (ANALYTICS_PORT, ANALYTICS_SSL_PORT))
EVENTING = Service("eventing", 256, (EVENTING_PORT, EVENTING_SSL_PORT))


class IndexStorageMode(str, Enum):
    """Storage mode for global secondary indexes.

    Plasma and memory optimized need the Enterprise Edition; the Community
    Edition only allows forestdb.
    """

    MEMORY_OPTIMIZED = "memory_optimized"
    PLASMA = "plasma"
    FORESTDB = "forestdb"


def expose_ports(enabled_services: Iterable[Service]) -> list[str]:
    """Container ports to expose: the management ports, then each service's."""
    exposed = [f"{MGMT_PORT}/tcp", f"{MGMT_SSL_PORT}/tcp"]
    exposed.extend(f"{port}/tcp" for service in enabled_services for port in service.ports)
    return exposed