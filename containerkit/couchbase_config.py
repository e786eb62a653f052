"""Configuration of a Couchbase container and the options that change it."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable

from .couchbase_bucket import Bucket
from .couchbase_services import (
    ANALYTICS,
    EVENTING,
    INDEX,
    KV,
    QUERY,
    SEARCH,
    IndexStorageMode,
    Service,
)

DEFAULT_IMAGE = "couchbase:6.5.1"
DEFAULT_USERNAME = "Administrator"
PASSWORD = "password"


def _default_services() -> list[Service]:
    return [KV, QUERY, SEARCH, INDEX]


@dataclass
class Config:
    """Settings used to start and initialise a Couchbase cluster."""

    enabled_services: list[Service] = field(default_factory=_default_services)
    username: str = DEFAULT_USERNAME
    password: str = PASSWORD
    is_enterprise: bool = False
    buckets: list[Bucket] = field(default_factory=list)
    image_name: str = DEFAULT_IMAGE
    index_storage_mode: IndexStorageMode = IndexStorageMode.MEMORY_OPTIMIZED


Option = Callable[[Config], None]


def with_eventing_service() -> Option:
    """Enable the eventing service (Enterprise Edition only)."""

    def apply(config: Config) -> None:
        config.enabled_services.append(EVENTING)

    return apply


def with_analytics_service() -> Option:
    """Enable the analytics service (Enterprise Edition only)."""

    def apply(config: Config) -> None:
        config.enabled_services.append(ANALYTICS)

    return apply


def with_credentials(username: str, password: str) -> Option:
    """Set the administrator's user name and password."""

    def apply(config: Config) -> None:
        config.username = username
        config.password = password

    return apply


def with_bucket(bucket: Bucket) -> Option:
    """Add a bucket to create after the cluster starts."""

    def apply(config: Config) -> None:
        config.buckets.append(bucket)

    return apply


def with_image_name(image_name: str) -> Option:
    """Replace the default image."""

    def apply(config: Config) -> None:
        config.image_name = image_name

    return apply


def with_index_storage_mode(index_storage_mode: IndexStorageMode) -> Option:
    """Set the cluster-wide index storage mode."""

    def apply(config: Config) -> None:
        config.index_storage_mode = IndexStorageMode(index_storage_mode)

    return apply