import pytest

from containerkit.couchbase_services import (
    ANALYTICS,
    EVENTING,
    INDEX,
    KV,
    KV_PORT,
    MGMT_PORT,
    MGMT_SSL_PORT,
    QUERY,
    QUERY_PORT,
    QUERY_SSL_PORT,
    SEARCH,
    IndexStorageMode,
    Service,
    expose_ports,
)


@pytest.mark.parametrize("service", [KV, SEARCH, INDEX, ANALYTICS, EVENTING])
def test_services_with_quota(service):
    assert service.has_quota() is True
    assert service.minimum_quota_mb == 256


def test_query_has_no_quota():
    assert QUERY.has_quota() is False


@pytest.mark.parametrize(
    "service, identifier, quota",
    [
        (KV, "kv", True),
        (QUERY, "n1ql", False),
        (SEARCH, "fts", True),
        (INDEX, "index", True),
        (ANALYTICS, "cbas", True),
        (EVENTING, "eventing", True),
    ],
)
def test_identifiers(service, identifier, quota):
    assert service.identifier == identifier
    assert service.has_quota() is quota


def test_expose_ports_without_services_only_management():
    assert expose_ports([]) == [f"{MGMT_PORT}/tcp", f"{MGMT_SSL_PORT}/tcp"]


def test_expose_ports_appends_service_ports_in_order():
    ports = expose_ports([QUERY, INDEX])
    assert ports == [
        f"{MGMT_PORT}/tcp",
        f"{MGMT_SSL_PORT}/tcp",
        f"{QUERY_PORT}/tcp",
        f"{QUERY_SSL_PORT}/tcp",
    ]


def test_expose_ports_counts_all_service_ports():
    services = [KV, QUERY, SEARCH, INDEX]
    ports = expose_ports(services)
    assert len(ports) == 2 + sum(len(s.ports) for s in services)
    assert f"{KV_PORT}/tcp" in ports
    assert all(port.endswith("/tcp") for port in ports)


def test_custom_service_without_quota():
    assert Service("custom").has_quota() is False


def test_storage_mode_values():
    assert IndexStorageMode.MEMORY_OPTIMIZED.value == "memory_optimized"
    assert IndexStorageMode.PLASMA.value == "plasma"
    assert IndexStorageMode("forestdb") is IndexStorageMode.FORESTDB