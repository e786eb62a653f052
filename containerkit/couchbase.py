"""Starting and initialising a Couchbase cluster inside a container."""

from __future__ import annotations

import json
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, Mapping, Optional
from urllib.parse import urlencode

import requests

from .couchbase_bucket import Bucket
from .couchbase_config import Config, Option
from .couchbase_services import (
    ANALYTICS,
    ANALYTICS_PORT,
    ANALYTICS_SSL_PORT,
    EVENTING,
    EVENTING_PORT,
    EVENTING_SSL_PORT,
    INDEX,
    KV,
    KV_PORT,
    KV_SSL_PORT,
    MGMT_PORT,
    MGMT_SSL_PORT,
    QUERY,
    QUERY_PORT,
    QUERY_SSL_PORT,
    SEARCH,
    SEARCH_PORT,
    SEARCH_SSL_PORT,
    VIEW_PORT,
    VIEW_SSL_PORT,
    IndexStorageMode,
    Service,
    expose_ports,
)
from .request import Container, ContainerRequest, WaitStrategy

_MISSING = object()
_HTTP_TIMEOUT = 10.0
_INITIAL_RETRY_DELAY = 0.5
_RETRY_MULTIPLIER = 1.5
_MAX_RETRY_DELAY = 60.0


def _parse(raw: Any) -> Any:
    if isinstance(raw, (bytes, bytearray)):
        raw = raw.decode("utf-8", errors="replace")
    try:
        return json.loads(raw)
    except (TypeError, ValueError):
        return _MISSING


def _lookup(document: Any, path: str) -> Any:
    """Follow a dotted path (numbers index lists) through parsed JSON."""
    current = document
    for part in path.split("."):
        if isinstance(current, list):
            try:
                current = current[int(part)]
            except (ValueError, IndexError):
                return _MISSING
        elif isinstance(current, dict):
            if part not in current:
                return _MISSING
            current = current[part]
        else:
            return _MISSING
    return current


def _truthy(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value != 0
    if isinstance(value, str):
        return value.strip().lower() in {"1", "t", "true"}
    return False


def _contains(services: Iterable[Service], wanted: Service) -> bool:
    return any(service.identifier == wanted.identifier for service in services)


@dataclass
class CouchbaseContainer:
    """A running Couchbase container and the configuration it was set up with."""

    container: Container
    config: Config
    session: Any = field(default_factory=lambda: requests.Session())
    retry_timeout: float = 900.0
    wait_timeout: float = 60.0

    def connection_string(self) -> str:
        """Connection string of the form couchbase://host:port."""
        return f"couchbase://{self.container.host()}:{self.container.mapped_port(KV_PORT)}"

    def username(self) -> str:
        return self.config.username

    def password(self) -> str:
        return self.config.password

    def enabled_services(self) -> str:
        """Comma separated identifiers of the enabled services."""
        return ",".join(service.identifier for service in self.config.enabled_services)

    def check_all_services_enabled(self, raw_config: Any) -> bool:
        """Whether every node in a bucket configuration runs every enabled service."""
        nodes_ext = _lookup(_parse(raw_config), "nodesExt")
        if nodes_ext is _MISSING:
            return False
        nodes = nodes_ext if isinstance(nodes_ext, list) else [nodes_ext]
        for node in nodes:
            services = node.get("services", _MISSING) if isinstance(node, dict) else _MISSING
            if services is _MISSING:
                return False
            names = list(services) if isinstance(services, dict) else []
            for service in self.config.enabled_services:
                if not any(name.startswith(service.identifier) for name in names):
                    return False
        return True

    def init_cluster(self) -> None:
        """Bring the single node up as a configured, healthy cluster."""
        steps: list[Callable[[], None]] = [
            self._wait_until_node_is_online,
            self._initialize_is_enterprise,
            self._rename_node,
            self._initialize_services,
            self._set_memory_quotas,
            self._configure_admin_user,
            self._configure_external_ports,
        ]
        if self._has(INDEX):
            steps.append(self._configure_indexer)
        steps.append(self._wait_until_all_nodes_are_healthy)
        for step in steps:
            step()

    def create_buckets(self) -> None:
        """Create every configured bucket and, where asked, its primary index."""
        for bucket in self.config.buckets:
            self._create_bucket(bucket)
            self._wait_for_all_services_enabled(bucket)
            if self._has(QUERY):
                self._is_query_keyspace_present(bucket)
            if bucket.query_primary_index:
                if not self._has(QUERY):
                    raise ValueError(
                        f"primary index creation for bucket {bucket.name} ignored, "
                        "since QUERY service is not present"
                    )
                self._create_primary_index(bucket)
                self._is_primary_index_online(bucket)

    def _has(self, service: Service) -> bool:
        return _contains(self.config.enabled_services, service)

    def _url(self, port: str, path: str) -> str:
        return f"http://{self.container.host()}:{self.container.mapped_port(port)}{path}"

    def _auth(self) -> tuple[str, str]:
        return (self.config.username, self.config.password)

    def _do_http_request(
        self,
        port: str,
        path: str,
        method: str,
        body: Optional[Mapping[str, str]],
        auth: bool,
    ) -> bytes:
        data = urlencode(sorted((body or {}).items()))
        response = self.session.request(
            method,
            self._url(port, path),
            data=data,
            headers={"Content-Type": "application/x-www-form-urlencoded"},
            auth=self._auth() if auth else None,
            timeout=_HTTP_TIMEOUT,
        )
        return response.content

    def _http_wait(
        self,
        port: str,
        path: str,
        auth: bool,
        matcher: Optional[Callable[[bytes], bool]] = None,
    ) -> WaitStrategy:
        def condition(_: Container) -> bool:
            try:
                response = self.session.request(
                    "GET",
                    self._url(port, path),
                    auth=self._auth() if auth else None,
                    timeout=_HTTP_TIMEOUT,
                )
            except requests.RequestException:
                return False
            if response.status_code != 200:
                return False
            return matcher is None or matcher(response.content)

        return WaitStrategy(
            condition=condition,
            description=f"HTTP 200 from {path} on port {port}",
            timeout=self.wait_timeout,
        )

    def _retry(self, attempt: Callable[[], None], description: str) -> None:
        deadline = time.monotonic() + self.retry_timeout
        delay = _INITIAL_RETRY_DELAY
        while True:
            try:
                attempt()
                return
            except (RuntimeError, requests.RequestException) as exc:
                if time.monotonic() + delay > deadline:
                    raise TimeoutError(f"{description}: {exc}") from exc
                time.sleep(delay)
                delay = min(delay * _RETRY_MULTIPLIER, _MAX_RETRY_DELAY)

    def _mapped(self, port: str) -> str:
        try:
            return str(self.container.mapped_port(port))
        except LookupError:
            return ""

    def _wait_until_node_is_online(self) -> None:
        self._http_wait(MGMT_PORT, "/pools", auth=False).wait_until_ready(self.container)

    def _initialize_is_enterprise(self) -> None:
        response = self._do_http_request(MGMT_PORT, "/pools", "GET", None, False)
        self.config.is_enterprise = _truthy(_lookup(_parse(response), "isEnterprise"))
        if not self.config.is_enterprise:
            if self._has(ANALYTICS):
                raise ValueError(
                    "the Analytics Service is only supported with the Enterprise version"
                )
            if self._has(EVENTING):
                raise ValueError(
                    "the Eventing Service is only supported with the Enterprise version"
                )

    def _rename_node(self) -> None:
        body = {"hostname": self.container.container_ip()}
        self._do_http_request(MGMT_PORT, "/node/controller/rename", "POST", body, False)

    def _initialize_services(self) -> None:
        body = {"services": self.enabled_services()}
        self._do_http_request(MGMT_PORT, "/node/controller/setupServices", "POST", body, False)

    def _set_memory_quotas(self) -> None:
        body: dict[str, str] = {}
        for service in self.config.enabled_services:
            if not service.has_quota():
                continue
            quota = str(service.minimum_quota_mb)
            if service.identifier == KV.identifier:
                body["memoryQuota"] = quota
            else:
                body[service.identifier + "MemoryQuota"] = quota
        self._do_http_request(MGMT_PORT, "/pools/default", "POST", body, False)

    def _configure_admin_user(self) -> None:
        body = {
            "username": self.config.username,
            "password": self.config.password,
            "port": "SAME",
        }
        self._do_http_request(MGMT_PORT, "/settings/web", "POST", body, False)

    def _configure_external_ports(self) -> None:
        body = {
            "hostname": self.container.host(),
            "mgmt": self._mapped(MGMT_PORT),
            "mgmtSSL": self._mapped(MGMT_SSL_PORT),
        }
        if self._has(KV):
            body["kv"] = self._mapped(KV_PORT)
            body["kvSSL"] = self._mapped(KV_SSL_PORT)
            body["capi"] = self._mapped(VIEW_PORT)
            body["capiSSL"] = self._mapped(VIEW_SSL_PORT)
        if self._has(QUERY):
            body["n1ql"] = self._mapped(QUERY_PORT)
            body["n1qlSSL"] = self._mapped(QUERY_SSL_PORT)
        if self._has(SEARCH):
            body["fts"] = self._mapped(SEARCH_PORT)
            body["ftsSSL"] = self._mapped(SEARCH_SSL_PORT)
        if self._has(ANALYTICS):
            body["cbas"] = self._mapped(ANALYTICS_PORT)
            body["cbasSSL"] = self._mapped(ANALYTICS_SSL_PORT)
        if self._has(EVENTING):
            body["eventingAdminPort"] = self._mapped(EVENTING_PORT)
            body["eventingSSL"] = self._mapped(EVENTING_SSL_PORT)
        self._do_http_request(
            MGMT_PORT, "/node/controller/setupAlternateAddresses/external", "PUT", body, True
        )

    def _configure_indexer(self) -> None:
        if self.config.is_enterprise:
            if self.config.index_storage_mode == IndexStorageMode.FORESTDB:
                self.config.index_storage_mode = IndexStorageMode.MEMORY_OPTIMIZED
        else:
            self.config.index_storage_mode = IndexStorageMode.FORESTDB
        body = {"storageMode": IndexStorageMode(self.config.index_storage_mode).value}
        self._do_http_request(MGMT_PORT, "/settings/indexes", "POST", body, True)

    def _wait_until_all_nodes_are_healthy(self) -> None:
        def node_healthy(content: bytes) -> bool:
            return _lookup(_parse(content), "nodes.0.status") == "healthy"

        strategies = [self._http_wait(MGMT_PORT, "/pools/default", True, node_healthy)]
        if self._has(QUERY):
            strategies.append(self._http_wait(QUERY_PORT, "/admin/ping", True))
        if self._has(ANALYTICS):
            strategies.append(self._http_wait(ANALYTICS_PORT, "/admin/ping", True))
        if self._has(EVENTING):
            strategies.append(self._http_wait(EVENTING_PORT, "/api/v1/config", True))
        for strategy in strategies:
            strategy.wait_until_ready(self.container)

    def _create_bucket(self, bucket: Bucket) -> None:
        body = {
            "name": bucket.name,
            "ramQuotaMB": str(bucket.quota),
            "flushEnabled": "1" if bucket.flush_enabled else "0",
            "replicaNumber": str(bucket.num_replicas),
        }
        self._do_http_request(MGMT_PORT, "/pools/default/buckets", "POST", body, True)

    def _wait_for_all_services_enabled(self, bucket: Bucket) -> None:
        self._http_wait(
            MGMT_PORT, f"/pools/default/b/{bucket.name}", True, self.check_all_services_enabled
        ).wait_until_ready(self.container)

    def _query_flag(self, statement: str, path: str, failure: str) -> Callable[[], None]:
        def attempt() -> None:
            response = self._do_http_request(
                QUERY_PORT, "/query/service", "POST", {"statement": statement}, True
            )
            if not _truthy(_lookup(_parse(response), path)):
                raise RuntimeError(failure)

        return attempt

    def _is_query_keyspace_present(self, bucket: Bucket) -> None:
        statement = (
            'SELECT COUNT(*) > 0 as present FROM system:keyspaces WHERE name = "'
            + bucket.name
            + '"'
        )
        self._retry(
            self._query_flag(statement, "results.0.present", "query namespace is not present"),
            f"keyspace for bucket {bucket.name}",
        )

    def _create_primary_index(self, bucket: Bucket) -> None:
        body = {"statement": "CREATE PRIMARY INDEX on `" + bucket.name + "`"}
        self._do_http_request(QUERY_PORT, "/query/service", "POST", body, True)

    def _is_primary_index_online(self, bucket: Bucket) -> None:
        statement = (
            'SELECT count(*) > 0 AS online FROM system:indexes where keyspace_id = "'
            + bucket.name
            + '" and is_primary = true and state = "online"'
        )
        self._retry(
            self._query_flag(statement, "results.0.online", "primary index state is not online"),
            f"primary index for bucket {bucket.name}",
        )


def start_container(
    start: Callable[[ContainerRequest], Container], *options: Option
) -> CouchbaseContainer:
    """Start a Couchbase container through ``start``, set up the cluster and buckets."""
    config = Config()
    for option in options:
        option(config)
    request = ContainerRequest(
        image=config.image_name,
        exposed_ports=expose_ports(config.enabled_services),
    )
    couchbase = CouchbaseContainer(start(request), config)
    couchbase.init_cluster()
    couchbase.create_buckets()
    return couchbase