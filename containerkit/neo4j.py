"""Neo4j container configuration."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Mapping, Optional

import requests

from .request import LOGGER, Container, ContainerRequest, WaitStrategy

CustomizeRequestOption = Callable[[ContainerRequest], None]

DEFAULT_IMAGE_NAME = "neo4j"
DEFAULT_TAG = "4.4"
_BOLT_PORT = "7687"
_HTTP_PORT = "7474"
_HTTPS_PORT = "7473"
_READY_LOG = "Bolt enabled on"


class LabsPlugin(str, Enum):
    APOC = "apoc"
    APOC_CORE = "apoc-core"
    BLOOM = "bloom"
    GRAPH_DATA_SCIENCE = "graph-data-science"
    NEO_SEMANTICS = "n10s"
    STREAMS = "streams"


@dataclass
class Neo4jContainer:
    """A running Neo4j container."""

    container: Container

    def bolt_url(self) -> str:
        host = self.container.host()
        port = self.container.mapped_port(f"{_BOLT_PORT}/tcp")
        return f"neo4j://{host}:{port}"


def with_admin_password(admin_password: str) -> CustomizeRequestOption:
    """Set the admin password; an empty string disables authentication."""

    def apply(req: ContainerRequest) -> None:
        req.env["NEO4J_AUTH"] = f"neo4j/{admin_password}" if admin_password else "none"

    return apply


def without_authentication() -> CustomizeRequestOption:
    return with_admin_password("")


def with_labs_plugin(*plugins: LabsPlugin) -> CustomizeRequestOption:
    """Register labs plugins to download at server start."""

    def apply(req: ContainerRequest) -> None:
        if plugins:
            names = '","'.join(LabsPlugin(plugin).value for plugin in plugins)
            req.env["NEO4JLABS_PLUGINS"] = f'["{names}"]'

    return apply


def format_neo4j_config(name: str) -> str:
    """Translate a setting name such as dbms.memory.heap into its variable name."""
    return "NEO4J_" + name.replace("_", "__").replace(".", "_")


def _add_setting(req: ContainerRequest, key: str, new_value: str) -> None:
    normalized = format_neo4j_config(key)
    if normalized in req.env:
        logger = req.logger or LOGGER
        if key == "AUTH":
            logger.warning(
                "setting %r is not permitted, with_admin_password has already been set", normalized
            )
            return
        logger.warning(
            "setting %r with value %r is now overwritten with value %r",
            key,
            req.env[normalized],
            new_value,
        )
    req.env[normalized] = new_value


def with_neo4j_setting(key: str, value: str) -> CustomizeRequestOption:
    def apply(req: ContainerRequest) -> None:
        _add_setting(req, key, value)

    return apply


def with_neo4j_settings(settings: Mapping[str, str]) -> CustomizeRequestOption:
    def apply(req: ContainerRequest) -> None:
        for key, value in settings.items():
            _add_setting(req, key, value)

    return apply


def with_logger(logger: Optional[logging.Logger]) -> CustomizeRequestOption:
    def apply(req: ContainerRequest) -> None:
        req.logger = logger

    return apply


def _http_ok(container: Container) -> bool:
    url = f"http://{container.host()}:{container.mapped_port(_HTTP_PORT)}/"
    try:
        return requests.get(url, timeout=5).status_code == 200
    except requests.RequestException:
        return False


def _is_ready(container: Container) -> bool:
    return _READY_LOG in container.read_logs() and _http_ok(container)


def build_request(*options: CustomizeRequestOption) -> ContainerRequest:
    """Build the Neo4j request; with no options authentication is disabled."""
    req = ContainerRequest(
        image=f"docker.io/{DEFAULT_IMAGE_NAME}:{DEFAULT_TAG}",
        env={"NEO4J_AUTH": "none"},
        exposed_ports=[f"{_BOLT_PORT}/tcp", f"{_HTTP_PORT}/tcp", f"{_HTTPS_PORT}/tcp"],
        waiting_for=WaitStrategy(
            condition=_is_ready,
            description=f"log line {_READY_LOG!r} and HTTP 200 on port {_HTTP_PORT}",
        ),
        logger=LOGGER,
    )
    for option in options or (without_authentication(),):
        option(req)
    if req.logger is None:
        raise ValueError("a logger is required")
    return req


def run_container(
    start: Callable[[ContainerRequest], Container], *options: CustomizeRequestOption
) -> Neo4jContainer:
    """Start a Neo4j container through ``start`` and wait until it is ready."""
    req = build_request(*options)
    container = start(req)
    if req.waiting_for is not None:
        req.waiting_for.wait_until_ready(container)
    return Neo4jContainer(container)