"""Container requests, running-container handles and readiness checks."""

from __future__ import annotations

import dataclasses
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

LOGGER = logging.getLogger("containerkit")


def _normalize_port(port: Any) -> str:
    text = str(port)
    return text if "/" in text else f"{text}/tcp"


def _no_logs() -> str:
    return ""


@dataclass(frozen=True)
class ContainerFile:
    """A file copied from the host into the container before it starts."""

    host_file_path: str
    container_file_path: str
    file_mode: int = 0o644


@dataclass
class Container:
    """Handle on a started container: where it listens and what it logged."""

    id: str = ""
    image: str = ""
    host_address: str = "localhost"
    ports: dict[str, int] = field(default_factory=dict)
    ip: str = ""
    read_logs: Callable[[], str] = _no_logs

    def __post_init__(self) -> None:
        self.ports = {_normalize_port(key): int(value) for key, value in self.ports.items()}

    def host(self) -> str:
        """Host name or address the container's ports are reachable on."""
        return self.host_address

    def mapped_port(self, port: Any) -> int:
        """Host port that a container port ("3306" or "3306/tcp") is published on."""
        key = _normalize_port(port)
        try:
            return self.ports[key]
        except KeyError:
            raise LookupError(f"port {key} is not mapped") from None

    def container_ip(self) -> str:
        """Address of the container inside its network."""
        return self.ip


@dataclass
class WaitStrategy:
    """Polls a condition on a container until it holds or the timeout expires."""

    condition: Callable[[Container], bool]
    description: str = "readiness condition"
    timeout: float = 60.0
    interval: float = 0.1

    def wait_until_ready(self, target: Container) -> None:
        deadline = time.monotonic() + self.timeout
        while not self.condition(target):
            if time.monotonic() >= deadline:
                raise TimeoutError(
                    f"{self.description} not satisfied within {self.timeout} seconds"
                )
            time.sleep(self.interval)


def _is_set(value: Any) -> bool:
    return value is not None and value != "" and value is not False


@dataclass
class ContainerRequest:
    """Everything needed to create and start a container."""

    image: str = ""
    exposed_ports: list[str] = field(default_factory=list)
    env: dict[str, str] = field(default_factory=dict)
    cmd: list[str] = field(default_factory=list)
    entrypoint: list[str] = field(default_factory=list)
    files: list[ContainerFile] = field(default_factory=list)
    networks: list[str] = field(default_factory=list)
    network_aliases: dict[str, list[str]] = field(default_factory=dict)
    waiting_for: Optional[WaitStrategy] = None
    logger: Optional[logging.Logger] = None

    def merged(self, override: ContainerRequest) -> ContainerRequest:
        """Return a new request where every field set in ``override`` wins.

        Mappings are merged key by key; lists and scalars are replaced only
        when the override gives a non-empty value.
        """
        values: dict[str, Any] = {}
        for spec in dataclasses.fields(self):
            base = getattr(self, spec.name)
            new = getattr(override, spec.name)
            if isinstance(base, dict):
                values[spec.name] = {**base, **new}
            elif isinstance(base, list):
                values[spec.name] = list(new) if new else list(base)
            else:
                values[spec.name] = new if _is_set(new) else base
        return ContainerRequest(**values)


def noop_override_container_request(req: ContainerRequest) -> ContainerRequest:
    """Return an equal copy of the request, overriding nothing."""
    return req.merged(ContainerRequest())


def override_container_request(
    override: ContainerRequest,
) -> Callable[[ContainerRequest], ContainerRequest]:
    """Return a function merging ``override`` into the request it receives."""

    def apply(req: ContainerRequest) -> ContainerRequest:
        return req.merged(override)

    return apply