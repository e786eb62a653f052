"""Compose stacks driven through the ``docker compose`` command."""

from __future__ import annotations

import json
import logging
import os
import subprocess
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Mapping, Optional, Sequence

import yaml

from .compose_local import (
    ComposeError,
    _container_logs,
    _network_ip,
    _published_ports,
    _run_docker,
)
from .request import LOGGER, Container, WaitStrategy

PROJECT_LABEL = "com.docker.compose.project"
SERVICE_LABEL = "com.docker.compose.service"
RECREATE_DIVERGED = "diverged"
RECREATE_FORCE = "force"
RECREATE_NEVER = "never"
_DEFAULT_CONFIG_FILES = (
    "compose.yaml",
    "compose.yml",
    "docker-compose.yml",
    "docker-compose.yaml",
)

EnvironmentOption = Callable[[dict], None]


@dataclass
class _UpOptions:
    services: list[str]
    remove_orphans: bool = False
    wait: bool = False
    recreate: str = RECREATE_DIVERGED
    recreate_dependencies: str = RECREATE_DIVERGED


@dataclass
class _DownOptions:
    remove_orphans: bool = False
    volumes: bool = False
    images: str = ""


@dataclass(frozen=True)
class RemoveOrphans:
    """Remove containers of services that the project no longer declares."""

    enabled: bool = True

    def apply_to_stack_up(self, options: _UpOptions) -> None:
        options.remove_orphans = self.enabled

    def apply_to_stack_down(self, options: _DownOptions) -> None:
        options.remove_orphans = self.enabled


@dataclass(frozen=True)
class Wait:
    """Do not return from ``up`` until containers are running or healthy."""

    enabled: bool = True

    def apply_to_stack_up(self, options: _UpOptions) -> None:
        options.wait = self.enabled


@dataclass(frozen=True)
class RemoveVolumes:
    """Remove the stack's named volumes on ``down``."""

    enabled: bool = True

    def apply_to_stack_down(self, options: _DownOptions) -> None:
        options.volumes = self.enabled


class RemoveImages(Enum):
    """Which images used by the services ``down`` removes."""

    ALL = "all"
    LOCAL = "local"

    def apply_to_stack_down(self, options: _DownOptions) -> None:
        options.images = self.value


class StackIdentifier(str):
    """Name of the compose project."""

    def apply_to_compose_stack(self, options: Any) -> None:
        options.identifier = str(self)


class ComposeStackFiles(tuple):
    """Compose files that make up the stack."""

    def apply_to_compose_stack(self, options: Any) -> None:
        options.paths = list(self)


@dataclass(frozen=True)
class _RunServices:
    services: tuple[str, ...]

    def apply_to_stack_up(self, options: _UpOptions) -> None:
        options.services = list(self.services)


def run_services(*service_names: str) -> _RunServices:
    """Start only the named services instead of every service of the project."""
    return _RunServices(tuple(service_names))


@dataclass
class _Project:
    name: str
    working_dir: str
    compose_files: list[str]
    services: dict[str, dict] = field(default_factory=dict)
    environment: dict[str, str] = field(default_factory=dict)

    def service_names(self) -> list[str]:
        return sorted(self.services)


def _with_env(env: Mapping[str, str]) -> EnvironmentOption:
    snapshot = dict(env)

    def apply(environment: dict) -> None:
        for key, value in snapshot.items():
            if key in environment:
                raise ValueError(f"environment with key {key} already set")
            environment[key] = value

    return apply


def _with_os_env(environment: dict) -> None:
    for key, value in os.environ.items():
        environment.setdefault(key, value)


def _load_services(path: str) -> dict[str, dict]:
    with open(path, "rb") as handle:
        document = yaml.safe_load(handle)
    if document is None:
        return {}
    if not isinstance(document, dict):
        raise ValueError(f"{path} does not hold a mapping")
    services = document.get("services") or {}
    if not isinstance(services, dict):
        raise ValueError(f"services in {path} are not a mapping")
    return services


def _default_config() -> str:
    for name in _DEFAULT_CONFIG_FILES:
        candidate = os.path.abspath(name)
        if os.path.isfile(candidate):
            return candidate
    raise FileNotFoundError("no compose file found in the working directory")


_RECREATE_FLAGS = {RECREATE_FORCE: "--force-recreate", RECREATE_NEVER: "--no-recreate"}


class DockerCompose:
    """A compose stack that can be brought up, waited on and torn down."""

    def __init__(
        self,
        paths: Sequence[str],
        identifier: str,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.name = identifier
        self.configs = list(paths)
        self.logger = logger or LOGGER
        self.docker_executable = "docker"
        self.project: Optional[_Project] = None
        self._lock = threading.Lock()
        self._containers_lock = threading.Lock()
        self._wait_strategies: dict[str, WaitStrategy] = {}
        self._containers: dict[str, Container] = {}
        self._project_options: list[EnvironmentOption] = []

    def service_container(self, service_name: str) -> Container:
        """The container running ``service_name``; raises LookupError if there is none."""
        with self._lock:
            return self._lookup_container(service_name)

    def services(self) -> list[str]:
        """Names of the services in the compiled project."""
        with self._lock:
            if self.project is None:
                raise RuntimeError("the stack has not been brought up")
            return self.project.service_names()

    def down(self, *options: Any) -> None:
        """Stop and remove the stack's containers."""
        with self._lock:
            down_options = _DownOptions()
            for option in options:
                option.apply_to_stack_down(down_options)
            args = ["down"]
            if down_options.remove_orphans:
                args.append("--remove-orphans")
            if down_options.volumes:
                args.append("--volumes")
            if down_options.images:
                args.extend(["--rmi", down_options.images])
            self._compose(self.project, args)

    def up(self, *options: Any) -> None:
        """Create and start the stack, then apply the wait strategies."""
        with self._lock:
            self.project = None
            self.project = self._compile_project()
            project = self.project

            up_options = _UpOptions(services=project.service_names())
            for option in options:
                option.apply_to_stack_up(up_options)

            if len(up_options.services) != len(project.services):
                wanted = set(up_options.services)
                project.services = {
                    name: config
                    for name, config in project.services.items()
                    if name in wanted
                }

            args = ["up", "--detach"]
            flag = _RECREATE_FLAGS.get(up_options.recreate)
            if flag:
                args.append(flag)
            if up_options.recreate_dependencies == RECREATE_FORCE:
                args.append("--always-recreate-deps")
            if up_options.remove_orphans:
                args.append("--remove-orphans")
            if up_options.wait:
                args.append("--wait")
            args.extend(up_options.services)

            self.logger.info("starting compose stack %s", self.name)
            self._compose(project, args)

            if self._wait_strategies:
                self._apply_wait_strategies()

    def wait_for_service(self, service: str, strategy: WaitStrategy) -> DockerCompose:
        """Wait for ``service`` with ``strategy`` after ``up``; one strategy per service."""
        with self._lock:
            self._wait_strategies[service] = strategy
        return self

    def with_env(self, env: Mapping[str, str]) -> DockerCompose:
        """Add variables to the project; a key set twice is an error at ``up``."""
        with self._lock:
            self._project_options.append(_with_env(env))
        return self

    def with_os_env(self) -> DockerCompose:
        """Add this process's environment to the project."""
        with self._lock:
            self._project_options.append(_with_os_env)
        return self

    def _apply_wait_strategies(self) -> None:
        strategies = dict(self._wait_strategies)
        with ThreadPoolExecutor(max_workers=len(strategies)) as pool:
            futures = [
                pool.submit(self._wait_for, service, strategy)
                for service, strategy in strategies.items()
            ]
        errors = [future.exception() for future in futures if future.exception() is not None]
        if errors:
            raise errors[0]

    def _wait_for(self, service: str, strategy: WaitStrategy) -> None:
        target = self._lookup_container(service)
        self.logger.info("waiting for service %s: %s", service, strategy.description)
        strategy.wait_until_ready(target)

    def _lookup_container(self, service_name: str) -> Container:
        with self._containers_lock:
            cached = self._containers.get(service_name)
            if cached is not None:
                return cached

            output = _run_docker(
                self.docker_executable,
                [
                    "ps",
                    "-a",
                    "--no-trunc",
                    "--filter",
                    f"label={PROJECT_LABEL}={self.name}",
                    "--filter",
                    f"label={SERVICE_LABEL}={service_name}",
                    "--format",
                    "{{.ID}}\t{{.Image}}",
                ],
            )
            lines = [line.strip() for line in output.splitlines() if line.strip()]
            if not lines:
                raise LookupError(f"no container found for service name {service_name}")
            container_id, _, image = lines[0].partition("\t")

            inspected = _run_docker(
                self.docker_executable,
                ["inspect", "--format", "{{json .NetworkSettings}}", container_id],
            )
            settings = json.loads(inspected or "{}") or {}
            docker = self.docker_executable
            container = Container(
                id=container_id,
                image=image,
                ports=_published_ports(settings),
                ip=_network_ip(settings),
                read_logs=lambda: _container_logs(docker, container_id),
            )
            self._containers[service_name] = container
            return container

    def _compile_project(self) -> _Project:
        environment: dict[str, str] = {}
        for option in self._project_options:
            option(environment)

        files = [os.path.abspath(path) for path in self.configs] or [_default_config()]
        services: dict[str, dict] = {}
        for path in files:
            for name, config in _load_services(path).items():
                merged = dict(services.get(name) or {})
                merged.update(config or {})
                services[name] = merged

        return _Project(
            name=self.name,
            working_dir=os.path.dirname(files[0]),
            compose_files=files,
            services=services,
            environment=environment,
        )

    def _compose(self, project: Optional[_Project], args: Sequence[str]) -> None:
        command = [self.docker_executable, "compose", "--project-name", self.name]
        cwd = None
        env = dict(os.environ)
        if project is not None:
            command.extend(part for path in project.compose_files for part in ("-f", path))
            cwd = project.working_dir
            env.update(project.environment)
        command.extend(args)

        try:
            completed = subprocess.run(
                command, cwd=cwd, env=env, capture_output=True, check=False
            )
        except OSError as exc:
            raise ComposeError(str(exc), command=command) from exc
        if completed.returncode != 0:
            detail = completed.stderr.decode("utf-8", errors="replace").strip()
            raise ComposeError(
                f"docker compose {args[0]} exited with status {completed.returncode}: {detail}",
                command=command,
                stdout=completed.stdout,
                stderr=completed.stderr,
            )