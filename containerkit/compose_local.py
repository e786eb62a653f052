"""Driving a stack through the local docker-compose executable."""

from __future__ import annotations

import json
import logging
import os
import shutil
import subprocess
import sys
import threading
from dataclasses import dataclass
from enum import Enum
from typing import IO, Iterable, Mapping, Optional, Sequence

import yaml

from .request import LOGGER, Container, WaitStrategy

ENV_PROJECT_NAME = "COMPOSE_PROJECT_NAME"
ENV_COMPOSE_FILE = "COMPOSE_FILE"
_DEFAULT_COMPOSE_FILE = "docker-compose.yml"
_CURRENT_DIR = "."


class ComposeVersion(Enum):
    """Major compose version; it decides how container names are joined."""

    V1 = "_"
    V2 = "-"

    def format(self, *parts: str) -> str:
        """Join name parts the way this compose version names containers."""
        return self.value.join(parts)


def _parse_version(output: bytes) -> ComposeVersion:
    components = output.split(b".")
    if len(components) != 3:
        raise ValueError(f"expected 3 version components in {output!r}")
    major = int(components[0])
    if major == 1:
        return ComposeVersion.V1
    if major == 2:
        return ComposeVersion.V2
    raise ValueError(f"unexpected compose version {major}")


@dataclass
class ExecResult:
    """Command that ran and everything it wrote."""

    command: list[str]
    stdout: bytes = b""
    stderr: bytes = b""


class ComposeError(Exception):
    """A compose command could not be run, failed, or its services never got ready."""

    def __init__(
        self,
        message: str,
        command: Sequence[str] = (),
        stdout: bytes = b"",
        stderr: bytes = b"",
    ) -> None:
        super().__init__(message)
        self.command = list(command)
        self.stdout = stdout
        self.stderr = stderr


def _pump(source: IO[bytes], sink: IO[str], captured: list[bytes]) -> None:
    for chunk in iter(lambda: source.read1(65536), b""):
        captured.append(chunk)
        try:
            sink.write(chunk.decode("utf-8", errors="replace"))
            sink.flush()
        except (OSError, ValueError):
            pass


def execute(
    dir_context: str,
    environment: Mapping[str, str],
    binary: str,
    args: Sequence[str],
) -> ExecResult:
    """Run ``binary`` in ``dir_context``, passing its output through while capturing it.

    Raises ComposeError when the program cannot start or exits with a non-zero status.
    """
    env = {**os.environ, **environment}
    try:
        process = subprocess.Popen(
            [binary, *args],
            cwd=dir_context,
            env=env,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
        )
    except OSError as exc:
        raise ComposeError(
            str(exc), command=["Starting command", dir_context, binary, *args]
        ) from exc

    out: list[bytes] = []
    err: list[bytes] = []
    assert process.stdout is not None and process.stderr is not None
    reader = threading.Thread(target=_pump, args=(process.stdout, sys.stdout, out), daemon=True)
    reader.start()
    _pump(process.stderr, sys.stderr, err)
    reader.join()
    returncode = process.wait()

    command = ["Reading std", dir_context, binary, *args]
    stdout, stderr = b"".join(out), b"".join(err)
    if returncode != 0:
        raise ComposeError(
            f"exit status {returncode}", command=command, stdout=stdout, stderr=stderr
        )
    return ExecResult(command=command, stdout=stdout, stderr=stderr)


def _run_docker(docker: str, args: Iterable[str]) -> str:
    completed = subprocess.run(
        [docker, *args], capture_output=True, text=True, check=False
    )
    if completed.returncode != 0:
        raise RuntimeError(completed.stderr.strip() or f"exit status {completed.returncode}")
    return completed.stdout


def _container_logs(docker: str, container_id: str) -> str:
    completed = subprocess.run(
        [docker, "logs", container_id], capture_output=True, text=True, check=False
    )
    return completed.stdout + completed.stderr


def _published_ports(settings: Mapping) -> dict[str, int]:
    ports: dict[str, int] = {}
    for container_port, bindings in (settings.get("Ports") or {}).items():
        for binding in bindings or ():
            host_port = binding.get("HostPort")
            if host_port:
                ports[container_port] = int(host_port)
                break
    return ports


def _network_ip(settings: Mapping) -> str:
    for network in (settings.get("Networks") or {}).values():
        address = network.get("IPAddress")
        if address:
            return address
    return settings.get("IPAddress") or ""


class LocalDockerCompose:
    """A compose stack run through the docker-compose executable on the PATH."""

    def __init__(
        self,
        file_paths: Sequence[str],
        identifier: str,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.logger = logger or LOGGER
        self.executable = "docker-compose.exe" if os.name == "nt" else "docker-compose"
        self.docker_executable = "docker"
        self.compose_file_paths = list(file_paths)
        self.abs_compose_file_paths = [os.path.abspath(path) for path in self.compose_file_paths]
        self.identifier = identifier.lower()
        self.cmd: list[str] = []
        self.env: dict[str, str] = {}
        self.services: dict[str, object] = {}
        self.compose_version: Optional[ComposeVersion] = None
        self.wait_strategy_supplied = False
        self.wait_strategy_map: dict[tuple[str, int], WaitStrategy] = {}

        try:
            self._determine_version()
        except (ComposeError, ValueError) as exc:
            self.logger.debug("could not determine compose version: %s", exc)
        try:
            self._validate()
        except (OSError, ValueError, yaml.YAMLError) as exc:
            self.logger.debug("could not read compose files: %s", exc)

    def compose_environment(self) -> dict[str, str]:
        """Variables naming the project and its compose files."""
        files = "".join(path + os.pathsep for path in self.abs_compose_file_paths)
        return {ENV_PROJECT_NAME: self.identifier, ENV_COMPOSE_FILE: files}

    def down(self) -> ExecResult:
        """Run ``docker-compose down``, removing orphans and volumes."""
        return self._execute_compose(["down", "--remove-orphans", "--volumes"])

    def invoke(self) -> ExecResult:
        """Run the configured command."""
        return self._execute_compose(self.cmd)

    def wait_for_service(self, service: str, strategy: WaitStrategy) -> LocalDockerCompose:
        """Wait for ``service`` with ``strategy`` after the next command."""
        self.wait_strategy_supplied = True
        self.wait_strategy_map[(service, 0)] = strategy
        return self

    def with_command(self, cmd: Sequence[str]) -> LocalDockerCompose:
        self.cmd = list(cmd)
        return self

    def with_env(self, env: Mapping[str, str]) -> LocalDockerCompose:
        self.env = dict(env)
        return self

    def with_exposed_service(
        self, service: str, port: int, strategy: WaitStrategy
    ) -> LocalDockerCompose:
        """Like wait_for_service, keyed also by published port; all apply to one container."""
        self.wait_strategy_supplied = True
        self.wait_strategy_map[(service, port)] = strategy
        return self

    def _determine_version(self) -> None:
        result = self._execute_compose(["version", "--short"])
        self.compose_version = _parse_version(result.stdout)

    def _validate(self) -> None:
        for path in self.abs_compose_file_paths:
            with open(path, "rb") as handle:
                document = yaml.safe_load(handle)
            if document is None:
                document = {}
            if not isinstance(document, dict):
                raise ValueError(f"{path} does not hold a mapping")
            self.services.update(document.get("services") or {})

    def _container_name(self, service: str, separator: str) -> str:
        return self.identifier + separator + service

    def _execute_compose(self, args: Sequence[str]) -> ExecResult:
        if shutil.which(self.executable) is None:
            raise ComposeError(
                f"Local Docker Compose not found. Is {self.executable} on the PATH?",
                command=[self.executable],
            )

        environment = {**self.compose_environment(), **self.env}
        if self.abs_compose_file_paths:
            workdir = os.path.dirname(self.abs_compose_file_paths[0])
            cmds = [part for path in self.abs_compose_file_paths for part in ("-f", path)]
        else:
            workdir = _CURRENT_DIR
            cmds = ["-f", _DEFAULT_COMPOSE_FILE]
        cmds.extend(args)

        try:
            result = execute(workdir, environment, self.executable, cmds)
        except ComposeError as exc:
            raise ComposeError(
                f"Local Docker compose exited abnormally whilst running {self.executable}: "
                f"[{' '.join(self.cmd)}]. {exc}",
                command=[self.executable],
                stdout=exc.stdout,
                stderr=exc.stderr,
            ) from exc

        if self.wait_strategy_supplied:
            # run the strategies once, not again while tearing down
            self.wait_strategy_supplied = False
            try:
                self._apply_strategies()
            except (RuntimeError, TimeoutError, OSError, ValueError) as exc:
                raise ComposeError(
                    "one or more wait strategies could not be applied to the running "
                    f"containers: {exc}"
                ) from exc
        return result

    def _find_container(self, service: str, port: int) -> str:
        names = (
            self._container_name(service, "_"),
            self._container_name(service, "-"),
            service,
        )
        filters = [part for name in names for part in ("--filter", f"name={name}")]
        try:
            output = _run_docker(
                self.docker_executable,
                ["ps", "-a", "--no-trunc", *filters, "--format", "{{.ID}}"],
            )
        except (RuntimeError, OSError) as exc:
            raise RuntimeError(
                f"error {exc} occurred while filtering the service {service}: {port} "
                "by name and published port"
            ) from exc
        ids = [line.strip() for line in output.splitlines() if line.strip()]
        if not ids:
            raise RuntimeError(
                f"service with name {service} not found in list of running containers"
            )
        if len(ids) > 1:
            raise RuntimeError(
                f"expecting only one running container for {service} but got {len(ids)}"
            )
        return ids[0]

    def _inspect(self, container_id: str) -> Container:
        output = _run_docker(
            self.docker_executable,
            ["inspect", "--format", "{{json .NetworkSettings}}", container_id],
        )
        settings = json.loads(output or "{}") or {}
        docker = self.docker_executable
        return Container(
            id=container_id,
            ports=_published_ports(settings),
            ip=_network_ip(settings),
            read_logs=lambda: _container_logs(docker, container_id),
        )

    def _apply_strategies(self) -> None:
        for (service, port), strategy in self.wait_strategy_map.items():
            container = self._inspect(self._find_container(service, port))
            self.logger.info("waiting for service %s: %s", service, strategy.description)
            try:
                strategy.wait_until_ready(container)
            except (TimeoutError, RuntimeError, OSError, LookupError) as exc:
                raise RuntimeError(
                    f"Unable to apply wait strategy {strategy.description} to service "
                    f"{service} due to {exc}"
                ) from exc