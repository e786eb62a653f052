"""Creating compose stacks from files and options."""

from __future__ import annotations

import logging
import subprocess
import threading
import uuid
from dataclasses import dataclass, field
from typing import Any, Optional, Sequence

from .compose_api import ComposeStackFiles, DockerCompose
from .compose_local import LocalDockerCompose
from .request import LOGGER


class NoStackConfiguredError(ValueError):
    """No compose files were given for the stack."""

    def __init__(self) -> None:
        super().__init__("no stack files configured")


@dataclass
class _StackOptions:
    identifier: str
    paths: list[str] = field(default_factory=list)
    logger: Optional[logging.Logger] = None


@dataclass
class _LocalOptions:
    logger: Optional[logging.Logger] = None


@dataclass(frozen=True)
class _LoggerOption:
    logger: Optional[logging.Logger]

    def apply_to_compose_stack(self, options: _StackOptions) -> None:
        options.logger = self.logger

    def apply_to_local_compose(self, options: _LocalOptions) -> None:
        options.logger = self.logger


_server_info_lock = threading.Lock()
_server_info_logged = threading.Event()


def _log_server_info_once(docker: str) -> None:
    with _server_info_lock:
        if _server_info_logged.is_set():
            return
        _server_info_logged.set()
    try:
        completed = subprocess.run(
            [docker, "version", "--format", "{{.Server.Version}} {{.Server.Os}}/{{.Server.Arch}}"],
            capture_output=True,
            text=True,
            check=False,
            timeout=30,
        )
    except (OSError, subprocess.SubprocessError) as exc:
        LOGGER.debug("could not query the Docker server: %s", exc)
        return
    if completed.returncode == 0:
        LOGGER.info("Docker server %s", completed.stdout.strip())
    else:
        LOGGER.debug("could not query the Docker server: %s", completed.stderr.strip())


def with_stack_files(*file_paths: str) -> ComposeStackFiles:
    """Option naming the compose files of the stack."""
    return ComposeStackFiles(file_paths)


def with_logger(logger: Optional[logging.Logger]) -> _LoggerOption:
    """Option replacing the default logger, for stacks and local compose alike."""
    return _LoggerOption(logger)


def new_docker_compose(*file_paths: str) -> DockerCompose:
    """A stack made of ``file_paths`` with a random identifier."""
    return new_docker_compose_with(with_stack_files(*file_paths))


def new_docker_compose_with(*options: Any) -> DockerCompose:
    """A stack configured by options; raises NoStackConfiguredError without files."""
    settings = _StackOptions(identifier=str(uuid.uuid4()), logger=LOGGER)
    for option in options:
        option.apply_to_compose_stack(settings)

    if not settings.paths:
        raise NoStackConfiguredError()

    compose = DockerCompose(settings.paths, settings.identifier, settings.logger)
    _log_server_info_once(compose.docker_executable)
    return compose


def new_local_docker_compose(
    file_paths: Sequence[str], identifier: str, *options: Any
) -> LocalDockerCompose:
    """A stack run through the local docker-compose executable.

    Options are objects with ``apply_to_local_compose`` or plain callables
    taking the options object.
    """
    settings = _LocalOptions(logger=LOGGER)
    for option in options:
        apply = getattr(option, "apply_to_local_compose", None)
        if apply is None:
            option(settings)
        else:
            apply(settings)
    return LocalDockerCompose(file_paths, identifier, settings.logger)