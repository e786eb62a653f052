"""MySQL container configuration and connection strings."""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Callable

from .request import Container, ContainerFile, ContainerRequest, WaitStrategy

CustomizeRequestOption = Callable[[ContainerRequest], None]

ROOT_USER = "root"
DEFAULT_IMAGE = "mysql:8"
DEFAULT_USER = "test"
DEFAULT_DATABASE = "test"
_EMPTY = ""
_ALLOW_FLAG = "yes"
_READY_LOG = "port: 3306  MySQL Community Server"
_ROOT_ONLY_MESSAGE = "empty password can be used only with the root user"


@dataclass
class MySQLContainer:
    """A running MySQL container with the credentials it was created with."""

    container: Container
    username: str
    password: str
    database: str

    def connection_string(self, *args: str) -> str:
        """DSN of the form user:password@tcp(host:port)/db?arg1&arg2."""
        port = self.container.mapped_port("3306/tcp")
        host = self.container.host()
        extra = "&".join(args)
        if extra:
            extra = "?" + extra
        return f"{self.username}:{self.password}@tcp({host}:{port})/{self.database}{extra}"


def with_username(username: str) -> CustomizeRequestOption:
    def apply(req: ContainerRequest) -> None:
        req.env["MYSQL_USER"] = username

    return apply


def with_password(password: str) -> CustomizeRequestOption:
    def apply(req: ContainerRequest) -> None:
        req.env["MYSQL_PASSWORD"] = password

    return apply


def with_database(database: str) -> CustomizeRequestOption:
    def apply(req: ContainerRequest) -> None:
        req.env["MYSQL_DATABASE"] = database

    return apply


def with_config_file(config_file: str) -> CustomizeRequestOption:
    def apply(req: ContainerRequest) -> None:
        req.files.append(ContainerFile(config_file, "/etc/mysql/conf.d/my.cnf", 0o755))

    return apply


def with_scripts(*scripts: str) -> CustomizeRequestOption:
    def apply(req: ContainerRequest) -> None:
        req.files.extend(
            ContainerFile(script, "/docker-entrypoint-initdb.d/" + os.path.basename(script), 0o755)
            for script in scripts
        )

    return apply


def _is_root(username: str) -> bool:
    return username.casefold() == ROOT_USER


def _apply_root_rules(req: ContainerRequest) -> None:
    username = req.env.get("MYSQL_USER", _EMPTY)
    password = req.env.get("MYSQL_PASSWORD", _EMPTY)
    if _is_root(username):
        req.env.pop("MYSQL_USER", None)
    if password:
        req.env["MYSQL_ROOT_PASSWORD"] = password
    elif _is_root(username):
        req.env["MYSQL_ALLOW_EMPTY_PASSWORD"] = _ALLOW_FLAG
        req.env.pop("MYSQL_PASSWORD", None)


def _credentials(req: ContainerRequest) -> tuple[str, str, str]:
    return (
        req.env.get("MYSQL_USER", ROOT_USER),
        req.env.get("MYSQL_PASSWORD", _EMPTY),
        req.env.get("MYSQL_DATABASE", _EMPTY),
    )


def build_request(*options: CustomizeRequestOption) -> ContainerRequest:
    """Build the MySQL container request, raising ValueError on bad credentials."""
    req = ContainerRequest(
        image=DEFAULT_IMAGE,
        exposed_ports=["3306/tcp", "33060/tcp"],
        env={
            "MYSQL_USER": DEFAULT_USER,
            "MYSQL_PASSWORD": "password",
            "MYSQL_DATABASE": DEFAULT_DATABASE,
        },
        waiting_for=WaitStrategy(
            condition=lambda container: _READY_LOG in container.read_logs(),
            description=f"log line {_READY_LOG!r}",
        ),
    )
    for option in (*options, _apply_root_rules):
        option(req)

    username, password, _ = _credentials(req)
    if not password and not _is_root(username):
        raise ValueError(_ROOT_ONLY_MESSAGE)
    return req


def run_container(
    start: Callable[[ContainerRequest], Container], *options: CustomizeRequestOption
) -> MySQLContainer:
    """Start a MySQL container through ``start`` and wait until it is ready."""
    req = build_request(*options)
    container = start(req)
    if req.waiting_for is not None:
        req.waiting_for.wait_until_ready(container)
    username, password, database = _credentials(req)
    return MySQLContainer(container, username, password, database)