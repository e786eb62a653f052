import pytest

from containerkit.mysql import (
    build_request,
    run_container,
    with_config_file,
    with_database,
    with_password,
    with_scripts,
    with_username,
)
from containerkit.request import Container

READY = "2023 ready for connections. port: 3306  MySQL Community Server - GPL."
EMPTY = ""
YES = "yes"


def _fake_start(logs=READY):
    started = []

    def start(req):
        started.append(req)
        return Container(host_address="localhost", ports={"3306/tcp": 32768}, read_logs=lambda: logs)

    return start, started


def test_non_root_user_with_empty_password_is_rejected():
    start, started = _fake_start()
    with pytest.raises(ValueError, match="empty password can be used only with the root user"):
        run_container(start, with_database("foo"), with_username("test"), with_password(EMPTY))
    assert started == []


def test_root_user_with_empty_password():
    start, _ = _fake_start()
    container = run_container(
        start, with_database("foo"), with_username("root"), with_password(EMPTY)
    )
    assert container.username == "root"
    assert container.password == EMPTY
    assert container.connection_string() == "root:@tcp(localhost:32768)/foo"


def test_root_user_with_empty_password_request_env():
    req = build_request(with_database("foo"), with_username("root"), with_password(EMPTY))
    assert req.env == {"MYSQL_DATABASE": "foo", "MYSQL_ALLOW_EMPTY_PASSWORD": YES}


def test_default_request():
    req = build_request()
    assert req.image == "mysql:8"
    assert req.exposed_ports == ["3306/tcp", "33060/tcp"]
    assert req.env["MYSQL_USER"] == "test"
    assert req.env["MYSQL_DATABASE"] == "test"
    assert req.env["MYSQL_ROOT_PASSWORD"] == req.env["MYSQL_PASSWORD"]


def test_connection_string_with_extra_args():
    start, _ = _fake_start()
    password = "password"
    container = run_container(start, with_username("user"), with_password(password))
    assert (
        container.connection_string("tls=skip-verify")
        == "user:password@tcp(localhost:32768)/test?tls=skip-verify"
    )
    assert (
        container.connection_string("a=1", "b=2")
        == "user:password@tcp(localhost:32768)/test?a=1&b=2"
    )


def test_config_file_is_mounted():
    req = build_request(with_config_file("./testdata/my.cnf"))
    assert [(f.host_file_path, f.container_file_path, f.file_mode) for f in req.files] == [
        ("./testdata/my.cnf", "/etc/mysql/conf.d/my.cnf", 0o755)
    ]


def test_scripts_are_mounted_in_init_directory():
    req = build_request(with_scripts("testdata/schema.sql", "other/seed.sql"))
    assert [f.container_file_path for f in req.files] == [
        "/docker-entrypoint-initdb.d/schema.sql",
        "/docker-entrypoint-initdb.d/seed.sql",
    ]


def test_run_container_waits_for_ready_log():
    start, _ = _fake_start(logs="still booting")

    def short_timeout(req):
        req.waiting_for.timeout = 0.05
        req.waiting_for.interval = 0.01

    with pytest.raises(TimeoutError):
        run_container(start, short_timeout)