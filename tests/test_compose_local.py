import os
import sys

import pytest

from containerkit.compose_local import (
    ENV_COMPOSE_FILE,
    ENV_PROJECT_NAME,
    ComposeError,
    ComposeVersion,
    ExecResult,
    LocalDockerCompose,
    _parse_version,
    execute,
)
from containerkit.request import WaitStrategy

SIMPLE = """
services:
  nginx:
    image: nginx:stable-alpine
    environment:
      bar: ${bar}
    ports:
      - "9080:80"
"""

COMPLEX = """
services:
  nginx:
    image: nginx:stable-alpine
    ports:
      - "9080:80"
  mysql:
    image: mysql:8
    ports:
      - "13306:3306"
"""

POSTGRES = """
services:
  postgres:
    image: postgres:14
"""


@pytest.fixture
def compose_files(tmp_path):
    paths = {}
    for name, content in {
        "simple": SIMPLE,
        "complex": COMPLEX,
        "postgres": POSTGRES,
    }.items():
        path = tmp_path / f"docker-compose-{name}.yml"
        path.write_text(content)
        paths[name] = str(path)
    return paths


def _strategy():
    return WaitStrategy(condition=lambda container: True, description="always")


def _missing(compose):
    compose.executable = "containerkit-missing-compose-binary"
    return compose


def test_compose_version_format():
    assert ComposeVersion.V1.format("mysql", "1") == "mysql_1"
    assert ComposeVersion.V2.format("mysql", "1") == "mysql-1"
    assert ComposeVersion.V2.format("project", "mydata") == "project-mydata"


@pytest.mark.parametrize(
    "output, expected",
    [(b"1.29.2\n", ComposeVersion.V1), (b"2.17.0\n", ComposeVersion.V2)],
)
def test_parse_version(output, expected):
    assert _parse_version(output) is expected


@pytest.mark.parametrize("output", [b"3.0.0", b"2.17", b"x.y.z"])
def test_parse_version_rejects(output):
    with pytest.raises(ValueError):
        _parse_version(output)


def test_services_loaded_from_simple_file(compose_files):
    compose = LocalDockerCompose([compose_files["simple"]], "My_Project")
    assert compose.identifier == "my_project"
    assert list(compose.services) == ["nginx"]


def test_services_loaded_from_complex_file(compose_files):
    compose = LocalDockerCompose([compose_files["complex"]], "stack")
    assert len(compose.services) == 2
    assert "nginx" in compose.services
    assert "mysql" in compose.services


def test_services_merged_from_multiple_files(compose_files):
    compose = LocalDockerCompose(
        [compose_files["simple"], compose_files["complex"], compose_files["postgres"]], "stack"
    )
    assert sorted(compose.services) == ["mysql", "nginx", "postgres"]


def test_missing_file_leaves_no_services(tmp_path):
    compose = LocalDockerCompose([str(tmp_path / "absent.yml")], "stack")
    assert compose.services == {}


def test_compose_environment(compose_files):
    paths = [compose_files["simple"], compose_files["postgres"]]
    compose = LocalDockerCompose(paths, "Stack")
    environment = compose.compose_environment()
    assert environment[ENV_PROJECT_NAME] == "stack"
    expected = "".join(os.path.abspath(path) + os.pathsep for path in paths)
    assert environment[ENV_COMPOSE_FILE] == expected


def test_fluent_configuration(compose_files):
    compose = LocalDockerCompose([compose_files["simple"]], "stack")
    strategy = _strategy()
    assert compose.with_command(["up", "-d"]) is compose
    assert compose.with_env({"bar": "BAR"}) is compose
    assert compose.wait_for_service("nginx_1", strategy) is compose
    assert compose.with_exposed_service("mysql_1", 13306, strategy) is compose
    assert compose.cmd == ["up", "-d"]
    assert compose.env == {"bar": "BAR"}
    assert compose.wait_strategy_supplied is True
    assert compose.wait_strategy_map == {("nginx_1", 0): strategy, ("mysql_1", 13306): strategy}


def test_exposed_service_on_two_ports_keeps_both(compose_files):
    compose = LocalDockerCompose([compose_files["simple"]], "stack")
    compose.with_exposed_service("nginx", 9080, _strategy())
    compose.with_exposed_service("nginx", 9443, _strategy())
    assert sorted(compose.wait_strategy_map) == [("nginx", 9080), ("nginx", 9443)]


def test_invoke_without_executable(compose_files):
    compose = _missing(LocalDockerCompose([compose_files["simple"]], "stack"))
    with pytest.raises(ComposeError, match="Local Docker Compose not found") as info:
        compose.with_command(["up", "-d"]).invoke()
    assert info.value.command == ["containerkit-missing-compose-binary"]


def test_down_without_executable(compose_files):
    compose = _missing(LocalDockerCompose([compose_files["simple"]], "stack"))
    with pytest.raises(ComposeError, match="is containerkit-missing-compose-binary on the PATH"):
        compose.down()


def test_execute_passes_environment(tmp_path):
    result = execute(
        str(tmp_path),
        {"FOO": "foo-value"},
        sys.executable,
        ["-c", "import os; print(os.environ['FOO'])"],
    )
    assert isinstance(result, ExecResult)
    assert result.stdout.strip() == b"foo-value"
    assert result.stderr == b""
    assert result.command[:3] == ["Reading std", str(tmp_path), sys.executable]


def test_execute_runs_in_directory(tmp_path):
    result = execute(str(tmp_path), {}, sys.executable, ["-c", "import os; print(os.getcwd())"])
    assert os.path.realpath(result.stdout.decode().strip()) == os.path.realpath(str(tmp_path))


def test_execute_captures_stderr(tmp_path):
    result = execute(
        str(tmp_path), {}, sys.executable, ["-c", "import sys; sys.stderr.write('oops')"]
    )
    assert result.stderr == b"oops"
    assert result.stdout == b""


def test_execute_passes_output_through(tmp_path, capsys):
    execute(str(tmp_path), {}, sys.executable, ["-c", "print('hello')"])
    assert "hello" in capsys.readouterr().out


def test_execute_nonzero_exit(tmp_path):
    with pytest.raises(ComposeError) as info:
        execute(
            str(tmp_path),
            {},
            sys.executable,
            ["-c", "import sys; sys.stderr.write('bad'); sys.exit(3)"],
        )
    assert info.value.stderr == b"bad"
    assert "3" in str(info.value)


def test_execute_missing_binary(tmp_path):
    binary = str(tmp_path / "no-such-binary")
    with pytest.raises(ComposeError) as info:
        execute(str(tmp_path), {}, binary, ["up"])
    assert info.value.command == ["Starting command", str(tmp_path), binary, "up"]