# containerkit

Building blocks for integration tests that run against throwaway containers.
`containerkit` does the following:

- It describes the container you want as a plain request object.
- It lets you adjust that request with small option functions.
- It hands the request to a starter function that you supply.
- It waits until the started container is ready.

It ships setups for MySQL, Neo4j and Couchbase. It can also drive Docker Compose
stacks through the `docker compose` and `docker-compose` command-line tools.

## Installation

```
pip install containerkit
```

To install what the test suite needs:

```
pip install "containerkit[test]"
```

## Requests, containers and readiness

The shared types live in `containerkit.request`.

- `ContainerRequest` lists the settings of a container:
  - `image`
  - `exposed_ports`
  - `env`
  - `cmd`
  - `entrypoint`
  - `files`
  - `networks`
  - `network_aliases`
  - `waiting_for`
  - `logger`
- `ContainerRequest.merged(override)` returns a new request:
  - Mappings are merged key by key.
  - Lists and scalar values from `override` replace the base values only when they are set.
- `override_container_request(override)` returns a function that merges `override` into any request it receives.
- `noop_override_container_request(req)` returns an equal copy of `req`.
- `ContainerFile(host_file_path, container_file_path, file_mode)` is a file to copy into the container.
- `Container` describes a started container and has these methods:
  - `host()`
  - `mapped_port(port)`, which accepts `"3306"` or `"3306/tcp"` and raises `LookupError` for a port that is not mapped.
  - `container_ip()`
  - `read_logs`, a callable that returns the container's log text.
- `WaitStrategy(condition, description, timeout, interval)` checks `condition(container)` repeatedly until it holds. If it does not hold within `timeout` seconds, `wait_until_ready(target)` raises `TimeoutError`.

A starter is any callable that takes a `ContainerRequest` and returns a
`Container`. The `run_container` and `start_container` functions below take
a starter as their first argument.

## MySQL

```python
from containerkit import mysql

password = "password"
request = mysql.build_request(
    mysql.with_database("foo"),
    mysql.with_username("test"),
    mysql.with_password(password),
    mysql.with_scripts("testdata/schema.sql"),
)
```

The request has these defaults:

| Setting | Value |
|---|---|
| Image | `mysql:8` |
| Exposed ports | `3306/tcp` and `33060/tcp` |
| User | `test` |
| Database | `test` |

The request waits for the server's ready line in the logs.

Options:

- `with_config_file(path)` copies a file to `/etc/mysql/conf.d/my.cnf`.
- `with_scripts(*paths)` copies scripts into `/docker-entrypoint-initdb.d/`.

Credentials are handled as follows:

- A non-empty password is also set as the root password.
- Setting the user to `root` drops the separate user.
- An empty password is accepted only for `root`. For any other user, `build_request` raises `ValueError("empty password can be used only with the root user")`.

`run_container(start, *options)` builds the request, starts it through
`start`, waits for readiness and returns a `MySQLContainer`.
`connection_string(*args)` on that container returns a DSN of the form
`user:password@tcp(host:port)/database?arg1&arg2`.

## Neo4j

```python
from containerkit import neo4j

request = neo4j.build_request(
    neo4j.with_labs_plugin(neo4j.LabsPlugin.APOC),
    neo4j.with_neo4j_setting("dbms.tx_log.rotation.size", "42M"),
)
```

`format_neo4j_config` turns a setting name into its environment variable.
For example, `dbms.tx_log.rotation.size` becomes
`NEO4J_dbms_tx__log_rotation_size`.

Settings behave as follows:

- A setting that replaces an existing value logs a warning.
- A setting named `AUTH` is refused once a password has been set.

Authentication is off by default, and `without_authentication()` turns it off explicitly. `with_admin_password(value)` sets `neo4j/<value>`. An empty value also turns authentication off.

`with_logger(logger)` chooses the logger. If the logger is `None`, `build_request` raises `ValueError`.

The request waits until both of these hold:

- The logs contain `Bolt enabled on`.
- HTTP port 7474 answers with status 200.

`run_container(start, *options)` returns a `Neo4jContainer`. Its `bolt_url()` returns `neo4j://host:port`.

## Couchbase

```python
from containerkit.couchbase import start_container
from containerkit.couchbase_bucket import Bucket
from containerkit.couchbase_config import with_bucket, with_credentials, with_image_name

password = "password"
container = start_container(
    start,  # your starter: ContainerRequest -> Container
    with_image_name("couchbase:community-7.1.1"),
    with_credentials("Administrator", password),
    with_bucket(Bucket("testBucket").with_replicas(1).with_quota(200)),
)
print(container.connection_string())  # couchbase://host:port
```

### Configuration

`Config` defaults:

| Setting | Default |
|---|---|
| Services | key-value, query, search and index |
| User | `Administrator` |
| Image | `couchbase:6.5.1` |
| Index storage mode | `IndexStorageMode.MEMORY_OPTIMIZED` |

Other options:

- `with_eventing_service()` adds the eventing service.
- `with_analytics_service()` adds the analytics service.
- `with_index_storage_mode(mode)` sets the index storage mode.

### Buckets

`Bucket` is immutable. Each `with_*` method returns a copy:

- `with_replicas` clamps the value to the range 0–3.
- `with_quota` never goes below 100 MB.
- `with_flush_enabled` sets whether the bucket may be flushed.
- `with_primary_index` sets whether a primary index is created.

### Start-up

`start_container` exposes the management ports and the ports of each enabled service. It then sets up the cluster over the REST API in this order:

1. It waits for the node.
2. It detects the edition.
3. It sets up services, memory quotas, the administrator and alternate addresses.
4. It configures the indexer.
5. It waits for all nodes to be healthy.

After that it creates each bucket. Where requested, it also creates the bucket's primary index.

Start-up fails in these cases:

- Analytics or eventing on a non-Enterprise image raises `ValueError`.
- A primary index without the query service raises `ValueError`.

The indexer uses `forestdb` on the Community edition.

## Docker Compose

`containerkit.compose` builds stacks of two kinds.

### `DockerCompose`

`new_docker_compose(*paths)` and `new_docker_compose_with(*options)` return a
`DockerCompose`, which runs `docker compose`. Options for the constructor:

- `with_stack_files(*paths)` or `ComposeStackFiles`
- `StackIdentifier(name)`; the default identifier is a random UUID.
- `with_logger(logger)`

Without files, the constructor raises `NoStackConfiguredError`.

A `DockerCompose` has these methods:

- `up(*options)` accepts:
  - `run_services(*names)`
  - `Wait(True)`
  - `RemoveOrphans(True)`
- `down(*options)` accepts:
  - `RemoveOrphans(True)`
  - `RemoveVolumes(True)`
  - `RemoveImages.ALL` or `RemoveImages.LOCAL`
- `services()` returns the sorted service names after `up`.
- `wait_for_service(service, strategy)` registers a `WaitStrategy`. The strategies run in parallel after `up`.
- `with_env(env)` adds environment variables. Setting a key twice raises `ValueError` at `up`.
- `with_os_env()` adds this process's environment.
- `service_container(name)` finds the service's container by its compose labels. If there is none, it raises `LookupError("no container found for service name <name>")`.

A failing compose command raises `ComposeError`.

### `LocalDockerCompose`

`new_local_docker_compose(paths, identifier, *options)` returns a
`LocalDockerCompose`, which runs the local `docker-compose` executable:

```python
from containerkit.compose import new_local_docker_compose

compose = new_local_docker_compose(["docker-compose.yml"], "my_project")
compose.with_command(["up", "-d"]).with_env({"bar": "BAR"}).invoke()
compose.down()
```

When a `LocalDockerCompose` is created:

- The identifier is lower-cased.
- The compose files are read, and their service definitions are collected in `services`.
- The installed version is probed and kept as a `ComposeVersion`. `compose_version.format("mysql", "1")` then gives the container name for that version.

Methods and behaviour:

- `invoke()` runs the configured command and returns an `ExecResult` with the captured `stdout` and `stderr`.
- `down()` runs `down --remove-orphans --volumes`.
- `wait_for_service` and `with_exposed_service` register wait strategies. They are applied once, after the next command.
- A missing executable, a failing command or a strategy that cannot be met raises `ComposeError`.

`execute(dir_context, environment, binary, args)` runs a program, passes its output through to the terminal and captures it.

## What it does not do

- `containerkit` has no Docker API client of its own and does not pull images or create containers for requests. Starting a `ContainerRequest` is left to the starter function you pass in.
- The Compose helpers rely on the `docker`, `docker compose` and `docker-compose` command-line tools being on the PATH.
- There is no command-line program.