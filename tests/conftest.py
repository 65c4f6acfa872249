import pytest

from pcr.api.models import make_session_factory
from pcr.config import Settings
from pcr.exceptions import ExecutionError
from pcr.harness import Harness
from pcr.registry import NodeRecord, NodeRegistry
from pcr.roles import Role
from pcr.runtime.docker_runtime import ExecResult, Instance, node_number

OLD_IMAGE = "docker.io/cockroachdb/cockroach:v23.2.0"


def link_status(token):
    """TSV shaped like SHOW VIRTUAL CLUSTER ... WITH REPLICATION STATUS."""
    return f"id\tname\tsource_tenant_name\tstatus\n3\tvb\tva\t{token}\n"


def data_state(token):
    return f"data_state\n{token}\n"


class SqlScript:
    """Canned responses for SQL run through the fake runtime.

    Rules are checked in order; the first whose pattern occurs in the
    statement answers. A response may be a string, an ExecResult, a list
    (consumed one per call, the last entry repeats) or a callable taking
    ``(node, url, sql)``.
    """

    def __init__(self):
        self.rules = []
        self.calls = []

    def on(self, pattern, response):
        self.rules.insert(0, [pattern, response])
        return self

    def statements(self, pattern=None):
        return [sql for _, _, sql in self.calls if pattern is None or pattern in sql]

    def respond(self, node, url, sql):
        self.calls.append((node, url, sql))
        for rule in self.rules:
            pattern, response = rule
            if pattern not in sql:
                continue
            if isinstance(response, list):
                response = response.pop(0) if len(response) > 1 else response[0]
            if callable(response):
                response = response(node, url, sql)
            if isinstance(response, ExecResult):
                return response
            return ExecResult(0, response)
        return ExecResult(0, "")


class FakeRuntime:
    """In-memory stand-in for ContainerRuntime."""

    def __init__(self, script=None):
        self.instances = {}
        self.volumes = set()
        self.networks = set()
        self.script = script or SqlScript()
        self.exec_calls = []
        self.runs = []
        self.stopped = []
        self.removed = []
        self.pulled = []

    def add(self, name, ports, state="running"):
        self.instances[name] = Instance(name, node_number(name), state, {p: p for p in ports})

    def list_instances(self, network=None):
        return sorted(self.instances.values(), key=lambda i: i.number)

    def get_instance(self, name):
        return self.instances.get(name)

    def exec(self, name, command):
        self.exec_calls.append((name, command))
        if name not in self.instances:
            raise ExecutionError(f"Container {name} not found")
        if command[:2] == ["./cockroach", "sql"]:
            url = command[command.index("--url") + 1]
            sql = command[command.index("--execute") + 1]
            return self.script.respond(name, url, sql)
        if "init" in command:
            return ExecResult(0, "Cluster successfully initialized")
        return ExecResult(0, "")

    def pull(self, image):
        self.pulled.append(image)

    def ensure_network(self, name):
        self.networks.add(name)

    def remove_network(self, name):
        self.networks.discard(name)

    def ensure_volume(self, name):
        self.volumes.add(name)

    def remove_volume(self, name):
        self.volumes.discard(name)

    def node_volumes(self):
        return sorted(self.volumes)

    def run(self, name, image, command, network, ports, volumes):
        self.runs.append((name, image, command, ports, volumes))
        self.add(name, list(ports))

    def stop(self, name):
        self.stopped.append(name)
        if name in self.instances:
            self.instances[name].state = "exited"

    def remove(self, name):
        self.removed.append(name)
        self.instances.pop(name, None)


@pytest.fixture
def settings(tmp_path):
    return Settings(
        max_iters=5,
        poll_interval=0,
        ready_max_iters=3,
        ready_poll_interval=0,
        init_max_iters=3,
        init_interval=0,
        settle_seconds=0,
        state_file=tmp_path / "pcr_state",
        registry_path=":memory:",
    )


@pytest.fixture
def session_factory():
    return make_session_factory(":memory:")


@pytest.fixture
def registry(session_factory):
    return NodeRegistry(session_factory)


@pytest.fixture
def script():
    return SqlScript()


@pytest.fixture
def runtime(script):
    return FakeRuntime(script)


def register_role(registry, runtime, role, first_number, count=3, image=OLD_IMAGE):
    spec = role.spec
    for i in range(count):
        number = first_number + i
        record = NodeRecord(
            name=f"roach{number}",
            number=number,
            role=role,
            sql_port=spec.sql_port(i + 1),
            http_port=spec.http_port(i + 1),
            inter_port=spec.inter_port,
            volume=f"roachvol{number}",
            image=image,
            network="roachnet1",
        )
        registry.add(record)
        runtime.add(record.name, [record.sql_port, record.http_port])
        runtime.volumes.add(record.volume)


@pytest.fixture
def provisioned(registry, runtime):
    """CA on roach1-3 and CB on roach4-6, all running."""
    register_role(registry, runtime, Role.CA, 1)
    register_role(registry, runtime, Role.CB, 4)
    runtime.networks.add("roachnet1")
    return registry


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def harness(settings, runtime, session_factory, provisioned, sleeps):
    return Harness.from_settings(
        settings, runtime=runtime, session_factory=session_factory, sleep=sleeps.append
    )


@pytest.fixture
def empty_harness(settings, runtime, session_factory, sleeps):
    return Harness.from_settings(
        settings, runtime=runtime, session_factory=session_factory, sleep=sleeps.append
    )
