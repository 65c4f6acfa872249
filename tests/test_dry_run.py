import pytest

from pcr.harness import Harness
from pcr.roles import Role

from conftest import OLD_IMAGE

NEW_IMAGE = "docker.io/cockroachdb/cockroach:v24.1.0"


@pytest.fixture
def dry_harness(settings, runtime, session_factory):
    return Harness.from_settings(
        settings.override(dry_run=True), runtime=runtime, session_factory=session_factory
    )


def images(registry, role):
    return {r.image for r in registry.nodes_for(role)}


def test_snapshot_copies_nodes_and_upgrades(registry, provisioned):
    upgrade_id = registry.start_upgrade(Role.CB, OLD_IMAGE, NEW_IMAGE)

    copy = registry.snapshot()
    copy.remove("roach1")
    copy.set_upgrade_status(upgrade_id, "upgraded")

    assert [r.name for r in copy.nodes_for(Role.CA)] == ["roach2", "roach3"]
    assert copy.latest_upgrade(Role.CB).status == "upgraded"
    assert [r.name for r in registry.nodes_for(Role.CA)] == ["roach1", "roach2", "roach3"]
    assert registry.latest_upgrade(Role.CB).status == "in_progress"


def test_dry_run_create_leaves_registry_empty(dry_harness, registry):
    records = dry_harness.provisioner.create_cluster(Role.CA, 3)

    assert [r.name for r in records] == ["roach1", "roach2", "roach3"]
    assert registry.nodes_for(Role.CA) == []
    assert registry.highest_number() == 0


def test_dry_run_destroy_keeps_registered_nodes(provisioned, dry_harness, registry):
    dry_harness.provisioner.destroy_role(Role.CA)

    assert dry_harness.registry.nodes_for(Role.CA) == []
    assert [r.name for r in registry.nodes_for(Role.CA)] == ["roach1", "roach2", "roach3"]


def test_real_upgrade_after_dry_run_replaces_nodes(provisioned, dry_harness, harness, runtime, registry):
    dry_harness.upgrades.upgrade(Role.CA, "24.1.0")

    assert images(registry, Role.CA) == {OLD_IMAGE}
    assert registry.latest_upgrade(Role.CA) is None

    runtime.runs.clear()
    upgrade_id = harness.upgrades.upgrade(Role.CA, "24.1.0")

    assert upgrade_id is not None
    assert [run[0] for run in runtime.runs] == ["roach1", "roach2", "roach3"]
    assert images(registry, Role.CA) == {NEW_IMAGE}
    assert registry.latest_upgrade(Role.CA).status == "upgraded"
