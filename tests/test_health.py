from pcr.runtime.docker_runtime import ExecResult
from pcr.state_store import (
    FAILOVER_ATOB_DONE,
    REPLICATION_ATOB_ACTIVE,
    REPLICATION_BTOA_ACTIVE,
)

from conftest import link_status


def count_by_tenant(counts, failing=()):
    def respond(node, url, sql):
        for tenant in failing:
            if f"-ccluster={tenant}&" in url:
                return ExecResult(1, f"ERROR: service unavailable for target tenant ({tenant})")
        for tenant, count in counts.items():
            if f"-ccluster={tenant}&" in url:
                return f"count\n{count}\n"
        return ExecResult(1, "ERROR: unexpected tenant")
    return respond


def test_status_lists_members_and_settings(harness, script, runtime):
    runtime.instances["roach6"].state = "exited"
    script.on("SHOW VIRTUAL CLUSTERS", "id\tname\n1\tsystem\n3\tva\n")
    script.on("SHOW CLUSTER SETTING server.controller", "default_target_cluster\nva\n")

    status = harness.health.status()

    ca = status["CA"]
    assert [m.name for m in ca.members] == ["roach1", "roach2", "roach3"]
    assert ca.members[0].sql_endpoint == "localhost:26257"
    assert ca.members[0].http_endpoint == "http://localhost:8080"
    assert "va" in ca.virtual_clusters
    assert ca.default_target.strip().endswith("va")
    assert status["CB"].members[2].state == "exited"


def test_status_without_clusters(empty_harness, script):
    status = empty_harness.health.status()
    assert status["CA"].members == []
    assert script.calls == []


def test_healthy_a_to_b(harness, script):
    harness.store.set_many({REPLICATION_ATOB_ACTIVE: 1, REPLICATION_BTOA_ACTIVE: 0})
    script.on("WITH REPLICATION STATUS", lambda node, url, sql: (
        link_status("replicating") if node == "roach4" else ExecResult(1, "ERROR: no stream")
    ))
    script.on("count(*)", count_by_tenant({"va": 100, "vb-readonly": 100}))

    report = harness.health.check_replication_health()

    assert report.healthy
    assert report.links["a-to-b"] == "replicating"
    assert [(c.role, c.tenant, c.count) for c in report.row_counts] == [
        ("CA", "va", 100), ("CB", "vb-readonly", 100),
    ]


def test_readonly_count_falls_back(harness, script):
    harness.store.set(REPLICATION_ATOB_ACTIVE, 1)
    script.on("count(*)", count_by_tenant({"va": 7, "vb": 5}, failing=("vb-readonly",)))

    counts = harness.health.row_counts()

    assert [(c.tenant, c.count) for c in counts] == [("va", 7), ("vb", 5)]


def test_b_to_a_prefers_readonly_on_ca(harness, script):
    harness.store.set(REPLICATION_BTOA_ACTIVE, 1)
    script.on("count(*)", count_by_tenant({"va-readonly": 3, "vb": 3}))
    counts = harness.health.row_counts()
    assert [(c.role, c.tenant) for c in counts] == [("CA", "va-readonly"), ("CB", "vb")]


def test_both_directions_active_is_flagged(harness, script):
    harness.store.set_many({REPLICATION_ATOB_ACTIVE: 1, REPLICATION_BTOA_ACTIVE: 1})
    script.on("WITH REPLICATION STATUS", link_status("replicating"))

    report = harness.health.check_replication_health()

    assert not report.healthy
    assert any(w.key == f"{REPLICATION_ATOB_ACTIVE},{REPLICATION_BTOA_ACTIVE}" for w in report.warnings)
    # breadcrumbs are reported, never corrected
    assert harness.store.get(REPLICATION_BTOA_ACTIVE) == "1"


def test_active_flag_without_live_link(harness, script):
    harness.store.set(REPLICATION_ATOB_ACTIVE, 1)
    script.on("WITH REPLICATION STATUS", link_status("paused"))

    report = harness.health.check_replication_health()

    [warning] = report.warnings
    assert warning.key == REPLICATION_ATOB_ACTIVE
    assert warning.observed == "paused"


def test_failed_over_but_still_replicating(harness, script):
    harness.store.set(FAILOVER_ATOB_DONE, 1)
    script.on("WITH REPLICATION STATUS", lambda node, url, sql: (
        link_status("replicating") if node == "roach4" else ""
    ))
    report = harness.health.check_replication_health()
    assert [w.key for w in report.warnings] == [FAILOVER_ATOB_DONE]


def test_watch_row_counts(harness, script, sleeps):
    script.on("count(*)", "count\n1\n")
    snapshots = harness.health.watch_row_counts(checks=3, interval=5)
    assert len(snapshots) == 3
    assert sleeps == [5, 5]


def test_smoke_default(harness, script):
    script.on("SELECT 1;", lambda node, url, sql: (
        ExecResult(1, "ERROR: no default") if node == "roach4" else "1\n"
    ))
    assert harness.health.smoke_default() == {"CA": True, "CB": False}
    urls = [url for _, url, sql in script.calls if sql == "SELECT 1;"]
    assert urls == ["postgresql://root@roach1:26257", "postgresql://root@roach4:27257"]


def test_console_urls(harness, runtime, settings):
    runtime.instances["roach1"].state = "exited"
    assert harness.health.console_urls() == {
        "CA": "http://localhost:8081",
        "CB": "http://localhost:8090",
    }


def test_console_urls_without_nodes(empty_harness):
    assert empty_harness.health.console_urls() == {"CA": None, "CB": None}
