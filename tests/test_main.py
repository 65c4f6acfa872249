import json
import signal
from unittest.mock import patch

import pytest

from pcr import main as cli
from pcr.state_store import REPLICATION_ATOB_ACTIVE

from conftest import data_state, link_status


@pytest.fixture
def run(harness, monkeypatch, tmp_path):
    monkeypatch.setenv("PCR_STATE_FILE", str(tmp_path / "pcr_state"))
    monkeypatch.delenv("PCR_LOG_FILE", raising=False)
    previous = signal.getsignal(signal.SIGINT)
    with patch.object(cli.Harness, "from_settings", return_value=harness), \
            patch.object(cli, "configure_logging"):
        yield cli.main
    signal.signal(signal.SIGINT, previous)


def test_parser_flags():
    args = cli.build_parser().parse_args(
        ["--dry-run", "--max-iters", "3", "failover", "b-to-a", "--force"]
    )
    assert args.dry_run is True
    assert args.max_iters == 3
    assert args.force is True
    assert args.timeout_policy == "lenient"


def test_settings_from_args(monkeypatch):
    monkeypatch.delenv("MAX_ITERS", raising=False)
    args = cli.build_parser().parse_args(["--interval-sec", "1.5", "status"])
    settings = cli.settings_from_args(args)
    assert settings.poll_interval == 1.5
    assert settings.max_iters == 60


def test_replicate(run, harness, script):
    script.on("WITH REPLICATION STATUS", link_status("replicating"))
    script.on("SELECT data_state", data_state("ready"))
    assert run(["replicate", "a-to-b"]) == 0
    assert harness.store.is_true(REPLICATION_ATOB_ACTIVE)


def test_failover_precondition_exit_code(run, script):
    script.on("WITH REPLICATION STATUS", link_status("paused"))
    assert run(["failover", "a-to-b"]) == 1


def test_bad_role_exit_code(run):
    assert run(["sql", "zz", "SELECT 1;"]) == 2


def test_smoke_default_output(run, capsys):
    assert run(["smoke-default"]) == 0
    assert json.loads(capsys.readouterr().out) == {"CA": True, "CB": True}


def test_console(run, capsys):
    assert run(["console"]) == 0
    out = capsys.readouterr().out
    assert "CA: http://localhost:8080" in out
    assert "CB: http://localhost:8090" in out


def test_upgrade_finalize_rollback(run, harness, script):
    script.on("SHOW CLUSTER SETTING version", "version\n23.2\n")
    assert run(["upgrade", "CB", "24.1.0"]) == 0
    assert run(["finalize", "CB"]) == 0
    assert run(["rollback", "CB"]) == 1
