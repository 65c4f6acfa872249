"""
Run All

The full demonstration flow, end to end:

    cleanup -> create CA -> create CB -> load va -> A->B start -> A->B failover
    -> load vb -> B->A start -> settle -> B->A failover -> load va again
    -> status -> A->B restart -> status

The first failing step stops the run; its name is returned in the result.
"""

import logging
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Tuple

from docker.errors import DockerException

from pcr.diagnostic_logger import DiagnosticLogger
from pcr.exceptions import PcrError
from pcr.replication.state_machine import A_TO_B, B_TO_A
from pcr.roles import Role

logger = logging.getLogger(__name__)


@dataclass
class RunAllResult:
    completed: List[str] = field(default_factory=list)
    failed_step: Optional[str] = None
    error: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.failed_step is None


def _settle(harness):
    if harness.settings.dry_run:
        return
    logger.info("Letting B -> A replication settle for %ss", harness.settings.settle_seconds)
    harness.poller.wait(harness.settings.settle_seconds)


def plan_steps(harness, nodes: int = 3, version: Optional[str] = None) -> List[Tuple[str, Callable[[], object]]]:
    h = harness
    ver = version or h.settings.version or "latest"
    return [
        ("Cleanup BOTH clusters", h.provisioner.destroy_all),
        (f"Create CA cluster (n={nodes}, ver={ver})", lambda: h.provisioner.create_cluster(Role.CA, nodes, version)),
        (f"Create CB cluster (n={nodes}, ver={ver})", lambda: h.provisioner.create_cluster(Role.CB, nodes, version)),
        ("Load MOVR on CA/va", lambda: h.workload.load_va(init=True)),
        ("Start A -> B replication", lambda: h.machine.start_replication(A_TO_B)),
        ("A -> B failover", lambda: h.machine.failover(A_TO_B)),
        ("Load MOVR on CB/vb", h.workload.load_vb),
        ("Start B -> A replication", lambda: h.machine.start_replication(B_TO_A)),
        ("Settle", lambda: _settle(h)),
        ("B -> A failover", lambda: h.machine.failover(B_TO_A)),
        ("Load MOVR on CA/va (again)", lambda: h.workload.load_va(init=False)),
        ("Check replication health", h.health.check_replication_health),
        ("A -> B restart replication", lambda: h.machine.restart_replication(A_TO_B)),
        ("Check replication health (after restart)", h.health.check_replication_health),
    ]


def run_all(harness, nodes: int = 3, version: Optional[str] = None,
            diagnostics: Optional[DiagnosticLogger] = None) -> RunAllResult:
    diagnostics = diagnostics or DiagnosticLogger()
    result = RunAllResult()
    for name, step in plan_steps(harness, nodes, version):
        logger.info(">>> %s", name)
        try:
            step()
        except (PcrError, DockerException) as e:
            result.failed_step = name
            result.error = str(e)
            diagnostics.log_error(f"Run All failed at step: {name}", {"error": str(e)})
            try:
                diagnostics.log_docker_status(harness.runtime, harness.settings.network)
            except DockerException as docker_error:
                logger.warning("Could not list node containers: %s", docker_error)
            return result
        result.completed.append(name)
    diagnostics.log_success("Run All completed successfully.")
    return result
