"""Seed data and the ``movr`` sample workload for each side."""

import logging
from typing import List

from pcr.roles import DEFAULT, VA, VB, Role
from pcr.state_store import LOAD_MOVR_OK, LOAD_MOVR_VB_OK

logger = logging.getLogger(__name__)

SEED_SQL = {
    VA: (
        "CREATE DATABASE IF NOT EXISTS va_db; "
        "CREATE TABLE IF NOT EXISTS va_db.accounts ("
        "id UUID PRIMARY KEY DEFAULT gen_random_uuid(), "
        "name STRING NOT NULL, "
        "created_at TIMESTAMPTZ NOT NULL DEFAULT now()); "
        "UPSERT INTO va_db.accounts (id,name) "
        "VALUES ('00000000-0000-0000-0000-000000000001','seed-va-1');"
    ),
    VB: (
        "CREATE DATABASE IF NOT EXISTS vb_db; "
        "CREATE TABLE IF NOT EXISTS vb_db.customers ("
        "id UUID PRIMARY KEY DEFAULT gen_random_uuid(), "
        "email STRING UNIQUE NOT NULL, "
        "created_at TIMESTAMPTZ NOT NULL DEFAULT now()); "
        "UPSERT INTO vb_db.customers (id,email) "
        "VALUES ('00000000-0000-0000-0000-000000000002','seed@vb.example');"
    ),
}


class WorkloadRunner:
    def __init__(self, runtime, resolver, channel, store, duration: str = "10s"):
        self.runtime = runtime
        self.resolver = resolver
        self.channel = channel
        self.store = store
        self.duration = duration

    def _target(self, role: Role):
        member = self.resolver.node_for(role, 1)
        port = self.resolver.client_port_of(role, member) or role.spec.sql_port(1)
        # default-target routing picks the tenant
        return member.name, f"postgresql://root@{member.name}:{port}?sslmode=disable"

    def _workload(self, node: str, args: List[str]) -> bool:
        result = self.runtime.exec(node, ["./cockroach", "workload"] + args)
        if result.exit_code != 0:
            logger.warning("workload %s on %s exited %d: %s",
                           args[0], node, result.exit_code, result.output.strip())
            return False
        return True

    def seed(self, role: Role, tenant: str):
        self.channel.try_execute(role, SEED_SQL[tenant], tenant=DEFAULT)

    def load_va(self, init: bool = True) -> bool:
        """Seed ``va`` and run ``movr`` against CA; records LoadMovrOk on success."""
        logger.info("=== Load MOVR on CA (tenant %s) ===", VA)
        self.seed(Role.CA, VA)
        node, url = self._target(Role.CA)
        ok = True
        if init:
            ok = self._workload(node, ["init", "movr", url])
        ok = self._workload(node, ["run", "movr", f"--duration={self.duration}", url]) and ok
        if ok and init:
            self.store.set(LOAD_MOVR_OK, 1)
        return ok

    def load_vb(self) -> bool:
        """Seed ``vb`` and run ``movr`` against CB; records LoadMovrVbOk on success."""
        logger.info("=== Load MOVR on CB (tenant %s) ===", VB)
        self.seed(Role.CB, VB)
        node, url = self._target(Role.CB)
        ok = self._workload(node, ["run", "movr", f"--duration={self.duration}", url])
        if ok:
            self.store.set(LOAD_MOVR_VB_OK, 1)
        return ok
