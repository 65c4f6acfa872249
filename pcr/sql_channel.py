"""
Command Channel

Runs one SQL statement against a (role, tenant, user, node ordinal) target
using the ``cockroach sql`` client inside the node container.
"""

import logging
from typing import List

from pcr.exceptions import ExecutionError
from pcr.metrics import METRICS
from pcr.roles import DEFAULT, SYSTEM, canon_role, map_tenant_alias

logger = logging.getLogger(__name__)


def build_url(user: str, host: str, port: int, tenant: str) -> str:
    """Connection URL; the unrouted ``default`` tenant gets no query parameters."""
    if tenant == DEFAULT:
        return f"postgresql://{user}@{host}:{port}"
    return f"postgresql://{user}@{host}:{port}?options=-ccluster={tenant}&sslmode=disable"


class CommandChannel:
    def __init__(self, runtime, resolver, dry_run: bool = False):
        self.runtime = runtime
        self.resolver = resolver
        self.dry_run = dry_run

    def target(self, role, tenant: str = SYSTEM, user: str = "root", ordinal: int = 1):
        """Resolve ``(node name, url)`` for a target; raises ResolutionError."""
        role = canon_role(role)
        tenant = map_tenant_alias(tenant)
        member = self.resolver.node_for(role, ordinal)
        port = self.resolver.client_port_of(role, member) or role.spec.sql_port(ordinal)
        return member.name, build_url(user, member.name, port, tenant)

    def system_url(self, role) -> str:
        """System-tenant URL of the role's first node (used as a replication source)."""
        return self.target(role, SYSTEM)[1]

    def command(self, url: str, sql: str, fmt: str = "tsv") -> List[str]:
        return ["./cockroach", "sql", f"--format={fmt}", "--insecure", "--url", url, "--execute", sql]

    def execute(
        self,
        role,
        sql: str,
        tenant: str = SYSTEM,
        user: str = "root",
        ordinal: int = 1,
        fmt: str = "tsv",
    ) -> str:
        role = canon_role(role)
        node, url = self.target(role, tenant, user, ordinal)
        logger.info("Executing on %s | node=%s | tenant=%s | user=%s",
                    role.value, node, map_tenant_alias(tenant), user)
        logger.debug("URL: %s SQL: %s", url, sql)
        if self.dry_run:
            logger.info("[DRY-RUN] %s", " ".join(self.command(url, sql, fmt)))
            return ""
        try:
            result = self.runtime.exec(node, self.command(url, sql, fmt))
        except ExecutionError:
            METRICS["sql_errors"].labels(role=role.value).inc()
            raise
        if result.exit_code != 0:
            METRICS["sql_errors"].labels(role=role.value).inc()
            raise ExecutionError(
                f"SQL failed on {role.value}/{node} (tenant={map_tenant_alias(tenant)}): {sql}",
                output=result.output,
                exit_code=result.exit_code,
            )
        return result.output

    def try_execute(self, role, sql: str, **kwargs) -> str:
        """Soft variant for read-only and best-effort steps: logs and returns the error output."""
        try:
            return self.execute(role, sql, **kwargs)
        except ExecutionError as e:
            logger.warning("%s", e)
            return e.output
