"""
Health and status reporting.

Everything here is read-only: it probes both clusters, compares what they
report with the breadcrumbs, and returns plain dataclasses for the CLI and
the status API to render. Disagreements are reported as StateInconsistency
warnings and never corrected.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from pcr.exceptions import ExecutionError, StateInconsistency
from pcr.replication import statements as stmt
from pcr.replication.poller import LINK_STATUS_TOKENS, UNKNOWN, search_token
from pcr.replication.state_machine import A_TO_B, B_TO_A, DIRECTIONS
from pcr.roles import DEFAULT, READONLY_SUFFIX, VA, VB, Role

logger = logging.getLogger(__name__)

DEFAULT_TABLE = "movr.users"
_TABLE_RE = re.compile(r"^[A-Za-z0-9_.]+$")


@dataclass
class MemberStatus:
    name: str
    state: str
    volume: str
    sql_endpoint: Optional[str]
    http_endpoint: Optional[str]


@dataclass
class RoleStatus:
    role: str
    members: List[MemberStatus] = field(default_factory=list)
    virtual_clusters: str = ""
    default_target: str = ""


@dataclass
class RowCount:
    role: str
    tenant: str
    count: Optional[int]
    output: str = ""


@dataclass
class HealthReport:
    breadcrumbs: Dict[str, str]
    links: Dict[str, str]
    warnings: List[StateInconsistency]
    row_counts: List[RowCount]

    @property
    def healthy(self) -> bool:
        return not self.warnings


def _parse_count(output: str) -> Optional[int]:
    for line in reversed(output.splitlines()):
        line = line.strip()
        if line.isdigit():
            return int(line)
    return None


class HealthChecker:
    def __init__(self, resolver, channel, store, poller, settings):
        self.resolver = resolver
        self.channel = channel
        self.store = store
        self.poller = poller
        self.settings = settings

    def _has_running(self, role: Role) -> bool:
        return any(m.running for m in self.resolver.members_of(role))

    def status(self) -> Dict[str, RoleStatus]:
        report = {}
        for role in Role:
            rs = RoleStatus(role=role.value)
            for m in self.resolver.members_of(role):
                rs.members.append(
                    MemberStatus(
                        name=m.name,
                        state=m.state,
                        volume=m.volume,
                        sql_endpoint=f"localhost:{m.sql_port}" if m.sql_port else None,
                        http_endpoint=f"http://{self.settings.console_host}:{m.http_port}" if m.http_port else None,
                    )
                )
            if any(m.state == "running" for m in rs.members):
                rs.virtual_clusters = self.channel.try_execute(role, stmt.SHOW_TENANTS)
                rs.default_target = self.channel.try_execute(role, stmt.SHOW_DEFAULT_TARGET)
            report[role.value] = rs
        return report

    def link_token(self, direction) -> str:
        """Link status of ``direction`` as reported by its destination."""
        if not self._has_running(direction.dest_role):
            return UNKNOWN
        output = self.channel.try_execute(
            direction.dest_role, stmt.render(stmt.REPLICATION_STATUS, tenant=direction.dest_tenant)
        )
        return search_token(output, LINK_STATUS_TOKENS)

    def count_rows(self, role: Role, tenant: str, fallback: Optional[str] = None,
                   table: str = DEFAULT_TABLE) -> RowCount:
        """Row count on ``tenant``, retried on ``fallback`` when the first attempt fails."""
        if not _TABLE_RE.match(table):
            raise ValueError(f"Invalid table name {table!r}")
        sql = f"SELECT count(*) FROM {table};"
        for candidate in [tenant] + ([fallback] if fallback else []):
            try:
                output = self.channel.execute(role, sql, tenant=candidate)
                return RowCount(role.value, candidate, _parse_count(output), output)
            except ExecutionError as e:
                logger.warning("%s count on %s/%s failed: %s", table, role.value, candidate, e.message)
                last = RowCount(role.value, candidate, None, e.output)
        return last

    def row_counts(self, table: str = DEFAULT_TABLE) -> List[RowCount]:
        """Counts on the tenant each side is expected to serve, with its fallback."""
        if self.store.is_true(A_TO_B.active_key):
            plan = [(Role.CA, VA, None), (Role.CB, VB + READONLY_SUFFIX, VB)]
        elif self.store.is_true(B_TO_A.active_key):
            plan = [(Role.CA, VA + READONLY_SUFFIX, VA), (Role.CB, VB, None)]
        else:
            plan = [(Role.CA, VA, VA + READONLY_SUFFIX), (Role.CB, VB, VB + READONLY_SUFFIX)]
        return [self.count_rows(role, tenant, fallback, table) for role, tenant, fallback in plan]

    def watch_row_counts(self, table: str = DEFAULT_TABLE, checks: int = 12,
                         interval: float = 5) -> List[List[RowCount]]:
        snapshots = []
        for i in range(1, checks + 1):
            counts = self.row_counts(table)
            logger.info("[check %d/%d] %s", i, checks,
                        ", ".join(f"{c.role}/{c.tenant}={c.count}" for c in counts))
            snapshots.append(counts)
            if i < checks:
                self.poller.wait(interval)
        return snapshots

    def check_replication_health(self, table: str = DEFAULT_TABLE) -> HealthReport:
        crumbs = self.store.items()
        links = {d.name: self.link_token(d) for d in DIRECTIONS}
        warnings = []

        if self.store.is_true(A_TO_B.active_key) and self.store.is_true(B_TO_A.active_key):
            warnings.append(StateInconsistency(
                key=f"{A_TO_B.active_key},{B_TO_A.active_key}",
                recorded="1,1",
                observed=f"{links[A_TO_B.name]},{links[B_TO_A.name]}",
                message="Both replication directions are recorded as active",
            ))
        for d in DIRECTIONS:
            active = self.store.is_true(d.active_key)
            if active and links[d.name] != "replicating":
                warnings.append(StateInconsistency(
                    key=d.active_key,
                    recorded="1",
                    observed=links[d.name],
                    message=f"{d.label} is recorded as active but the link reports '{links[d.name]}'",
                ))
            if self.store.is_true(d.done_key) and not active and links[d.name] == "replicating":
                warnings.append(StateInconsistency(
                    key=d.done_key,
                    recorded="1",
                    observed=links[d.name],
                    message=f"{d.label} is recorded as failed over but is still replicating",
                ))
        for w in warnings:
            logger.warning("State inconsistency: %s (recorded=%s observed=%s)", w.message, w.recorded, w.observed)

        return HealthReport(crumbs, links, warnings, self.row_counts(table))

    def smoke_default(self) -> Dict[str, bool]:
        """``SELECT 1`` through each side's default-target routing."""
        results = {}
        for role in Role:
            try:
                self.channel.execute(role, "SELECT 1;", tenant=DEFAULT)
                results[role.value] = True
            except ExecutionError as e:
                logger.warning("Smoke test on %s/default failed: %s", role.value, e.message)
                results[role.value] = False
        return results

    def console_urls(self) -> Dict[str, Optional[str]]:
        urls = {}
        for role in Role:
            member = self.resolver.first_running(role)
            urls[role.value] = (
                f"http://{self.settings.console_host}:{member.http_port}" if member else None
            )
        return urls
