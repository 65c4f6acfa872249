#!/usr/bin/env python3
"""
Cluster Provisioner

Creates and tears down the two playground clusters on the shared network.

Each role gets ``n`` consecutive ``roach<N>`` containers. Node numbers keep
counting up across both roles, so CA is normally roach1..roach3 and CB
roach4..roach6. Every node publishes its own SQL and HTTP port, listens on
the role's fixed inter-node port and keeps its data on ``roachvol<N>``.
"""

import logging
import re
from typing import List, Optional

from pcr.exceptions import ExecutionError
from pcr.registry import NodeRecord
from pcr.replication import statements as stmt
from pcr.replication.poller import PollOutcome, TimeoutPolicy, enforce
from pcr.roles import READONLY_SUFFIX, SYSTEM, VA, VB, Role, canon_role
from pcr.runtime.docker_runtime import DATA_DIR

logger = logging.getLogger(__name__)

INIT_DONE_RE = re.compile(r"initialized", re.IGNORECASE)


def node_command(record: NodeRecord, join: List[str]) -> List[str]:
    """Arguments for ``cockroach start`` on one node."""
    return [
        "start",
        f"--advertise-addr={record.name}:{record.inter_port}",
        f"--http-addr={record.name}:{record.http_port}",
        f"--listen-addr={record.name}:{record.inter_port}",
        f"--sql-addr={record.name}:{record.sql_port}",
        "--insecure",
        f"--join={','.join(join)}",
    ]


def join_list(records: List[NodeRecord]) -> List[str]:
    return [f"{r.name}:{r.inter_port}" for r in records]


class ClusterProvisioner:
    def __init__(self, runtime, registry, channel, poller, settings):
        self.runtime = runtime
        self.registry = registry
        self.channel = channel
        self.poller = poller
        self.settings = settings

    def _next_number(self) -> int:
        numbers = [self.registry.highest_number()]
        numbers.extend(i.number for i in self.runtime.list_instances())
        return max(numbers) + 1

    def plan(self, role, n: int, image: str) -> List[NodeRecord]:
        """Node records for a new ``n``-node cluster of ``role``."""
        role = canon_role(role)
        if n < 1:
            raise ValueError("a cluster needs at least one node")
        spec = role.spec
        start = self._next_number()
        return [
            NodeRecord(
                name=f"roach{start + i}",
                number=start + i,
                role=role,
                sql_port=spec.sql_port(i + 1),
                http_port=spec.http_port(i + 1),
                inter_port=spec.inter_port,
                volume=f"roachvol{start + i}",
                image=image,
                network=self.settings.network,
            )
            for i in range(n)
        ]

    def launch_node(self, record: NodeRecord, join: List[str], image: Optional[str] = None):
        """Run one node container on its volume; the volume outlives the container."""
        self.runtime.run(
            record.name,
            image or record.image,
            node_command(record, join),
            network=record.network,
            ports={record.sql_port: record.sql_port, record.http_port: record.http_port},
            volumes={record.volume: DATA_DIR},
        )

    def create_cluster(self, role, n: int = 3, version: Optional[str] = None) -> List[NodeRecord]:
        role = canon_role(role)
        image = self.settings.image_for(version)
        logger.info("=== Create cluster %s (%d nodes, %s) ===", role.value, n, image)
        self.runtime.pull(image)

        records = self.plan(role, n, image)
        join = join_list(records)
        self.runtime.ensure_network(self.settings.network)
        for record in records:
            self.runtime.ensure_volume(record.volume)
        for record in records:
            self.launch_node(record, join)
            self.registry.add(record)

        self.wait_for_init(records[0])
        self.apply_system_settings(role)
        for record in records:
            logger.info(" - %s | Vol: %s | Console: http://%s:%d | SQL: localhost:%d",
                        record.name, record.volume, self.settings.console_host,
                        record.http_port, record.sql_port)
        return records

    def wait_for_init(self, first: NodeRecord) -> PollOutcome:
        """Run ``cockroach init`` against the first node until it reports initialized."""
        command = ["./cockroach", f"--host={first.name}:{first.inter_port}", "init", "--insecure"]
        if self.settings.dry_run:
            logger.info("[DRY-RUN] %s", " ".join(command))
            return PollOutcome(True, 0, "initialized")

        def probe():
            try:
                return self.runtime.exec(first.name, command).output
            except ExecutionError as e:
                return str(e)

        outcome = self.poller.poll(
            probe,
            lambda text: "initialized" if INIT_DONE_RE.search(text or "") else "pending",
            lambda token: token == "initialized",
            max_iters=self.settings.init_max_iters,
            interval=self.settings.init_interval,
            label=f"{first.role.value} init",
        )
        return enforce(outcome, TimeoutPolicy.LENIENT, f"{first.name} to initialize")

    def apply_system_settings(self, role: Role):
        """System-tenant settings; each one is best-effort."""
        statements = [
            stmt.render(stmt.SET_SETTING, name="cluster.organization",
                        value=f"'{self.settings.organization}'"),
        ]
        if self.settings.license_key:
            statements.append(
                stmt.render(stmt.SET_SETTING, name="enterprise.license",
                            value=f"'{self.settings.license_key}'")
            )
        if role is Role.CA:
            statements += [
                stmt.render(stmt.CREATE_TENANT, tenant=VA),
                stmt.render(stmt.START_SERVICE_SHARED, tenant=VA),
                stmt.render(stmt.SET_DEFAULT_TARGET, tenant=VA),
            ]
        else:
            statements.append(stmt.render(stmt.SET_DEFAULT_TARGET, tenant=VB + READONLY_SUFFIX))
        statements.append(stmt.render(stmt.SET_SETTING, name="kv.rangefeed.enabled", value="true"))
        for sql in statements:
            self.channel.try_execute(role, sql, tenant=SYSTEM)

    def destroy_role(self, role):
        """Remove a role's containers, volumes and registry rows."""
        role = canon_role(role)
        names = {r.name: r.volume for r in self.registry.nodes_for(role)}
        if not names:
            for inst in self.runtime.list_instances(self.settings.network):
                if any(role.spec.owns_port(p) for p in inst.published_ports):
                    names[inst.name] = f"roachvol{inst.number}"
        logger.info("=== Destroy cluster %s: %s ===", role.value, sorted(names) or "nothing to remove")
        for name, volume in names.items():
            self.runtime.remove(name)
            self.runtime.remove_volume(volume)
            self.registry.remove(name)

    def destroy_all(self):
        """Remove every node container, the shared network and all node volumes."""
        logger.info("=== Cleanup: removing all playground nodes ===")
        names = {i.name for i in self.runtime.list_instances()}
        for role in Role:
            names.update(r.name for r in self.registry.nodes_for(role))
        for name in sorted(names):
            self.runtime.remove(name)
            self.registry.remove(name)
        self.runtime.remove_network(self.settings.network)
        for volume in self.runtime.node_volumes():
            self.runtime.remove_volume(volume)

