#!/usr/bin/env python3
"""
Rolling Upgrade

Replaces the image of every node in a role, one node at a time:
1. Stop and remove the container (its data volume stays)
2. Run it again with the new image, same name, ports, volume and join list
3. Wait until it answers ``SELECT 1`` before touching the next node

A cross-major upgrade pins ``cluster.preserve_downgrade_option`` first so
the cluster can still go back. ``finalize`` releases the pin and is
one-way; ``rollback`` re-runs the same procedure with the previous image
and is refused once the upgrade has been finalized.
"""

import logging
import re
from typing import Optional

from pcr.cluster import join_list
from pcr.exceptions import ExecutionError, UpgradeError
from pcr.metrics import METRICS
from pcr.replication import statements as stmt
from pcr.roles import SYSTEM, canon_role

logger = logging.getLogger(__name__)

PRESERVE_DOWNGRADE = "cluster.preserve_downgrade_option"
_VERSION_RE = re.compile(r"v?(\d+)\.(\d+)")


def major_version(image: str) -> Optional[str]:
    """``repo:v24.1.3`` -> ``24.1``; ``None`` for tags such as ``latest``."""
    tag = image.rpartition(":")[2]
    match = _VERSION_RE.match(tag)
    return f"{match.group(1)}.{match.group(2)}" if match else None


class UpgradeDriver:
    def __init__(self, runtime, registry, channel, provisioner, poller, settings):
        self.runtime = runtime
        self.registry = registry
        self.channel = channel
        self.provisioner = provisioner
        self.poller = poller
        self.settings = settings

    def _records(self, role):
        records = self.registry.nodes_for(role)
        if not records:
            raise UpgradeError(
                f"No registered {role.value} nodes; only provisioned clusters can be upgraded",
                {"role": role.value},
            )
        return records

    def running_version(self, role) -> str:
        output = self.channel.execute(role, stmt.SHOW_VERSION, tenant=SYSTEM)
        lines = [l.strip() for l in output.splitlines() if l.strip()]
        return lines[-1] if lines else ""

    def _wait_ready(self, role, ordinal: int, name: str):
        if self.settings.dry_run:
            return

        def probe():
            try:
                return self.channel.execute(role, "SELECT 1;", tenant=SYSTEM, ordinal=ordinal)
            except ExecutionError:
                return None

        outcome = self.poller.poll(
            probe,
            lambda output: "ready" if output is not None else "unreachable",
            lambda token: token == "ready",
            max_iters=self.settings.init_max_iters,
            interval=self.settings.init_interval,
            label=f"{role.value} node restart",
        )
        if outcome.timed_out:
            raise UpgradeError(
                f"{name} did not answer SQL after restart; rollout stopped",
                {"node": name, "iterations": outcome.iterations},
            )

    def _roll(self, role, image: str):
        records = self._records(role)
        join = join_list(records)
        for ordinal, record in enumerate(records, start=1):
            logger.info("Replacing %s: %s -> %s", record.name, record.image, image)
            self.runtime.stop(record.name)
            self.runtime.remove(record.name)
            self.provisioner.launch_node(record, join, image=image)
            self.registry.set_image(record.name, image)
            METRICS["node_replacements"].labels(role=role.value).inc()
            self._wait_ready(role, ordinal, record.name)
            logger.info("%s is back on %s", record.name, image)

    def upgrade(self, role, version: str) -> Optional[int]:
        """Roll ``role`` onto ``version``; returns the upgrade record id (None if nothing to do)."""
        role = canon_role(role)
        records = self._records(role)
        from_image = records[0].image
        to_image = self.settings.image_for(version)
        if from_image == to_image:
            logger.info("%s already runs %s", role.value, to_image)
            return None

        logger.info("=== Rolling upgrade %s: %s -> %s ===", role.value, from_image, to_image)
        if major_version(from_image) != major_version(to_image):
            current = self.running_version(role)
            if current:
                self.channel.execute(
                    role,
                    stmt.render(stmt.SET_SETTING, name=PRESERVE_DOWNGRADE, value=f"'{current}'"),
                )
        self.runtime.pull(to_image)

        upgrade_id = self.registry.start_upgrade(role, from_image, to_image)
        try:
            self._roll(role, to_image)
        except Exception:
            self.registry.set_upgrade_status(upgrade_id, "failed")
            raise
        self.registry.set_upgrade_status(upgrade_id, "upgraded")
        return upgrade_id

    def finalize(self, role):
        role = canon_role(role)
        latest = self.registry.latest_upgrade(role)
        if latest is None or latest.status not in ("upgraded", "finalized"):
            raise UpgradeError(f"No completed upgrade to finalize on {role.value}", {"role": role.value})
        if latest.finalized:
            logger.info("Upgrade %d on %s is already finalized", latest.id, role.value)
            return latest.id
        self.channel.execute(role, stmt.render(stmt.RESET_SETTING, name=PRESERVE_DOWNGRADE))
        self.registry.set_upgrade_status(latest.id, "finalized", finalized=True)
        logger.info("Upgrade %d on %s finalized; rollback is no longer possible", latest.id, role.value)
        return latest.id

    def rollback(self, role):
        role = canon_role(role)
        latest = self.registry.latest_upgrade(role)
        if latest is None or latest.status == "rolled_back":
            raise UpgradeError(f"No upgrade to roll back on {role.value}", {"role": role.value})
        if latest.finalized:
            raise UpgradeError(
                f"Upgrade {latest.id} on {role.value} was finalized and cannot be rolled back",
                {"role": role.value, "upgrade_id": latest.id},
            )
        logger.info("=== Rollback %s: %s -> %s ===", role.value, latest.to_image, latest.from_image)
        self._roll(role, latest.from_image)
        self.channel.try_execute(role, stmt.render(stmt.RESET_SETTING, name=PRESERVE_DOWNGRADE))
        self.registry.set_upgrade_status(latest.id, "rolled_back")
        return latest.id
