"""
Replication / Failover State Machine

Drives one replication direction between the two clusters through

    IDLE -> INITIATING -> REPLICATING -> READY -> PROMOTED

and back again with a restart. The same code handles A -> B and B -> A;
a Direction value carries the roles, tenants and breadcrumb keys that
differ between the two.

Mutating statements raise on failure. Probes and routing changes are
best-effort: they are logged and the transition carries on.
"""

import logging
from contextlib import contextmanager
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from pcr.exceptions import FailoverPreconditionError
from pcr.metrics import METRICS
from pcr.replication import statements as stmt
from pcr.replication.poller import (
    CUTOVER_TOKENS,
    DATA_STATE_TOKENS,
    LINK_STATUS_TOKENS,
    RESTART_DATA_STATE_TOKENS,
    RESTART_STATUS_TOKENS,
    PollOutcome,
    TimeoutPolicy,
    enforce,
    field_token,
    search_token,
)
from pcr.roles import READONLY_SUFFIX, VA, VB, Role
from pcr.state_store import (
    FAILOVER_ATOB_DONE,
    FAILOVER_BTOA_DONE,
    REPLICATION_ATOB_ACTIVE,
    REPLICATION_BTOA_ACTIVE,
)

logger = logging.getLogger(__name__)


class ReplicationState(Enum):
    IDLE = "idle"
    INITIATING = "initiating"
    REPLICATING = "replicating"
    READY = "ready"
    PROMOTED = "promoted"


@dataclass(frozen=True)
class Direction:
    name: str
    source_role: Role
    dest_role: Role
    source_tenant: str
    dest_tenant: str
    active_key: str
    done_key: str
    opposite_active_key: str
    opposite_done_key: str

    @property
    def readonly_name(self) -> str:
        return self.dest_tenant + READONLY_SUFFIX

    @property
    def label(self) -> str:
        return f"{self.source_role.value}:{self.source_tenant} -> {self.dest_role.value}:{self.dest_tenant}"


A_TO_B = Direction(
    name="a-to-b",
    source_role=Role.CA,
    dest_role=Role.CB,
    source_tenant=VA,
    dest_tenant=VB,
    active_key=REPLICATION_ATOB_ACTIVE,
    done_key=FAILOVER_ATOB_DONE,
    opposite_active_key=REPLICATION_BTOA_ACTIVE,
    opposite_done_key=FAILOVER_BTOA_DONE,
)

B_TO_A = Direction(
    name="b-to-a",
    source_role=Role.CB,
    dest_role=Role.CA,
    source_tenant=VB,
    dest_tenant=VA,
    active_key=REPLICATION_BTOA_ACTIVE,
    done_key=FAILOVER_BTOA_DONE,
    opposite_active_key=REPLICATION_ATOB_ACTIVE,
    opposite_done_key=FAILOVER_ATOB_DONE,
)

DIRECTIONS = (A_TO_B, B_TO_A)

_DIRECTION_ALIASES = {
    "a-to-b": A_TO_B, "atob": A_TO_B, "a2b": A_TO_B, "ab": A_TO_B, "a>b": A_TO_B,
    "b-to-a": B_TO_A, "btoa": B_TO_A, "b2a": B_TO_A, "ba": B_TO_A, "b>a": B_TO_A,
}


def direction_for(name) -> Direction:
    if isinstance(name, Direction):
        return name
    key = str(name).strip().lower().replace("_", "-").replace(" ", "")
    direction = _DIRECTION_ALIASES.get(key)
    if direction is None:
        raise ValueError(f"Unknown replication direction '{name}'. Use a-to-b or b-to-a.")
    return direction


class ReplicationStateMachine:
    def __init__(self, channel, store, poller, settings):
        self.channel = channel
        self.store = store
        self.poller = poller
        self.settings = settings

    @contextmanager
    def _transition(self, direction: Direction, transition: str):
        logger.info("=== %s %s ===", transition, direction.label)
        try:
            yield
        except Exception:
            METRICS["transitions"].labels(
                direction=direction.name, transition=transition, outcome="failed"
            ).inc()
            raise
        METRICS["transitions"].labels(
            direction=direction.name, transition=transition, outcome="ok"
        ).inc()

    # Probes

    def _link_status_text(self, direction: Direction) -> str:
        return self.channel.try_execute(
            direction.dest_role, stmt.render(stmt.REPLICATION_STATUS, tenant=direction.dest_tenant)
        )

    def _data_state_text(self, direction: Direction) -> str:
        return self.channel.try_execute(
            direction.dest_role, stmt.render(stmt.DATA_STATE, tenant=direction.readonly_name)
        )

    def _tenant_exists(self, role: Role, tenant: str) -> bool:
        output = self.channel.execute(role, stmt.TENANT_NAMES)
        names = {line.strip() for line in output.splitlines()}
        names.discard("name")
        return tenant in names

    def _route(self, role: Role, tenant: str):
        """Point a cluster's default target at ``tenant``; failures are logged only."""
        self.channel.try_execute(role, stmt.render(stmt.SET_DEFAULT_TARGET, tenant=tenant))

    def _wait_replicating(self, direction: Direction, vocabulary,
                          data_vocabulary=DATA_STATE_TOKENS) -> PollOutcome:
        """Poll until the link reports replicating and the readonly mirror is ready."""
        if self.settings.dry_run:
            logger.info("[DRY-RUN] skipping replication wait for %s", direction.label)
            return PollOutcome(True, 0, ("replicating", "ready"))

        def probe():
            return self._link_status_text(direction), self._data_state_text(direction)

        def extract(texts):
            link_text, data_text = texts
            return search_token(link_text, vocabulary), search_token(data_text, data_vocabulary)

        return self.poller.poll(
            probe,
            extract,
            lambda tokens: tokens == ("replicating", "ready"),
            max_iters=self.settings.max_iters,
            interval=self.settings.poll_interval,
            label=f"{direction.name} replicating",
        )

    def _wait_cutover(self, direction: Direction) -> PollOutcome:
        if self.settings.dry_run:
            logger.info("[DRY-RUN] skipping cutover wait for %s", direction.label)
            return PollOutcome(True, 0, "ready")
        return self.poller.poll(
            lambda: self._link_status_text(direction),
            lambda text: field_token(text, CUTOVER_TOKENS),
            lambda token: token == "ready",
            max_iters=self.settings.ready_max_iters,
            interval=self.settings.ready_poll_interval,
            label=f"{direction.name} cutover",
        )

    # Transitions

    def start_replication(self, direction, policy: Optional[TimeoutPolicy] = None) -> PollOutcome:
        """Wire the destination as a replica of the source and wait for it to catch up.

        A destination tenant that already exists (a promoted side coming
        back as a standby) is stopped and re-pointed; otherwise it is
        created from the replication stream. Both variants expose a
        ``<dest>-readonly`` mirror.
        """
        direction = direction_for(direction)
        policy = policy or TimeoutPolicy.STRICT
        with self._transition(direction, "start"):
            source_url = self.channel.system_url(direction.source_role)
            params = dict(
                dest=direction.dest_tenant,
                source=direction.source_tenant,
                source_url=source_url,
                read_access=True,
            )
            if self._tenant_exists(direction.dest_role, direction.dest_tenant):
                logger.info("%s already exists on %s; re-pointing it at %s",
                            direction.dest_tenant, direction.dest_role.value, direction.source_tenant)
                self.channel.try_execute(
                    direction.dest_role, stmt.render(stmt.STOP_SERVICE, tenant=direction.dest_tenant)
                )
                self.channel.execute(direction.dest_role, stmt.render(stmt.START_REPLICATION, **params))
            else:
                self.channel.execute(direction.dest_role, stmt.render(stmt.CREATE_FROM_REPLICATION, **params))

            self._route(direction.source_role, direction.source_tenant)
            self._route(direction.dest_role, direction.readonly_name)

            outcome = self._wait_replicating(direction, LINK_STATUS_TOKENS)
            enforce(outcome, policy, f"{direction.label} replication")

            self.store.set_many({
                direction.active_key: 1,
                direction.opposite_active_key: 0,
                direction.done_key: 0,
                direction.opposite_done_key: 0,
            })
            logger.info("Replication %s is running", direction.label)
            return outcome

    def failover(self, direction, policy: Optional[TimeoutPolicy] = None, force: bool = False) -> PollOutcome:
        """Cut over to the destination and promote it to a read-write tenant.

        Refuses unless the destination reports the link as replicating and
        its readonly mirror as ready; ``force`` skips that check.
        """
        direction = direction_for(direction)
        policy = policy or TimeoutPolicy.LENIENT
        with self._transition(direction, "failover"):
            if not self.store.is_true(direction.active_key):
                logger.warning("Breadcrumbs do not record %s as active", direction.label)

            status = self.channel.execute(
                direction.dest_role, stmt.render(stmt.REPLICATION_STATUS, tenant=direction.dest_tenant)
            )
            link = search_token(status, LINK_STATUS_TOKENS)
            if not force and not self.settings.dry_run:
                if link != "replicating":
                    raise FailoverPreconditionError(
                        f"Refusing failover {direction.label}: link reports '{link}', not replicating",
                        {"direction": direction.name, "link": link},
                    )
                data = search_token(self._data_state_text(direction), DATA_STATE_TOKENS)
                if data != "ready":
                    raise FailoverPreconditionError(
                        f"Refusing failover {direction.label}: {direction.readonly_name} "
                        f"reports '{data}', not ready",
                        {"direction": direction.name, "link": link, "data_state": data},
                    )

            self.channel.execute(
                direction.dest_role, stmt.render(stmt.COMPLETE_REPLICATION, tenant=direction.dest_tenant)
            )
            outcome = self._wait_cutover(direction)
            enforce(outcome, policy, f"{direction.dest_tenant} to become ready")

            self.channel.execute(
                direction.dest_role, stmt.render(stmt.START_SERVICE_SHARED, tenant=direction.dest_tenant)
            )
            self.channel.execute(
                direction.dest_role, stmt.render(stmt.SET_DEFAULT_TARGET, tenant=direction.dest_tenant)
            )
            self._route(direction.source_role, direction.source_tenant)

            self.store.set_many({direction.done_key: 1, direction.active_key: 0})
            logger.info("Failover %s complete; %s is serving on %s",
                        direction.label, direction.dest_tenant, direction.dest_role.value)
            return outcome

    def restart_replication(self, direction, policy: Optional[TimeoutPolicy] = None) -> PollOutcome:
        """Re-point an existing destination tenant at the source after a failover."""
        direction = direction_for(direction)
        policy = policy or TimeoutPolicy.STRICT
        with self._transition(direction, "restart"):
            source_url = self.channel.system_url(direction.source_role)
            self.channel.try_execute(
                direction.dest_role, stmt.render(stmt.STOP_SERVICE, tenant=direction.dest_tenant)
            )
            self.channel.execute(
                direction.dest_role,
                stmt.render(
                    stmt.START_REPLICATION,
                    dest=direction.dest_tenant,
                    source=direction.source_tenant,
                    source_url=source_url,
                    read_access=False,
                ),
            )
            self._route(direction.source_role, direction.source_tenant)
            self._route(direction.dest_role, direction.readonly_name)

            outcome = self._wait_replicating(
                direction, RESTART_STATUS_TOKENS, RESTART_DATA_STATE_TOKENS
            )
            enforce(outcome, policy, f"{direction.label} replication restart")

            self.store.set_many({direction.active_key: 1, direction.opposite_active_key: 0})
            return outcome

    def describe(self, direction) -> ReplicationState:
        """Current state of ``direction`` from live link status plus breadcrumbs."""
        direction = direction_for(direction)
        link = search_token(self._link_status_text(direction), LINK_STATUS_TOKENS)
        if link == "replicating":
            data = search_token(self._data_state_text(direction), DATA_STATE_TOKENS)
            return ReplicationState.READY if data == "ready" else ReplicationState.REPLICATING
        if link in ("initializing", "scan"):
            return ReplicationState.INITIATING
        if self.store.is_true(direction.done_key):
            return ReplicationState.PROMOTED
        return ReplicationState.IDLE
