"""Wires the playground components together from one Settings value."""

import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Optional

from pcr.api.models import make_session_factory
from pcr.cicd.upgrade import UpgradeDriver
from pcr.cluster import ClusterProvisioner
from pcr.config import Settings
from pcr.health import HealthChecker
from pcr.registry import NodeRegistry
from pcr.replication.poller import ConvergencePoller
from pcr.replication.state_machine import ReplicationStateMachine
from pcr.resolver import RoleResolver
from pcr.runtime.docker_runtime import ContainerRuntime
from pcr.sql_channel import CommandChannel
from pcr.state_store import BreadcrumbStore
from pcr.workload import WorkloadRunner

logger = logging.getLogger(__name__)


@dataclass
class Harness:
    settings: Settings
    runtime: ContainerRuntime
    registry: NodeRegistry
    resolver: RoleResolver
    channel: CommandChannel
    store: BreadcrumbStore
    poller: ConvergencePoller
    machine: ReplicationStateMachine
    provisioner: ClusterProvisioner
    workload: WorkloadRunner
    upgrades: UpgradeDriver
    health: HealthChecker

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        runtime=None,
        session_factory=None,
        sleep: Callable[[float], None] = time.sleep,
        cancel: Optional[threading.Event] = None,
    ) -> "Harness":
        runtime = runtime or ContainerRuntime(dry_run=settings.dry_run)
        registry = NodeRegistry(session_factory or make_session_factory(settings.registry_path))
        if settings.dry_run:
            logger.info("[DRY-RUN] registry changes are kept in memory only")
            registry = registry.snapshot()
        resolver = RoleResolver(runtime, registry, settings.network)
        channel = CommandChannel(runtime, resolver, dry_run=settings.dry_run)
        store = BreadcrumbStore(settings.state_file)
        poller = ConvergencePoller(sleep=sleep, cancel=cancel)
        provisioner = ClusterProvisioner(runtime, registry, channel, poller, settings)
        return cls(
            settings=settings,
            runtime=runtime,
            registry=registry,
            resolver=resolver,
            channel=channel,
            store=store,
            poller=poller,
            machine=ReplicationStateMachine(channel, store, poller, settings),
            provisioner=provisioner,
            workload=WorkloadRunner(runtime, resolver, channel, store),
            upgrades=UpgradeDriver(runtime, registry, channel, provisioner, poller, settings),
            health=HealthChecker(resolver, channel, store, poller, settings),
        )
