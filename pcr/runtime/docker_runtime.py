#!/usr/bin/env python3
"""
Container Runtime

Thin wrapper over the Docker SDK for everything the playground needs from
the container engine:
- Listing node containers (roach<N>) and their published ports
- Running, stopping and removing node containers
- Networks and data volumes
- Executing commands inside a node (the SQL client lives there)

Podman works too when DOCKER_HOST points at its API socket.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Dict, List, Optional

import docker
from docker.errors import APIError, DockerException, NotFound

from pcr.exceptions import ExecutionError

logger = logging.getLogger(__name__)

NODE_NAME_RE = re.compile(r"^roach([0-9]+)$")
VOLUME_NAME_RE = re.compile(r"^roachvol([0-9]+)$")
DATA_DIR = "/cockroach/cockroach-data"


@dataclass
class Instance:
    """A node container as seen by the runtime."""

    name: str
    number: int
    state: str = "absent"
    # container port -> host port
    published_ports: Dict[int, Optional[int]] = field(default_factory=dict)

    @property
    def running(self) -> bool:
        return self.state == "running"


@dataclass
class ExecResult:
    exit_code: int
    output: str


def node_number(name: str) -> Optional[int]:
    match = NODE_NAME_RE.match(name)
    return int(match.group(1)) if match else None


def _parse_ports(ports) -> Dict[int, Optional[int]]:
    parsed = {}
    for key, bindings in (ports or {}).items():
        cport, _, proto = key.partition("/")
        if proto and proto != "tcp":
            continue
        try:
            container_port = int(cport)
        except ValueError:
            continue
        host_port = None
        for binding in bindings or []:
            try:
                host_port = int(binding.get("HostPort"))
                break
            except (TypeError, ValueError):
                continue
        parsed[container_port] = host_port
    return parsed


class ContainerRuntime:
    """
    Docker-backed runtime.

    In dry-run mode every mutating call is logged instead of executed;
    inspection still talks to the engine.
    """

    def __init__(self, client=None, dry_run: bool = False):
        self.client = client if client is not None else docker.from_env()
        self.dry_run = dry_run

    def _to_instance(self, container) -> Instance:
        return Instance(
            name=container.name,
            number=node_number(container.name) or 0,
            state=container.status,
            published_ports=_parse_ports(container.ports),
        )

    def list_instances(self, network: Optional[str] = None) -> List[Instance]:
        """Node containers (optionally only those on ``network``), ascending by number."""
        filters = {"network": network} if network else {}
        containers = self.client.containers.list(all=True, filters=filters)
        instances = [
            self._to_instance(c) for c in containers if NODE_NAME_RE.match(c.name)
        ]
        return sorted(instances, key=lambda i: i.number)

    def get_instance(self, name: str) -> Optional[Instance]:
        try:
            return self._to_instance(self.client.containers.get(name))
        except NotFound:
            return None

    def exec(self, name: str, command: List[str]) -> ExecResult:
        """Run ``command`` inside container ``name``; output is stdout+stderr."""
        if self.dry_run:
            logger.info("[DRY-RUN] exec %s: %s", name, " ".join(command))
            return ExecResult(0, "")
        try:
            container = self.client.containers.get(name)
            result = container.exec_run(command)
        except NotFound:
            raise ExecutionError(f"Container {name} not found")
        except (APIError, DockerException) as e:
            raise ExecutionError(f"Runtime exec on {name} failed: {e}")
        output = result.output.decode("utf-8", errors="replace") if result.output else ""
        return ExecResult(result.exit_code, output)

    def pull(self, image: str):
        logger.info("Ensuring image available: %s", image)
        if self.dry_run:
            logger.info("[DRY-RUN] pull %s", image)
            return
        repository, _, tag = image.rpartition(":")
        if not repository:
            repository, tag = image, "latest"
        self.client.images.pull(repository, tag=tag)

    def ensure_network(self, name: str):
        if self.client.networks.list(names=[name]):
            logger.info("Network %s already exists.", name)
            return
        logger.info("Creating network %s", name)
        if not self.dry_run:
            self.client.networks.create(name, driver="bridge")

    def remove_network(self, name: str):
        for net in self.client.networks.list(names=[name]):
            logger.info("Removing network %s", name)
            if not self.dry_run:
                net.remove()

    def ensure_volume(self, name: str):
        try:
            self.client.volumes.get(name)
            logger.info("Volume %s already exists.", name)
        except NotFound:
            logger.info("Creating volume %s", name)
            if not self.dry_run:
                self.client.volumes.create(name=name)

    def remove_volume(self, name: str):
        try:
            volume = self.client.volumes.get(name)
        except NotFound:
            return
        logger.info("Removing volume %s", name)
        if not self.dry_run:
            volume.remove(force=True)

    def node_volumes(self) -> List[str]:
        return sorted(
            v.name for v in self.client.volumes.list() if VOLUME_NAME_RE.match(v.name)
        )

    def run(
        self,
        name: str,
        image: str,
        command: List[str],
        network: str,
        ports: Dict[int, int],
        volumes: Dict[str, str],
    ):
        logger.info("Launching %s (%s) ports=%s volumes=%s", name, image, ports, volumes)
        if self.dry_run:
            logger.info("[DRY-RUN] run %s %s", image, " ".join(command))
            return
        self.client.containers.run(
            image,
            command=command,
            name=name,
            hostname=name,
            network=network,
            ports={f"{cport}/tcp": hport for cport, hport in ports.items()},
            volumes={vol: {"bind": path, "mode": "rw"} for vol, path in volumes.items()},
            detach=True,
        )

    def stop(self, name: str):
        logger.info("Stopping %s", name)
        if self.dry_run:
            return
        try:
            self.client.containers.get(name).stop()
        except NotFound:
            logger.warning("Container %s not found; nothing to stop", name)

    def remove(self, name: str):
        logger.info("Removing container %s", name)
        if self.dry_run:
            return
        try:
            self.client.containers.get(name).remove(force=True)
        except NotFound:
            pass

