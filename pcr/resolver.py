"""
Role/Endpoint Resolver

Maps a logical role (CA/CB) to its ordered member nodes and their SQL and
HTTP endpoints.

Membership comes from the node registry written at provisioning time. If
the registry knows nothing about a role (nodes created by hand, or by an
older version of the tool) it is reconstructed from the runtime: a
``roach<N>`` container on the shared network belongs to a role when one of
its published ports falls inside that role's SQL port range.
"""

import logging
from dataclasses import dataclass
from typing import List, Optional

from pcr.exceptions import ResolutionError
from pcr.roles import HTTP_PORT_RANGE, Role, canon_role

logger = logging.getLogger(__name__)


@dataclass
class Member:
    name: str
    number: int
    role: Role
    state: str
    sql_port: Optional[int]
    http_port: Optional[int]
    volume: str
    image: Optional[str] = None
    # "registry" or "ports"
    source: str = "registry"

    @property
    def running(self) -> bool:
        return self.state == "running"


def _first_in_range(ports, low, high) -> Optional[int]:
    for port in sorted(ports):
        if low <= port <= high:
            return port
    return None


class RoleResolver:
    def __init__(self, runtime, registry, network: str):
        self.runtime = runtime
        self.registry = registry
        self.network = network

    def members_of(self, role) -> List[Member]:
        """Members of ``role`` ordered by node number; empty if not provisioned."""
        role = canon_role(role)
        records = self.registry.nodes_for(role)
        if records:
            members = []
            for rec in records:
                inst = self.runtime.get_instance(rec.name)
                members.append(
                    Member(
                        name=rec.name,
                        number=rec.number,
                        role=role,
                        state=inst.state if inst else "absent",
                        sql_port=rec.sql_port,
                        http_port=rec.http_port,
                        volume=rec.volume,
                        image=rec.image,
                    )
                )
            return members
        return self._members_from_ports(role)

    def _members_from_ports(self, role: Role) -> List[Member]:
        spec = role.spec
        members = []
        for inst in self.runtime.list_instances(self.network):
            if not any(spec.owns_port(p) for p in inst.published_ports):
                continue
            members.append(
                Member(
                    name=inst.name,
                    number=inst.number,
                    role=role,
                    state=inst.state,
                    sql_port=_first_in_range(inst.published_ports, *spec.discovery_range),
                    http_port=_first_in_range(inst.published_ports, *HTTP_PORT_RANGE),
                    volume=f"roachvol{inst.number}",
                    source="ports",
                )
            )
        if members:
            logger.debug("%s membership reconstructed from published ports: %s",
                         role.value, [m.name for m in members])
        return sorted(members, key=lambda m: m.number)

    def require_members(self, role) -> List[Member]:
        role = canon_role(role)
        members = self.members_of(role)
        if not members:
            raise ResolutionError(
                f"No {role.value} nodes found on {self.network}; is the cluster provisioned?",
                {"role": role.value},
            )
        return members

    def node_for(self, role, ordinal: int = 1) -> Member:
        """The member at 1-based position ``ordinal`` inside the role."""
        role = canon_role(role)
        if not isinstance(ordinal, int) or isinstance(ordinal, bool) or ordinal < 1:
            raise ResolutionError("node_ordinal must be a positive integer", {"ordinal": ordinal})
        members = self.require_members(role)
        if ordinal > len(members):
            raise ResolutionError(
                f"Could not find node ordinal {ordinal} for '{role.value}'.",
                {"role": role.value, "ordinal": ordinal, "members": len(members)},
            )
        return members[ordinal - 1]

    def client_port_of(self, role, member: Member) -> Optional[int]:
        role = canon_role(role)
        if member.role is not role:
            return None
        return member.sql_port

    def http_port_of(self, member: Member) -> Optional[int]:
        return member.http_port

    def first_running(self, role) -> Optional[Member]:
        """First running member exposing an HTTP port, falling back along the ordinal order."""
        for member in self.members_of(role):
            if member.running and member.http_port:
                return member
        return None
