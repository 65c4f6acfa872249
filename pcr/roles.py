"""Cluster roles, their port layout, and logical tenant names."""

from dataclasses import dataclass
from enum import Enum
from typing import Tuple


class Role(Enum):
    CA = "CA"
    CB = "CB"

    @property
    def spec(self) -> "RoleSpec":
        return ROLE_SPECS[self]


@dataclass(frozen=True)
class RoleSpec:
    """Fixed port layout of a role.

    ``member_range`` decides role membership when no registry entry exists;
    ``discovery_range`` is the wider window used to pick the SQL port out of
    a container's published ports.
    """

    role: Role
    inter_port: int
    sql_base: int
    http_base: int
    member_range: Tuple[int, int]
    discovery_range: Tuple[int, int]

    def owns_port(self, port: int) -> bool:
        low, high = self.member_range
        return low <= port <= high

    def sql_port(self, ordinal: int) -> int:
        return self.sql_base + ordinal - 1

    def http_port(self, ordinal: int) -> int:
        return self.http_base + ordinal - 1


HTTP_PORT_RANGE = (8000, 8999)

# Tenants
VA = "va"
VB = "vb"
SYSTEM = "system"
DEFAULT = "default"
READONLY_SUFFIX = "-readonly"

ROLE_SPECS = {
    Role.CA: RoleSpec(Role.CA, 26357, 26257, 8080, (26257, 26999), (26000, 26999)),
    Role.CB: RoleSpec(Role.CB, 27357, 27257, 8090, (27257, 27999), (27000, 27999)),
}

_ROLE_ALIASES = {
    "ca": Role.CA, "a": Role.CA, "1": Role.CA, "primary": Role.CA, "p": Role.CA,
    "cb": Role.CB, "b": Role.CB, "2": Role.CB, "standby": Role.CB, "s": Role.CB,
}

_TENANT_ALIASES = {
    "crla": VA,
    "crlb": VB,
    "crla-readonly": VA + READONLY_SUFFIX,
    "crlb-readonly": VB + READONLY_SUFFIX,
}

KNOWN_TENANTS = (
    VA, VB, VA + READONLY_SUFFIX, VB + READONLY_SUFFIX, SYSTEM, DEFAULT,
)


def canon_role(value) -> Role:
    """Map any accepted spelling (CA, a, primary, 2, ...) to a Role."""
    if isinstance(value, Role):
        return value
    role = _ROLE_ALIASES.get(str(value).strip().lower())
    if role is None:
        raise ValueError(f"Invalid cluster '{value}'. Use CA|CB|primary|standby|1|2.")
    return role


def map_tenant_alias(tenant: str) -> str:
    """Normalise known tenant aliases; unknown names pass through untouched."""
    lowered = tenant.strip().lower()
    if lowered in _TENANT_ALIASES:
        return _TENANT_ALIASES[lowered]
    if lowered in KNOWN_TENANTS:
        return lowered
    return tenant
