import pytest

from pcr.exceptions import ResolutionError
from pcr.resolver import RoleResolver
from pcr.roles import Role, canon_role, map_tenant_alias


@pytest.fixture
def resolver(runtime, registry):
    return RoleResolver(runtime, registry, "roachnet1")


class TestRoles:
    @pytest.mark.parametrize("value", ["CA", "ca", "a", "primary", "1", Role.CA])
    def test_ca_aliases(self, value):
        assert canon_role(value) is Role.CA

    @pytest.mark.parametrize("value", ["CB", "standby", "s", "2"])
    def test_cb_aliases(self, value):
        assert canon_role(value) is Role.CB

    def test_invalid_role(self):
        with pytest.raises(ValueError):
            canon_role("cc")

    def test_tenant_aliases(self):
        assert map_tenant_alias("crla") == "va"
        assert map_tenant_alias("crlb-readonly") == "vb-readonly"
        assert map_tenant_alias("System") == "system"
        assert map_tenant_alias("other") == "other"


class TestRegistryMembership:
    def test_members_in_node_order(self, resolver, provisioned):
        members = resolver.members_of(Role.CB)
        assert [m.name for m in members] == ["roach4", "roach5", "roach6"]
        assert [m.sql_port for m in members] == [27257, 27258, 27259]
        assert all(m.source == "registry" for m in members)

    def test_state_comes_from_runtime(self, resolver, provisioned, runtime):
        runtime.instances["roach2"].state = "exited"
        del runtime.instances["roach3"]
        states = [m.state for m in resolver.members_of("CA")]
        assert states == ["running", "exited", "absent"]

    def test_node_for_ordinal(self, resolver, provisioned):
        assert resolver.node_for(Role.CA, 2).name == "roach2"
        assert resolver.node_for("standby").name == "roach4"

    @pytest.mark.parametrize("ordinal", [0, -1, "1", True])
    def test_ordinal_must_be_positive_int(self, resolver, provisioned, ordinal):
        with pytest.raises(ResolutionError):
            resolver.node_for(Role.CA, ordinal)

    def test_missing_ordinal(self, resolver, provisioned):
        with pytest.raises(ResolutionError) as exc:
            resolver.node_for(Role.CA, 4)
        assert "ordinal 4" in exc.value.message

    def test_client_port_only_for_own_role(self, resolver, provisioned):
        member = resolver.node_for(Role.CA)
        assert resolver.client_port_of(Role.CA, member) == 26257
        assert resolver.client_port_of(Role.CB, member) is None

    def test_first_running_skips_stopped(self, resolver, provisioned, runtime):
        runtime.instances["roach1"].state = "exited"
        member = resolver.first_running(Role.CA)
        assert member.name == "roach2"
        assert resolver.http_port_of(member) == 8081


class TestPortFallback:
    def test_membership_from_published_ports(self, resolver, runtime):
        runtime.add("roach1", [26257, 8080])
        runtime.add("roach2", [26258, 8081])
        runtime.add("roach4", [27257, 8090])

        ca = resolver.members_of(Role.CA)
        cb = resolver.members_of(Role.CB)

        assert [m.name for m in ca] == ["roach1", "roach2"]
        assert [m.name for m in cb] == ["roach4"]
        assert ca[1].sql_port == 26258
        assert ca[1].http_port == 8081
        assert cb[0].volume == "roachvol4"
        assert cb[0].source == "ports"

    def test_empty_role(self, resolver):
        assert resolver.members_of(Role.CA) == []
        with pytest.raises(ResolutionError):
            resolver.require_members(Role.CA)
        assert resolver.first_running(Role.CA) is None
