"""
Statement templates for the replication and cluster-setup commands.

Rendered with Jinja2 so each statement lives in one place and the state
machine only supplies tenant names and URLs.
"""

from jinja2 import Template

# Replication wiring
CREATE_FROM_REPLICATION = Template(
    "CREATE VIRTUAL CLUSTER {{ dest }} FROM REPLICATION OF {{ source }} "
    "ON '{{ source_url }}'{% if read_access %} WITH READ VIRTUAL CLUSTER{% endif %};"
)
START_REPLICATION = Template(
    "ALTER VIRTUAL CLUSTER '{{ dest }}' START REPLICATION OF '{{ source }}' "
    "ON '{{ source_url }}'{% if read_access %} WITH READ VIRTUAL CLUSTER{% endif %};"
)
STOP_SERVICE = Template("ALTER VIRTUAL CLUSTER '{{ tenant }}' STOP SERVICE;")
START_SERVICE_SHARED = Template("ALTER VIRTUAL CLUSTER '{{ tenant }}' START SERVICE SHARED;")
COMPLETE_REPLICATION = Template("ALTER VIRTUAL CLUSTER '{{ tenant }}' COMPLETE REPLICATION TO LATEST;")
CREATE_TENANT = Template("CREATE VIRTUAL CLUSTER IF NOT EXISTS {{ tenant }};")

# Probes
REPLICATION_STATUS = Template("SHOW VIRTUAL CLUSTER {{ tenant }} WITH REPLICATION STATUS;")
DATA_STATE = Template("SELECT data_state FROM [SHOW VIRTUAL CLUSTERS] WHERE name = '{{ tenant }}';")
TENANT_NAMES = "SELECT name FROM [SHOW VIRTUAL CLUSTERS];"
SHOW_TENANTS = "SHOW VIRTUAL CLUSTERS;"

# Cluster settings
DEFAULT_TARGET_SETTING = "server.controller.default_target_cluster"
SET_DEFAULT_TARGET = Template(
    "SET CLUSTER SETTING " + DEFAULT_TARGET_SETTING + " = '{{ tenant }}';"
)
SHOW_DEFAULT_TARGET = f"SHOW CLUSTER SETTING {DEFAULT_TARGET_SETTING};"
SET_SETTING = Template("SET CLUSTER SETTING {{ name }} = {{ value }};")
RESET_SETTING = Template("RESET CLUSTER SETTING {{ name }};")
SHOW_VERSION = "SHOW CLUSTER SETTING version;"


def render(template: Template, **params) -> str:
    return template.render(**params)
