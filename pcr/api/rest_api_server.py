# File: pcr/api/rest_api_server.py
#!/usr/bin/env python3
"""
Playground Status API

Read-only FastAPI view of the playground:
- Breadcrumbs
- Role membership and endpoints
- Replication state per direction
- Health report with state inconsistencies
- Prometheus metrics
"""

import logging
from typing import Dict, List, Optional

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.responses import Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from pydantic import BaseModel

from pcr.config import Settings
from pcr.harness import Harness
from pcr.metrics import METRICS
from pcr.replication.state_machine import direction_for
from pcr.roles import canon_role

logger = logging.getLogger(__name__)

app = FastAPI(
    title="Replication Playground Status API",
    description="Read-only status of the two playground clusters and their replication links.",
    version="0.1.0",
)

_harness: Optional[Harness] = None


def get_harness() -> Harness:
    global _harness
    if _harness is None:
        _harness = Harness.from_settings(Settings.from_env())
    return _harness


class Member(BaseModel):
    name: str
    number: int
    role: str
    state: str
    sql_port: Optional[int] = None
    http_port: Optional[int] = None
    volume: str
    image: Optional[str] = None
    source: str


class ReplicationStatus(BaseModel):
    direction: str
    source: str
    destination: str
    state: str
    active: bool
    failover_done: bool


class Inconsistency(BaseModel):
    key: str
    recorded: str
    observed: str
    message: str


class RowCountOut(BaseModel):
    role: str
    tenant: str
    count: Optional[int] = None


class HealthOut(BaseModel):
    healthy: bool
    breadcrumbs: Dict[str, str]
    links: Dict[str, str]
    warnings: List[Inconsistency]
    row_counts: List[RowCountOut]


@app.middleware("http")
async def prometheus_middleware(request: Request, call_next):
    METRICS["api_requests"].labels(method=request.method, endpoint=request.url.path).inc()
    return await call_next(request)


@app.get("/health")
def health():
    return {"status": "healthy"}


@app.get("/metrics")
def metrics():
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)


@app.get("/breadcrumbs", response_model=Dict[str, str])
def breadcrumbs(harness: Harness = Depends(get_harness)):
    return harness.store.items()


@app.get("/roles/{role}/members", response_model=List[Member])
def role_members(role: str, harness: Harness = Depends(get_harness)):
    try:
        role = canon_role(role)
    except ValueError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return [
        Member(
            name=m.name,
            number=m.number,
            role=m.role.value,
            state=m.state,
            sql_port=m.sql_port,
            http_port=m.http_port,
            volume=m.volume,
            image=m.image,
            source=m.source,
        )
        for m in harness.resolver.members_of(role)
    ]


@app.get("/replication/health", response_model=HealthOut)
def replication_health(harness: Harness = Depends(get_harness)):
    report = harness.health.check_replication_health()
    return HealthOut(
        healthy=report.healthy,
        breadcrumbs=report.breadcrumbs,
        links=report.links,
        warnings=[Inconsistency(**vars(w)) for w in report.warnings],
        row_counts=[RowCountOut(role=c.role, tenant=c.tenant, count=c.count) for c in report.row_counts],
    )


@app.get("/replication/{direction}", response_model=ReplicationStatus)
def replication_status(direction: str, harness: Harness = Depends(get_harness)):
    try:
        d = direction_for(direction)
    except ValueError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return ReplicationStatus(
        direction=d.name,
        source=f"{d.source_role.value}/{d.source_tenant}",
        destination=f"{d.dest_role.value}/{d.dest_tenant}",
        state=harness.machine.describe(d).value,
        active=harness.store.is_true(d.active_key),
        failover_done=harness.store.is_true(d.done_key),
    )
