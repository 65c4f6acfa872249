"""Node registry: authoritative record of which nodes belong to which role."""

from dataclasses import dataclass
from typing import List, Optional

from pcr.api.models import ClusterNode as NodeModel, UpgradeRecord as UpgradeModel, make_session_factory
from pcr.roles import Role


@dataclass
class NodeRecord:
    name: str
    number: int
    role: Role
    sql_port: int
    http_port: int
    inter_port: int
    volume: str
    image: str
    network: str


@dataclass
class UpgradeInfo:
    id: int
    role: Role
    from_image: str
    to_image: str
    status: str
    finalized: bool


def _to_record(row: NodeModel) -> NodeRecord:
    return NodeRecord(
        name=row.name,
        number=row.number,
        role=Role(row.role),
        sql_port=row.sql_port,
        http_port=row.http_port,
        inter_port=row.inter_port,
        volume=row.volume,
        image=row.image,
        network=row.network,
    )


def _to_upgrade(row: UpgradeModel) -> UpgradeInfo:
    return UpgradeInfo(
        id=row.id,
        role=Role(row.role),
        from_image=row.from_image,
        to_image=row.to_image,
        status=row.status,
        finalized=bool(row.finalized),
    )


class NodeRegistry:
    def __init__(self, session_factory):
        self.SessionLocal = session_factory

    def snapshot(self) -> "NodeRegistry":
        """In-memory copy of every row; writes to the copy never reach this registry."""
        factory = make_session_factory(":memory:")
        src = self.SessionLocal()
        dst = factory()
        try:
            for model in (NodeModel, UpgradeModel):
                columns = [c.name for c in model.__table__.columns]
                for row in src.query(model).all():
                    dst.add(model(**{c: getattr(row, c) for c in columns}))
            dst.commit()
        finally:
            src.close()
            dst.close()
        return NodeRegistry(factory)

    def nodes_for(self, role: Role) -> List[NodeRecord]:
        db = self.SessionLocal()
        try:
            rows = (
                db.query(NodeModel)
                .filter(NodeModel.role == role.value)
                .order_by(NodeModel.number)
                .all()
            )
            return [_to_record(r) for r in rows]
        finally:
            db.close()

    def highest_number(self) -> int:
        db = self.SessionLocal()
        try:
            row = db.query(NodeModel).order_by(NodeModel.number.desc()).first()
            return row.number if row else 0
        finally:
            db.close()

    def add(self, record: NodeRecord):
        db = self.SessionLocal()
        try:
            db.merge(
                NodeModel(
                    name=record.name,
                    number=record.number,
                    role=record.role.value,
                    sql_port=record.sql_port,
                    http_port=record.http_port,
                    inter_port=record.inter_port,
                    volume=record.volume,
                    image=record.image,
                    network=record.network,
                )
            )
            db.commit()
        finally:
            db.close()

    def remove(self, name: str):
        db = self.SessionLocal()
        try:
            db.query(NodeModel).filter(NodeModel.name == name).delete()
            db.commit()
        finally:
            db.close()

    def set_image(self, name: str, image: str):
        db = self.SessionLocal()
        try:
            row = db.query(NodeModel).filter(NodeModel.name == name).first()
            if row:
                row.image = image
                db.commit()
        finally:
            db.close()

    # Upgrade history

    def latest_upgrade(self, role: Role) -> Optional[UpgradeInfo]:
        db = self.SessionLocal()
        try:
            row = (
                db.query(UpgradeModel)
                .filter(UpgradeModel.role == role.value)
                .order_by(UpgradeModel.id.desc())
                .first()
            )
            return _to_upgrade(row) if row else None
        finally:
            db.close()

    def start_upgrade(self, role: Role, from_image: str, to_image: str) -> int:
        db = self.SessionLocal()
        try:
            row = UpgradeModel(role=role.value, from_image=from_image, to_image=to_image)
            db.add(row)
            db.commit()
            db.refresh(row)
            return row.id
        finally:
            db.close()

    def set_upgrade_status(self, upgrade_id: int, status: str, finalized: Optional[bool] = None):
        db = self.SessionLocal()
        try:
            row = db.query(UpgradeModel).filter(UpgradeModel.id == upgrade_id).first()
            if row:
                row.status = status
                if finalized is not None:
                    row.finalized = finalized
                db.commit()
        finally:
            db.close()
