# file: models.py

from pathlib import Path

from sqlalchemy import Boolean, Column, DateTime, Integer, String, create_engine, func
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

Base = declarative_base()


class ClusterNode(Base):
    """Registry entry written when a node is provisioned.

    Role membership is read from here; the runtime only reports whether the
    container is running.
    """

    __tablename__ = "cluster_nodes"
    name = Column(String, primary_key=True)          # roach<N>
    number = Column(Integer, unique=True, nullable=False)
    role = Column(String, nullable=False)            # CA | CB
    sql_port = Column(Integer, nullable=False)
    http_port = Column(Integer, nullable=False)
    inter_port = Column(Integer, nullable=False)
    volume = Column(String, nullable=False)
    image = Column(String, nullable=False)
    network = Column(String, nullable=False)
    created_at = Column(DateTime, server_default=func.now())


class UpgradeRecord(Base):
    __tablename__ = "upgrades"
    id = Column(Integer, primary_key=True, autoincrement=True)
    role = Column(String, nullable=False)
    from_image = Column(String, nullable=False)
    to_image = Column(String, nullable=False)
    status = Column(String, default="in_progress")  # in_progress | upgraded | finalized | rolled_back | failed
    finalized = Column(Boolean, default=False)
    created_at = Column(DateTime, server_default=func.now())


def make_session_factory(db_path):
    """Create (if needed) the registry database at ``db_path`` and return a session factory.

    ``":memory:"`` gives a throwaway registry.
    """
    if str(db_path) == ":memory:":
        engine = create_engine(
            "sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool
        )
    else:
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        engine = create_engine(
            f"sqlite:///{db_path}", connect_args={"check_same_thread": False}
        )
    Base.metadata.create_all(bind=engine)
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)
