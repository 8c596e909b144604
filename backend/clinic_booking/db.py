import logging
from decimal import Decimal

from sqlalchemy.engine import Engine
from sqlalchemy.exc import OperationalError
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel, create_engine, Session

from .config import get_settings
from .models import Doctor, Service

logger = logging.getLogger(__name__)

DEFAULT_DOCTORS = [
    {"id": "doc_1", "name": "Tommy", "specialization": "NAD+ Therapy Specialist"},
    {"id": "doc_2", "name": "Andy", "specialization": "Cellular Wellness Expert"},
    {"id": "doc_3", "name": "Cindy", "specialization": "Longevity Medicine Specialist"},
]

DEFAULT_SERVICES = [
    {"id": "svc_1", "name": "NAD+ IV Therapy",
     "description": "Direct intravenous infusion for maximum bioavailability",
     "duration_minutes": 75, "price": Decimal("299.00")},
    {"id": "svc_2", "name": "Cellular Optimization",
     "description": "Comprehensive protocol combining NAD+ with targeted nutrients",
     "duration_minutes": 105, "price": Decimal("499.00")},
    {"id": "svc_3", "name": "Longevity Protocol",
     "description": "Signature treatment for sustained vitality and healthy aging",
     "duration_minutes": 120, "price": Decimal("699.00")},
    {"id": "svc_4", "name": "Cognitive Enhancement",
     "description": "Specialized NAD+ formulation for mental performance",
     "duration_minutes": 75, "price": Decimal("399.00")},
]


def build_engine(url: str) -> Engine:
    if url.startswith("sqlite"):
        connect_args = {"check_same_thread": False, "timeout": 30}
        if url in ("sqlite://", "sqlite:///:memory:"):
            # every pooled connection would otherwise see its own empty database
            return create_engine(url, echo=False, connect_args=connect_args, poolclass=StaticPool)
        return create_engine(url, echo=False, pool_pre_ping=True, connect_args=connect_args)
    return create_engine(url, echo=False, pool_pre_ping=True)


engine = build_engine(get_settings().database_url)


def create_db_and_tables(bind: Engine = engine) -> None:
    SQLModel.metadata.create_all(bind)


def verify_connection(bind: Engine = engine) -> None:
    """Fail fast if the database cannot be reached."""
    try:
        with bind.connect() as conn:
            conn.exec_driver_sql("SELECT 1")
    except OperationalError:
        logger.exception("Database connectivity check failed")
        raise


def seed_defaults(bind: Engine = engine) -> None:
    with Session(bind) as s:
        for row in DEFAULT_DOCTORS:
            if not s.get(Doctor, row["id"]):
                s.add(Doctor(**row))
        for row in DEFAULT_SERVICES:
            if not s.get(Service, row["id"]):
                s.add(Service(**row))
        s.commit()


def get_session():
    with Session(engine) as session:
        yield session
