import asyncio
import os
import sys
import uuid
from datetime import datetime
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Sequence

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool
from sqlalchemy.dialects.postgresql import UUID as PG_UUID
from sqlalchemy.ext.compiler import compiles

os.environ.setdefault("DATABASE_URL", "sqlite+pysqlite:///:memory:")

ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))


@compiles(PG_UUID, "sqlite")
def _compile_uuid_sqlite(type_, compiler, **kwargs):
    return "CHAR(36)"


from main import app  # noqa: E402
from core.database import Base, get_db  # noqa: E402
from models.destuffing_plan import PlanStatus, is_valid_transition  # noqa: E402
from schemas.destuffing_plan import (  # noqa: E402
    AssignContainerRequest,
    HblRead,
    OrderContainerRead,
    PlanContainerRead,
    PlanHeaderUpdate,
    PlanRead,
)
from services.config_service import set_approved_cargo_release_status  # noqa: E402
from services.plan_store import PlanStoreError  # noqa: E402


@pytest.fixture(scope="function")
def db_session():
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool
    )
    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

    Base.metadata.create_all(bind=engine)
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture(scope="function")
def client(db_session):
    def _override_get_db():
        try:
            yield db_session
        finally:
            pass

    app.dependency_overrides[get_db] = _override_get_db

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()


@pytest.fixture(autouse=True)
def reset_cargo_release_override():
    yield
    set_approved_cargo_release_status(None)


# ==================== IN-MEMORY PLAN BUILDERS ====================

def make_container(
    container_no: Optional[str],
    hbl_ids: Iterable[str] = ("HBL-1",),
    forwarder_id: str = "FWD-1",
    allow: Optional[bool] = True,
    release: Optional[str] = "APPROVED",
) -> OrderContainerRead:
    return OrderContainerRead(
        id=uuid.uuid4(),
        container_no=container_no,
        forwarder_id=forwarder_id,
        allow_stuffing_or_destuffing=allow,
        cargo_release_status=release,
        hbls=[HblRead(hbl_id=hbl_id, hbl_no=f"NO-{hbl_id}") for hbl_id in hbl_ids],
    )


def assign(
    container: OrderContainerRead,
    hbl_ids: Optional[Sequence[str]] = None,
    plan_id: Optional[uuid.UUID] = None,
) -> PlanContainerRead:
    hbls = [hbl for hbl in container.hbls if hbl_ids is None or hbl.hbl_id in hbl_ids]
    return PlanContainerRead(
        id=uuid.uuid4(),
        plan_id=plan_id,
        order_container_id=container.id,
        assigned_at=datetime(2026, 3, 1, 8, 0, 0),
        order_container=container,
        hbls=hbls,
    )


def make_plan(
    containers: Iterable[PlanContainerRead] = (),
    status: str = "SCHEDULED",
    equipment_booked: bool = True,
    appointment_confirmed: bool = True,
    code: str = "DP-0001",
    forwarder_id: str = "FWD-1",
) -> PlanRead:
    return PlanRead(
        id=uuid.uuid4(),
        code=code,
        status=status,
        planned_start=datetime(2026, 3, 2, 8, 0, 0),
        planned_end=datetime(2026, 3, 2, 16, 0, 0),
        equipment_booked=equipment_booked,
        appointment_confirmed=appointment_confirmed,
        forwarder_id=forwarder_id,
        containers=list(containers),
    )


class FakePlanStore:
    """
    In-memory async plan store.

    `fail_assign` holds order container ids whose assignment batch is
    rejected; `fail_unassign` holds plan container ids whose release is
    rejected.
    """

    def __init__(self, plans: Iterable[PlanRead] = (), containers: Iterable[OrderContainerRead] = ()):
        self.plans: Dict[str, PlanRead] = {str(plan.id): plan.model_copy(deep=True) for plan in plans}
        self.containers: Dict[str, OrderContainerRead] = {str(item.id): item for item in containers}
        for plan in self.plans.values():
            for plan_container in plan.containers:
                if plan_container.order_container is not None:
                    self.containers[str(plan_container.order_container_id)] = plan_container.order_container
        self.fail_assign: set = set()
        self.fail_unassign: set = set()
        self.calls: List[tuple] = []
        self.in_flight = 0
        self.max_in_flight = 0

    def _plan(self, plan_id) -> PlanRead:
        plan = self.plans.get(str(plan_id))
        if plan is None:
            raise PlanStoreError("Plan not found", status_code=404)
        return plan

    async def _enter(self):
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        await asyncio.sleep(0)
        self.in_flight -= 1

    async def assign_containers(self, plan_id, assignments: Sequence[AssignContainerRequest]) -> None:
        self.calls.append(("assign", [str(item.order_container_id) for item in assignments]))
        await self._enter()
        plan = self._plan(plan_id)
        if any(str(item.order_container_id) in self.fail_assign for item in assignments):
            raise PlanStoreError("Container is already assigned to a plan", status_code=409)
        for item in assignments:
            container = self.containers[str(item.order_container_id)]
            plan.containers.append(assign(container, item.hbl_ids, plan_id=plan.id))

    async def unassign_container(self, plan_id, plan_container_id) -> None:
        self.calls.append(("unassign", str(plan_container_id)))
        await self._enter()
        plan = self._plan(plan_id)
        if str(plan_container_id) in self.fail_unassign:
            raise PlanStoreError("Assignment is locked", status_code=400)
        remaining = [
            item for item in plan.containers
            if str(item.id) != str(plan_container_id) and str(item.order_container_id) != str(plan_container_id)
        ]
        if len(remaining) == len(plan.containers):
            raise PlanStoreError("Assignment not found.", status_code=404)
        plan.containers = remaining

    async def fetch_plan_by_id(self, plan_id) -> PlanRead:
        self.calls.append(("fetch", str(plan_id)))
        return self._plan(plan_id).model_copy(deep=True)

    async def list_plans(self, status: Optional[str] = None) -> List[PlanRead]:
        self.calls.append(("list", status))
        return [
            plan.model_copy(deep=True)
            for plan in self.plans.values()
            if status is None or plan.status == status
        ]

    async def change_plan_status(self, plan_id, status: str) -> PlanRead:
        self.calls.append(("status", str(plan_id), status))
        plan = self._plan(plan_id)
        if not is_valid_transition(PlanStatus(plan.status), PlanStatus(status)):
            raise PlanStoreError("Invalid status transition", status_code=400)
        plan.status = status
        return plan.model_copy(deep=True)

    async def update_plan_header(self, plan_id, payload: PlanHeaderUpdate) -> PlanRead:
        self.calls.append(("header", str(plan_id)))
        plan = self._plan(plan_id)
        for field, value in payload.model_dump(exclude_none=True).items():
            setattr(plan, field, value)
        return plan.model_copy(deep=True)

    def remote_calls(self, kind: str) -> List[tuple]:
        return [call for call in self.calls if call[0] == kind]
