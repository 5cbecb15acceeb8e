from datetime import datetime, timezone
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, model_validator


def as_utc(value: datetime) -> datetime:
    """Naive datetimes are taken to be UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def is_valid_window(planned_start: datetime, planned_end: datetime) -> bool:
    return as_utc(planned_end) > as_utc(planned_start)


class HblCreate(BaseModel):
    hbl_id: str = Field(..., min_length=1, max_length=120)
    hbl_no: Optional[str] = Field(default=None, max_length=120)
    packing_list_no: Optional[str] = Field(default=None, max_length=120)


class HblRead(BaseModel):
    hbl_id: Optional[str] = None
    hbl_no: Optional[str] = None
    packing_list_no: Optional[str] = None
    model_config = ConfigDict(from_attributes=True)


class OrderContainerCreate(BaseModel):
    container_no: Optional[str] = Field(default=None, max_length=11)
    forwarder_id: Optional[str] = None
    forwarder_name: Optional[str] = None
    allow_stuffing_or_destuffing: bool = False
    cargo_release_status: Optional[str] = "NOT_REQUESTED"
    hbls: List[HblCreate] = Field(default_factory=list)


class OrderContainerRead(BaseModel):
    id: UUID
    container_no: Optional[str] = None
    forwarder_id: Optional[str] = None
    forwarder_name: Optional[str] = None
    allow_stuffing_or_destuffing: Optional[bool] = None
    cargo_release_status: Optional[str] = None
    hbls: List[HblRead] = Field(default_factory=list)
    model_config = ConfigDict(from_attributes=True)


class PlanContainerRead(BaseModel):
    id: UUID
    plan_id: Optional[UUID] = None
    order_container_id: UUID
    assigned_at: Optional[datetime] = None
    order_container: Optional[OrderContainerRead] = None
    hbls: List[HblRead] = Field(default_factory=list)
    model_config = ConfigDict(from_attributes=True)


class PlanRead(BaseModel):
    id: UUID
    code: str
    status: str
    planned_start: datetime
    planned_end: datetime
    execution_start: Optional[datetime] = None
    execution_end: Optional[datetime] = None
    pending_date: Optional[datetime] = None
    equipment_booked: bool = False
    appointment_confirmed: bool = False
    forwarder_id: Optional[str] = None
    forwarder_name: Optional[str] = None
    containers: List[PlanContainerRead] = Field(default_factory=list)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    model_config = ConfigDict(from_attributes=True)


class AssignContainerRequest(BaseModel):
    order_container_id: UUID
    hbl_ids: Optional[List[str]] = None


class PlanCreate(BaseModel):
    planned_start: datetime
    planned_end: datetime
    equipment_booked: bool = False
    appointment_confirmed: bool = False
    forwarder_id: Optional[str] = None
    forwarder_name: Optional[str] = None
    hbl_selections: List[AssignContainerRequest] = Field(default_factory=list)

    @model_validator(mode="after")
    def check_window(self):
        if not is_valid_window(self.planned_start, self.planned_end):
            raise ValueError("planned_end must be after planned_start")
        return self

    @model_validator(mode="after")
    def check_selections(self):
        if not self.hbl_selections:
            raise ValueError("Select at least one container.")
        return self


class PlanHeaderUpdate(BaseModel):
    planned_start: Optional[datetime] = None
    planned_end: Optional[datetime] = None
    equipment_booked: Optional[bool] = None
    appointment_confirmed: Optional[bool] = None


class PlanStatusChangeRequest(BaseModel):
    status: str
