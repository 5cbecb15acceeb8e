"""
Remote plan store used by the reconciliation and lifecycle engine.

The engine only needs a handful of plan operations. `HttpPlanStore` reaches
them over the REST API; `DatabasePlanStore` calls the service layer
in-process. Both raise `PlanStoreError` for any failed call.
"""
from __future__ import annotations

import logging
from typing import List, Optional, Protocol, Sequence, Union
from uuid import UUID

import httpx
from fastapi import HTTPException
from sqlalchemy.orm import Session

from schemas.destuffing_plan import AssignContainerRequest, OrderContainerRead, PlanHeaderUpdate, PlanRead
from services.config_service import get_plan_api_base_url, get_plan_api_timeout
from services.destuffing_plan_service import DestuffingPlanService, serialize_plan

log = logging.getLogger(__name__)

PlanId = Union[str, UUID]


class PlanStoreError(Exception):
    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class PlanStore(Protocol):
    async def assign_containers(self, plan_id: PlanId, assignments: Sequence[AssignContainerRequest]) -> None:
        ...

    async def unassign_container(self, plan_id: PlanId, plan_container_id: PlanId) -> None:
        ...

    async def fetch_plan_by_id(self, plan_id: PlanId) -> PlanRead:
        ...

    async def list_plans(self, status: Optional[str] = None) -> List[PlanRead]:
        ...

    async def change_plan_status(self, plan_id: PlanId, status: str) -> PlanRead:
        ...

    async def update_plan_header(self, plan_id: PlanId, payload: PlanHeaderUpdate) -> PlanRead:
        ...


def _error_message(response: httpx.Response, fallback: str) -> str:
    try:
        body = response.json()
    except ValueError:
        body = None
    if isinstance(body, dict):
        detail = body.get("detail") or body.get("message")
        if isinstance(detail, str) and detail:
            return detail
        if detail:
            return str(detail)
    return response.reason_phrase or fallback


class HttpPlanStore:
    """Plan store backed by the destuffing plan REST API."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        headers: Optional[dict] = None,
    ):
        self.base_url = (base_url or get_plan_api_base_url()).rstrip("/")
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=timeout if timeout is not None else get_plan_api_timeout(),
            transport=transport,
            headers=headers,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> "HttpPlanStore":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def _request(self, method: str, url: str, fallback: str, **kwargs) -> httpx.Response:
        try:
            response = await self._client.request(method, url, **kwargs)
        except httpx.TimeoutException as exc:
            raise PlanStoreError(f"{fallback}: request timed out") from exc
        except httpx.HTTPError as exc:
            raise PlanStoreError(f"{fallback}: {exc}") from exc

        if response.status_code >= 400:
            message = _error_message(response, fallback)
            log.warning("%s %s failed (%s): %s", method, url, response.status_code, message)
            raise PlanStoreError(message, status_code=response.status_code)
        return response

    async def assign_containers(self, plan_id: PlanId, assignments: Sequence[AssignContainerRequest]) -> None:
        payload = [item.model_dump(mode="json", exclude_none=True) for item in assignments]
        await self._request(
            "POST",
            f"/destuffing-plans/{plan_id}/container-assignments",
            "Failed to assign containers",
            json=payload,
        )

    async def unassign_container(self, plan_id: PlanId, plan_container_id: PlanId) -> None:
        await self._request(
            "DELETE",
            f"/destuffing-plans/{plan_id}/container-assignments/{plan_container_id}",
            "Failed to unassign container",
        )

    async def fetch_plan_by_id(self, plan_id: PlanId) -> PlanRead:
        response = await self._request("GET", f"/destuffing-plans/{plan_id}", "Failed to load plan")
        return PlanRead.model_validate(response.json())

    async def list_plans(self, status: Optional[str] = None) -> List[PlanRead]:
        params = {"status": status} if status else None
        response = await self._request("GET", "/destuffing-plans/", "Failed to load plans", params=params)
        return [PlanRead.model_validate(item) for item in response.json()]

    async def change_plan_status(self, plan_id: PlanId, status: str) -> PlanRead:
        response = await self._request(
            "POST",
            f"/destuffing-plans/{plan_id}/status",
            "Failed to change plan status",
            json={"status": status},
        )
        return PlanRead.model_validate(response.json())

    async def update_plan_header(self, plan_id: PlanId, payload: PlanHeaderUpdate) -> PlanRead:
        response = await self._request(
            "PATCH",
            f"/destuffing-plans/{plan_id}",
            "Failed to update plan",
            json=payload.model_dump(mode="json", exclude_none=True),
        )
        return PlanRead.model_validate(response.json())

    async def list_unplanned_containers(self, forwarder_id: Optional[str] = None) -> List[OrderContainerRead]:
        params = {"forwarder_id": forwarder_id} if forwarder_id else None
        response = await self._request(
            "GET",
            "/destuffing-plans/unplanned-containers",
            "Failed to load unplanned containers",
            params=params,
        )
        return [OrderContainerRead.model_validate(item) for item in response.json()]


def _as_uuid(value: PlanId) -> UUID:
    if isinstance(value, UUID):
        return value
    try:
        return UUID(str(value))
    except ValueError as exc:
        raise PlanStoreError(f"Invalid identifier: {value}", status_code=400) from exc


class DatabasePlanStore:
    """In-process plan store over a SQLAlchemy session."""

    def __init__(self, db: Session):
        self.db = db

    def _call(self, operation, *args):
        try:
            return operation(*args, self.db)
        except HTTPException as exc:
            self.db.rollback()
            raise PlanStoreError(str(exc.detail), status_code=exc.status_code) from exc

    async def assign_containers(self, plan_id: PlanId, assignments: Sequence[AssignContainerRequest]) -> None:
        self._call(DestuffingPlanService.assign_containers, _as_uuid(plan_id), list(assignments))

    async def unassign_container(self, plan_id: PlanId, plan_container_id: PlanId) -> None:
        self._call(DestuffingPlanService.unassign_container, _as_uuid(plan_id), _as_uuid(plan_container_id))

    async def fetch_plan_by_id(self, plan_id: PlanId) -> PlanRead:
        plan = self._call(DestuffingPlanService.get_plan, _as_uuid(plan_id))
        self.db.refresh(plan)
        return serialize_plan(plan)

    async def list_plans(self, status: Optional[str] = None) -> List[PlanRead]:
        try:
            plans = DestuffingPlanService.list_plans(self.db, status)
        except HTTPException as exc:
            raise PlanStoreError(str(exc.detail), status_code=exc.status_code) from exc
        return [serialize_plan(plan) for plan in plans]

    async def change_plan_status(self, plan_id: PlanId, status: str) -> PlanRead:
        plan = self._call(DestuffingPlanService.change_status, _as_uuid(plan_id), status)
        return serialize_plan(plan)

    async def update_plan_header(self, plan_id: PlanId, payload: PlanHeaderUpdate) -> PlanRead:
        plan = self._call(DestuffingPlanService.update_header, _as_uuid(plan_id), payload)
        return serialize_plan(plan)

    async def list_unplanned_containers(self, forwarder_id: Optional[str] = None) -> List[OrderContainerRead]:
        containers = DestuffingPlanService.list_unplanned_containers(self.db, forwarder_id)
        return [OrderContainerRead.model_validate(item) for item in containers]
