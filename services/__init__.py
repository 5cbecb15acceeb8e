"""
Services module - Business logic layer for the destuffing plan console.
"""
from services.change_orchestrator import ChangeOrchestrator, apply_changes
from services.destuffing_plan_service import DestuffingPlanService
from services.lifecycle_service import PlanLifecycleService
from services.plan_store import DatabasePlanStore, HttpPlanStore, PlanStoreError

__all__ = [
    "ChangeOrchestrator",
    "apply_changes",
    "DestuffingPlanService",
    "PlanLifecycleService",
    "DatabasePlanStore",
    "HttpPlanStore",
    "PlanStoreError",
]
