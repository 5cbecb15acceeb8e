"""
Pydantic schemas for container reconciliation and lifecycle guard results.
"""
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from schemas.destuffing_plan import PlanRead

ChangeKind = Literal["add", "update", "remove", "unchanged"]
MutationKind = Literal["add", "update", "remove"]
MutationStatus = Literal["fulfilled", "rejected"]


class CargoUnit(BaseModel):
    """One house bill selected into a container."""
    unit_id: str
    code: str
    manifest_ref: Optional[str] = None
    model_config = ConfigDict(frozen=True)


class ChangeRecord(BaseModel):
    container_key: str
    kind: ChangeKind
    unit_ids: List[str] = Field(default_factory=list)
    plan_container_id: Optional[str] = None
    label: str = ""


class MutationOutcome(BaseModel):
    label: str
    kind: MutationKind
    status: MutationStatus
    error: Optional[str] = None


class ReconciliationReport(BaseModel):
    outcomes: List[MutationOutcome] = Field(default_factory=list)

    @property
    def success_count(self) -> int:
        return sum(1 for outcome in self.outcomes if outcome.status == "fulfilled")

    @property
    def failures(self) -> List[MutationOutcome]:
        return [outcome for outcome in self.outcomes if outcome.status == "rejected"]

    @property
    def is_complete(self) -> bool:
        return not self.failures

    def failures_by_label(self) -> Dict[str, List[str]]:
        grouped: Dict[str, List[str]] = {}
        for failure in self.failures:
            grouped.setdefault(failure.label, []).append(failure.error or "Unknown error")
        return grouped

    def summary_messages(self) -> List[str]:
        """Success and failure announcements, kept apart for display."""
        messages = []
        if self.success_count:
            plural = "s" if self.success_count > 1 else ""
            messages.append(f"Saved {self.success_count} change{plural}.")
        failures = self.failures
        if failures:
            lines = "\n".join(
                f"• {failure.label}: {failure.error or 'Unknown error'}" for failure in failures
            )
            messages.append(f"Failed to apply {len(failures)} change(s):\n{lines}")
        return messages


class GuardReport(BaseModel):
    destuffing_blocked: List[str] = Field(default_factory=list)
    cargo_release_blocked: List[str] = Field(default_factory=list)

    @property
    def is_blocked(self) -> bool:
        return bool(self.destuffing_blocked or self.cargo_release_blocked)


class ExecutionCheck(BaseModel):
    allowed: bool
    reason: Optional[str] = None


class PlanGuardResponse(BaseModel):
    plan_id: str
    guards: GuardReport
    hints: List[str] = Field(default_factory=list)
    execution: ExecutionCheck


class ReconcileRequest(BaseModel):
    """Live edit state: the order containers currently selected into the plan."""
    selected_container_ids: List[str] = Field(default_factory=list)


class ReconcileResponse(BaseModel):
    report: ReconciliationReport
    success_count: int
    failures: Dict[str, List[str]] = Field(default_factory=dict)
    messages: List[str] = Field(default_factory=list)
    plan: PlanRead
    outstanding_changes: List[ChangeRecord] = Field(default_factory=list)
