"""
DocAgent SDK - Task plan tracking.

For multi-step edits the agent declares a plan (``plan_created``) and then
reports progress on it. A session tracks at most one active plan; progress
events that arrive without a matching plan are ignored.
"""

import logging
from typing import Any, Optional

from .models import PlanStatus, Task, TaskPlan, TaskStatus

logger = logging.getLogger("docagent.plans")

_TASK_OUTCOMES = {
    "completed": TaskStatus.COMPLETED,
    "success": TaskStatus.COMPLETED,
    "failed": TaskStatus.FAILED,
    "error": TaskStatus.FAILED,
    "skipped": TaskStatus.SKIPPED,
}


class PlanTracker:
    """Applies plan events to the session's active plan."""

    def __init__(self, plan: Optional[TaskPlan] = None):
        self.plan = plan

    def _matches(self, data: dict[str, Any]) -> bool:
        if self.plan is None:
            return False
        plan_id = data.get("plan_id")
        return plan_id is None or str(plan_id) == self.plan.id

    def handle(self, event_type: str, data: dict[str, Any]) -> Optional[TaskPlan]:
        """Apply one plan event. Returns the plan if it changed, else None."""
        if event_type == "plan_created":
            return self.create(data)
        if not self._matches(data):
            logger.debug("Ignoring %s without an active plan", event_type)
            return None

        handler = {
            "plan_start": self.start,
            "task_start": self.start_task,
            "task_complete": self.complete_task,
            "plan_progress": self.record_progress,
            "plan_complete": self.complete,
        }.get(event_type)
        if handler is None:
            return None
        return handler(data)

    def create(self, data: dict[str, Any]) -> Optional[TaskPlan]:
        plan = TaskPlan.from_dict(data)
        if self.plan is not None and self.plan.id == plan.id:
            logger.warning("Plan %s already exists; ignoring duplicate plan_created", plan.id)
            return None
        # Tasks always start pending regardless of what the payload says
        for task in plan.tasks:
            task.status = TaskStatus.PENDING
        plan.status = PlanStatus.PENDING
        plan.progress = {"completed": 0, "failed": 0, "total": plan.total}
        self.plan = plan
        logger.info("Plan %s created with %d tasks", plan.id, plan.total)
        return plan

    def start(self, data: dict[str, Any]) -> Optional[TaskPlan]:
        if self.plan.status == PlanStatus.COMPLETED:
            return None
        self.plan.status = PlanStatus.IN_PROGRESS
        return self.plan

    def _task(self, data: dict[str, Any]) -> Optional[Task]:
        task_id = data.get("task_id") or data.get("id")
        task = self.plan.get_task(str(task_id)) if task_id is not None else None
        if task is None:
            logger.warning("Plan %s has no task %r", self.plan.id, task_id)
        return task

    def start_task(self, data: dict[str, Any]) -> Optional[TaskPlan]:
        task = self._task(data)
        if task is None or task.status != TaskStatus.PENDING:
            return None
        task.status = TaskStatus.IN_PROGRESS
        if self.plan.status == PlanStatus.PENDING:
            self.plan.status = PlanStatus.IN_PROGRESS
        return self.plan

    def complete_task(self, data: dict[str, Any]) -> Optional[TaskPlan]:
        task = self._task(data)
        if task is None:
            return None
        task.status = _TASK_OUTCOMES.get(data.get("status", "completed"), TaskStatus.COMPLETED)
        task.result = data.get("result", task.result)
        task.error = data.get("error", task.error)
        if task.status == TaskStatus.FAILED:
            logger.info("Plan %s task %s failed: %s", self.plan.id, task.id, task.error)
        self._sync_progress()
        return self.plan

    def record_progress(self, data: dict[str, Any]) -> Optional[TaskPlan]:
        progress = data.get("progress")
        if isinstance(progress, dict):
            self.plan.progress.update({k: int(v) for k, v in progress.items() if isinstance(v, (int, float))})
        return self.plan

    def complete(self, data: dict[str, Any]) -> Optional[TaskPlan]:
        self.record_progress(data)
        self.plan.status = PlanStatus.COMPLETED
        summary = self.summary_text()
        if data.get("summary"):
            summary = f"{summary}. {data['summary']}"
        self.plan.summary = summary
        logger.info("Plan %s complete: %s", self.plan.id, self.plan.summary)
        return self.plan

    def _sync_progress(self) -> None:
        self.plan.progress["completed"] = self.plan.count(TaskStatus.COMPLETED)
        self.plan.progress["failed"] = self.plan.count(TaskStatus.FAILED)
        self.plan.progress["total"] = self.plan.total

    def summary_text(self) -> str:
        """Human readable completion summary, always mentioning failures."""
        if self.plan is None:
            return ""
        progress = self.plan.progress
        completed = progress.get("completed", self.plan.count(TaskStatus.COMPLETED))
        failed = progress.get("failed", self.plan.count(TaskStatus.FAILED))
        total = progress.get("total", self.plan.total)
        text = f"Completed {completed} of {total} tasks"
        if failed:
            text += f" ({failed} failed)"
        return text
