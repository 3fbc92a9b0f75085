"""
DocAgent SDK - Correlating tool events with recorded invocations.

A tool call may be announced twice: once as a ``tool_result_request`` the
client executes, and again as a ``tool_call`` status report from the
backend. Matching is by id when the backend supplies one; older backends omit
ids, in which case the most recent running invocation with the same name is
used. That fallback is only unambiguous while at most one id-less invocation
per name is running, which the table checks and logs when violated.
"""

import logging
from dataclasses import dataclass
from typing import Any, Optional

from .models import ToolInvocation, ToolStatus

logger = logging.getLogger("docagent.correlation")


def parse_tool_status(value: Any) -> ToolStatus:
    """Map a backend status string onto :class:`ToolStatus` (default success)."""
    if value in ("error", "failed", "failure"):
        return ToolStatus.ERROR
    if value in ("running", "pending", "in_progress"):
        return ToolStatus.RUNNING
    return ToolStatus.SUCCESS


@dataclass
class ToolUpdate:
    """Outcome of applying one tool event to the table."""

    invocation: ToolInvocation
    created: bool = False
    completed: bool = False


class ToolInvocationTable:
    """
    In-memory table of a message's tool invocations, in creation order.

    The table writes through to the list it was given, normally
    ``Message.tool_invocations``.
    """

    def __init__(self, invocations: Optional[list[ToolInvocation]] = None):
        self._invocations = invocations if invocations is not None else []

    def __iter__(self):
        return iter(self._invocations)

    def __len__(self) -> int:
        return len(self._invocations)

    def find_by_id(self, tool_call_id: Optional[str]) -> Optional[ToolInvocation]:
        if not tool_call_id:
            return None
        for inv in self._invocations:
            if inv.id == tool_call_id:
                return inv
        return None

    def find_running_by_name(self, name: str) -> Optional[ToolInvocation]:
        for inv in reversed(self._invocations):
            if inv.name == name and inv.is_running:
                return inv
        return None

    def resolve(self, tool_call_id: Optional[str], name: str) -> Optional[ToolInvocation]:
        """Find the invocation an event refers to: by id, else latest running by name."""
        inv = self.find_by_id(tool_call_id)
        if inv is not None:
            return inv
        return self.find_running_by_name(name)

    def add(self, invocation: ToolInvocation) -> ToolInvocation:
        if invocation.id is None and invocation.is_running:
            clash = self.find_running_by_name(invocation.name)
            if clash is not None and clash.id is None:
                logger.warning(
                    "Two running '%s' calls without ids; name-based correlation is ambiguous",
                    invocation.name,
                )
        self._invocations.append(invocation)
        return invocation

    def start(self, tool_call_id: Optional[str], name: str, params: Optional[dict] = None) -> ToolInvocation:
        """Record a newly requested invocation in the running state."""
        return self.add(ToolInvocation(id=tool_call_id, name=name, params=params or {}))

    def apply_status_event(self, data: dict[str, Any]) -> ToolUpdate:
        """Apply a backend ``tool_call`` report.

        A matched invocation is only updated while it is running, so a late
        or duplicate report never reverts a terminal state. An unmatched
        report creates a new invocation carrying the reported status.
        """
        tool_call_id = data.get("id")
        name = data.get("name", "")
        status = parse_tool_status(data.get("status", "success"))

        inv = self.resolve(tool_call_id, name)
        if inv is None:
            inv = ToolInvocation(
                id=tool_call_id,
                name=name,
                params=data.get("params") or {},
                status=status,
                result=data.get("result"),
                error=data.get("error"),
            )
            self.add(inv)
            return ToolUpdate(inv, created=True, completed=inv.is_terminal)

        if inv.is_terminal:
            logger.debug("Ignoring tool_call for finished invocation %s (%s)", inv.id, inv.name)
            return ToolUpdate(inv)

        if status == ToolStatus.RUNNING:
            if data.get("params"):
                inv.params = data["params"]
            return ToolUpdate(inv)

        inv.complete(status == ToolStatus.SUCCESS, data.get("result"), data.get("error"))
        return ToolUpdate(inv, completed=True)
