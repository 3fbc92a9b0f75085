"""
DocAgent SDK - Capability registry for locally executed tools.

The backend asks the client to run tools against the open document
(``tool_result_request`` events). The host registers one handler per tool
name; handlers may be plain functions or coroutines and are awaited
uniformly by :meth:`CapabilityRegistry.execute`.

Usage:
    ```python
    registry = CapabilityRegistry()

    @registry.capability(description="Insert text at the cursor.")
    async def insert_text(text: str, format: str = "plain") -> dict:
        await editor.paste(text, format)
        return {"success": True, "message": "Text inserted"}

    result = await registry.execute("insert_text", {"text": "## Scope"})
    ```
"""

import inspect
import logging
from dataclasses import dataclass
from typing import Any, Callable, Iterable, Optional

from .models import ToolResult

logger = logging.getLogger("docagent.tools")

# Tools that change the document and therefore run inside an authorship transaction.
DOCUMENT_MUTATING_TOOLS = frozenset(
    {
        "insert_text",
        "replace_selection",
        "delete_selection",
        "fill_content_control",
        "add_comment",
        "add_footnote",
        "insert_table",
        "insert_image",
        "insert_page_break",
        "set_header_text",
        "set_footer_text",
        "add_table_of_contents",
        "add_table_of_figures",
    }
)


@dataclass
class Capability:
    """A named tool the backend may ask the client to execute."""

    name: str
    handler: Callable[..., Any]
    description: str = ""
    mutates_document: bool = False


class CapabilityRegistry:
    """Mapping from tool name to capability, queried through :meth:`execute`."""

    def __init__(self, capabilities: Optional[Iterable[Capability]] = None):
        self._capabilities: dict[str, Capability] = {}
        for cap in capabilities or []:
            self._capabilities[cap.name] = cap

    def register(
        self,
        name: str,
        handler: Callable[..., Any],
        description: str = "",
        mutates_document: Optional[bool] = None,
    ) -> Capability:
        """Register a handler under ``name``, replacing any previous one.

        When ``mutates_document`` is not given it defaults to membership in
        :data:`DOCUMENT_MUTATING_TOOLS`.
        """
        if mutates_document is None:
            mutates_document = name in DOCUMENT_MUTATING_TOOLS
        cap = Capability(
            name=name,
            handler=handler,
            description=description or handler.__doc__ or f"Tool: {name}",
            mutates_document=mutates_document,
        )
        self._capabilities[name] = cap
        return cap

    def capability(
        self,
        name: Optional[str] = None,
        description: str = "",
        mutates_document: Optional[bool] = None,
    ) -> Callable:
        """Decorator form of :meth:`register`. Returns the function unchanged."""

        def decorator(func: Callable[..., Any]) -> Callable[..., Any]:
            self.register(name or func.__name__, func, description, mutates_document)
            return func

        return decorator

    def get(self, name: str) -> Optional[Capability]:
        return self._capabilities.get(name)

    @property
    def names(self) -> list[str]:
        return list(self._capabilities)

    def __contains__(self, name: object) -> bool:
        return name in self._capabilities

    def __len__(self) -> int:
        return len(self._capabilities)

    def mutates_document(self, name: str) -> bool:
        cap = self._capabilities.get(name)
        return bool(cap and cap.mutates_document)

    async def execute(self, name: str, params: Optional[dict[str, Any]] = None) -> ToolResult:
        """Run a capability and normalize its outcome.

        Never raises for handler failures: an exception, or a dict result with
        ``success: False``, becomes an unsuccessful :class:`ToolResult`.
        """
        cap = self._capabilities.get(name)
        if cap is None:
            return ToolResult(success=False, error=f"Unknown tool: {name}")

        try:
            raw = cap.handler(**(params or {}))
            if inspect.isawaitable(raw):
                raw = await raw
        except Exception as e:
            logger.exception("Tool execution failed: %s", name)
            return ToolResult(success=False, error=str(e))

        return _normalize_result(raw)


def _normalize_result(raw: Any) -> ToolResult:
    if isinstance(raw, ToolResult):
        return raw
    if isinstance(raw, dict) and isinstance(raw.get("success"), bool):
        return ToolResult(success=raw["success"], result=raw, error=raw.get("error"))
    return ToolResult(success=True, result=raw)
