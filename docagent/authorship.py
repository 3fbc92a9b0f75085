"""
DocAgent SDK - Authorship transactions around document edits.

Edits performed on behalf of the agent are bracketed by switching the
editor's current author to an AI identity and switching it back afterwards,
so tracked changes distinguish AI edits from the user's own.
"""

import asyncio
import inspect
import logging
from typing import Any, Awaitable, Callable, Optional, Protocol, TypeVar

logger = logging.getLogger("docagent.authorship")

T = TypeVar("T")

AI_AUTHOR = "AI Assistant"
DEFAULT_SETTLE_DELAY = 0.15


class AuthorshipHost(Protocol):
    """Host editor hooks. Either method may be a coroutine or a plain function."""

    def mark_author(self, identity: str) -> Any: ...

    def restore_author(self) -> Any: ...


async def _maybe_await(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value


class AuthorshipTransaction:
    """
    Runs edits as the AI author.

    ``restore_author`` is called exactly once per :meth:`run`, whether the
    edit returns, raises, or ``mark_author`` itself fails. The edit is never
    retried.
    """

    def __init__(
        self,
        host: AuthorshipHost,
        identity: str = AI_AUTHOR,
        settle_delay: float = DEFAULT_SETTLE_DELAY,
    ):
        self.host = host
        self.identity = identity
        self.settle_delay = settle_delay

    async def run(self, edit_fn: Callable[[], Awaitable[T]]) -> T:
        error: Optional[BaseException] = None
        value: Any = None
        try:
            await _maybe_await(self.host.mark_author(self.identity))
            value = await edit_fn()
        except Exception as e:
            error = e
        finally:
            try:
                # The host applies edits asynchronously; let it settle first
                if self.settle_delay > 0:
                    await asyncio.sleep(self.settle_delay)
            finally:
                await self._restore()

        if error is not None:
            raise error
        return value

    async def _restore(self) -> None:
        try:
            await _maybe_await(self.host.restore_author())
        except Exception:
            logger.exception("Failed to restore document author after AI edit")


async def with_authorship(
    host: AuthorshipHost,
    edit_fn: Callable[[], Awaitable[T]],
    identity: str = AI_AUTHOR,
    settle_delay: float = DEFAULT_SETTLE_DELAY,
) -> T:
    """Convenience wrapper running a single edit inside an authorship transaction."""
    return await AuthorshipTransaction(host, identity, settle_delay).run(edit_fn)
