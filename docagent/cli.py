"""
DocAgent CLI - Talk to the copilot backend from a terminal.

Commands:
    docagent chat "Summarize the selection"     Run one agent turn and print it
    docagent replay turn.sse                    Re-run a recorded SSE stream offline
"""

import argparse
import asyncio
import dataclasses
import json
import logging
import sys
from pathlib import Path
from typing import Any, Optional

from .config import ClientConfig
from .dispatcher import EventDispatcher, TurnListener
from .exceptions import DocAgentError
from .models import Message, StatusNotice, TaskPlan, ToolInvocation
from .streaming import iter_events
from .tools import CapabilityRegistry


class ConsoleListener(TurnListener):
    """Prints a turn as it streams."""

    def __init__(self, out: Any = None):
        self.out = out or sys.stdout

    def on_thinking(self, message: Message, text: str) -> None:
        print(f"  ~ {text}", file=self.out)

    def on_content(self, message: Message, delta: str, text: str) -> None:
        self.out.write(delta)
        self.out.flush()

    def on_tool_update(self, message: Message, invocation: ToolInvocation) -> None:
        print(f"\n  [{invocation.status.value}] {invocation.name}", file=self.out)

    def on_checkpoint(self, message: Message) -> None:
        print("\n  ----", file=self.out)

    def on_plan_update(self, plan: TaskPlan) -> None:
        done = sum(1 for t in plan.tasks if t.status.value in ("completed", "failed", "skipped"))
        print(f"\n  plan {plan.title or plan.id}: {done}/{plan.total} ({plan.status.value})", file=self.out)

    def on_status(self, notice: StatusNotice) -> None:
        print(f"\n  ({notice.message})", file=self.out)

    def on_error(self, message: Message, error: str) -> None:
        print(f"\nError: {error}", file=sys.stderr)


def _load_config(args: argparse.Namespace) -> ClientConfig:
    config = ClientConfig.from_yaml(args.config) if args.config else ClientConfig.from_env()
    if getattr(args, "backend", None):
        config = dataclasses.replace(config, base_url=args.backend)
    if not args.verbose:
        logging.getLogger("docagent").setLevel(config.log_level.upper())
    return config


async def _chat(args: argparse.Namespace) -> int:
    from .client import AsyncDocAgentClient
    from .session import Session, SessionOrchestrator

    config = _load_config(args)
    session = Session(mode=args.mode, selected_agent_id=args.agent)
    async with AsyncDocAgentClient(config=config) as client:
        orchestrator = SessionOrchestrator(
            session, client, CapabilityRegistry(), listener=ConsoleListener(), config=config
        )
        reply = await orchestrator.send(args.message)
    print()
    if reply.sources:
        print("\nSources:")
        for i, src in enumerate(reply.sources, 1):
            print(f"  [{i}] {src.title}" + (f" <{src.url}>" if src.url else ""))
    if session.active_plan and session.active_plan.summary:
        print(f"\n{session.active_plan.summary}")
    return 1 if reply.role.value == "error" else 0


def cmd_chat(args: argparse.Namespace) -> None:
    """Send one message and print the streamed turn."""
    try:
        code = asyncio.run(_chat(args))
    except DocAgentError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)
    except KeyboardInterrupt:
        sys.exit(130)
    sys.exit(code)


async def _replay(path: Path, listener: Optional[TurnListener]) -> Message:
    message = Message.assistant()
    dispatcher = EventDispatcher(message, CapabilityRegistry(), listener=listener)
    with open(path, "rb") as f:
        for event in iter_events(iter(lambda: f.read(4096), b"")):
            state = await dispatcher.dispatch(event)
            if state.is_terminal:
                break
    dispatcher.finish()
    return message


def cmd_replay(args: argparse.Namespace) -> None:
    """Feed a recorded SSE stream through the dispatcher without a backend."""
    path = Path(args.file)
    if not path.exists():
        print(f"Error: File not found: {path}", file=sys.stderr)
        sys.exit(1)
    listener = None if args.json else ConsoleListener()
    message = asyncio.run(_replay(path, listener))
    if args.json:
        print(json.dumps(message.to_dict(), indent=2, default=str))
    else:
        print()


def main() -> None:
    parser = argparse.ArgumentParser(
        prog="docagent",
        description="DocAgent - streaming agent sessions for document editors",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    parser.add_argument("--config", help="Path to a YAML config file")
    subparsers = parser.add_subparsers(dest="command", help="Commands")

    chat_parser = subparsers.add_parser("chat", help="Send a message to the agent")
    chat_parser.add_argument("message", help="Message text")
    chat_parser.add_argument("--mode", choices=["ask", "agent"], default="ask", help="Conversation mode")
    chat_parser.add_argument("--agent", help="Agent id to route the request to")
    chat_parser.add_argument("--backend", help="Backend URL (overrides config)")
    chat_parser.set_defaults(func=cmd_chat)

    replay_parser = subparsers.add_parser("replay", help="Replay a recorded SSE stream")
    replay_parser.add_argument("file", help="File containing raw SSE text")
    replay_parser.add_argument("--json", action="store_true", help="Print the resulting message as JSON")
    replay_parser.set_defaults(func=cmd_replay)

    args = parser.parse_args()
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(name)s %(levelname)s %(message)s",
    )

    if not getattr(args, "func", None):
        parser.print_help()
        sys.exit(0)
    args.func(args)


if __name__ == "__main__":
    main()
