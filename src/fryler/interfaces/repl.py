"""Interactive chat REPL with streamed output."""

from __future__ import annotations

import logging
import sys
from dataclasses import dataclass
from typing import Any, Callable, TextIO

from fryler.app import AppContext
from fryler.llm.client import AskOptions
from fryler.tasks.directives import apply_directives
from fryler.tasks.parser import parse_response, visible_prefix

logger = logging.getLogger(__name__)

CHAT_TITLE_PREFIX = "[chat] "


@dataclass(slots=True)
class ReplState:
    session_id: str | None = None
    has_exchanged: bool = False
    message_count: int = 0

    def reset(self) -> None:
        self.session_id = None
        self.has_exchanged = False
        self.message_count = 0


def _assistant_text(event: dict[str, Any]) -> str | None:
    message = event.get("message")
    if event.get("type") != "assistant" or not isinstance(message, dict):
        return None
    content = message.get("content")
    if not isinstance(content, list):
        return None
    return "".join(
        str(block.get("text", ""))
        for block in content
        if isinstance(block, dict) and block.get("type") == "text"
    )


def _print_help(out: TextIO) -> None:
    print("Commands:", file=out)
    print("  /new       Start a new conversation", file=out)
    print("  /session   Show current session ID", file=out)
    print("  /quit      Exit the REPL", file=out)
    print("  /help      Show this help", file=out)
    print(file=out)


class ChatRepl:
    def __init__(
        self,
        context: AppContext,
        session_id: str | None = None,
        input_fn: Callable[[str], str] = input,
        out: TextIO | None = None,
    ) -> None:
        self._context = context
        self._input = input_fn
        self._out = out or sys.stdout
        self.state = ReplState(session_id=session_id)

    def handle_slash_command(self, line: str) -> str:
        """Return ``quit``, ``handled`` or ``unknown``."""
        command = line.split()[0].lower()
        if command in {"/quit", "/exit"}:
            return "quit"
        if command == "/new":
            self.state.reset()
            print("Started new session.\n", file=self._out)
            return "handled"
        if command == "/session":
            print(f"Session: {self.state.session_id}" if self.state.session_id else "No active session", file=self._out)
            print(file=self._out)
            return "handled"
        if command == "/help":
            _print_help(self._out)
            return "handled"
        return "unknown"

    def _options(self) -> AskOptions:
        if self.state.has_exchanged:
            return AskOptions(continue_session=True)
        if self.state.session_id:
            return AskOptions(session_id=self.state.session_id)
        return AskOptions()

    def exchange(self, prompt: str) -> str:
        """Send one message, streaming the reply; returns the final raw result."""
        full_result = ""
        result_session_id = ""
        shown = 0
        self._out.write("\n")
        for event in self._context.claude.ask_streaming(prompt, self._options()):
            text = _assistant_text(event)
            if text is not None:
                visible = visible_prefix(text)
                # A new assistant turn after tool use starts its text over.
                if len(visible) < shown:
                    shown = 0
                if len(visible) > shown:
                    self._out.write(visible[shown:])
                    self._out.flush()
                    shown = len(visible)
            if event.get("type") == "result":
                full_result = str(event.get("result") or "")
                result_session_id = str(event.get("session_id") or "")

        parsed = parse_response(full_result)
        if shown == 0 and parsed.clean_text:
            self._out.write(parsed.clean_text)
        self._out.write("\n\n")

        if result_session_id:
            self._track_session(result_session_id, prompt)
        if full_result and parsed.has_directives:
            apply_directives(parsed, self._context.store, self._context.identity, self._context.outbox, source="repl")
        return full_result

    def _track_session(self, result_session_id: str, prompt: str) -> None:
        store = self._context.store
        if not self.state.session_id:
            self.state.session_id = result_session_id
            if store.get_session(result_session_id) is None:
                store.create_session(result_session_id, f"{CHAT_TITLE_PREFIX}{prompt[:80]}")
        elif store.get_session(self.state.session_id) is None:
            store.create_session(self.state.session_id, f"{CHAT_TITLE_PREFIX}{prompt[:80]}")
        self.state.has_exchanged = True
        self.state.message_count += 1
        store.update_session(self.state.session_id, self.state.message_count)

    def run(self) -> int:
        print("fryler interactive mode. Type /help for commands, /quit to exit.", file=self._out)
        if self.state.session_id:
            print(f"Resuming session: {self.state.session_id}", file=self._out)
        print(file=self._out)

        while True:
            try:
                line = self._input("fryler> ").strip()
            except (EOFError, KeyboardInterrupt):
                break
            if not line:
                continue
            if line.startswith("/"):
                handled = self.handle_slash_command(line)
                if handled == "quit":
                    break
                if handled == "unknown":
                    print(f"Unknown command: {line.split()[0]}. Type /help for commands.\n", file=self._out)
                continue
            try:
                self.exchange(line)
            except Exception as exc:  # noqa: BLE001
                logger.warning("repl exchange failed", extra={"error": str(exc)})
                print(f"\nError: {exc}\n", file=self._out)

        print("Goodbye.", file=self._out)
        return 0
