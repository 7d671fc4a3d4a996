"""Claude CLI client.

All AI work is done by shelling out to the ``claude`` command-line tool, either
for one JSON result or for a stream of newline-delimited JSON events.
"""

from __future__ import annotations

import json
import logging
import os
import subprocess
import tempfile
from collections.abc import Iterator
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable

from fryler.config import AppConfig

logger = logging.getLogger(__name__)

# Set by a parent claude process; a child that inherits them refuses to start.
NESTING_ENV_VARS = ("CLAUDECODE", "CLAUDE_CODE_ENTRY_POINT")

TASK_INSTRUCTIONS = (
    "You are executing a task as part of a heartbeat cycle. "
    "Execute the following task thoroughly and return your results. "
    "Be concise but complete."
)


class ClaudeProcessError(RuntimeError):
    """The claude process exited with a non-zero status."""

    def __init__(self, exit_code: int, stderr: str) -> None:
        self.exit_code = exit_code
        self.stderr = stderr
        super().__init__(f"claude exited with code {exit_code}: {stderr}")


class ClaudeOutputError(ValueError):
    """The claude process produced output that holds no result object."""


@dataclass(slots=True)
class ClaudeResponse:
    session_id: str
    result: str
    cost_usd: float
    duration_ms: int
    num_turns: int
    is_error: bool


@dataclass(slots=True)
class AskOptions:
    session_id: str | None = None
    continue_session: bool = False
    max_turns: int | None = None
    model: str | None = None
    system_prompt: str | None = None
    inject_identity: bool = True
    no_session_persistence: bool = False
    cwd: str | None = None


def build_claude_env(base: dict[str, str] | None = None) -> dict[str, str]:
    """Copy of the environment without the nesting markers."""
    env = dict(os.environ if base is None else base)
    for name in NESTING_ENV_VARS:
        env.pop(name, None)
    return env


def _number(value: Any, default: float = 0) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def parse_claude_output(raw: str) -> ClaudeResponse:
    """Normalize ``--output-format json`` output: one object, or an array holding a result object."""
    parsed = json.loads(raw)
    if isinstance(parsed, list):
        found = next((item for item in parsed if isinstance(item, dict) and item.get("type") == "result"), None)
        if found is None:
            raise ClaudeOutputError("No result object found in claude JSON array output")
        result_obj: dict[str, Any] = found
    elif isinstance(parsed, dict):
        result_obj = parsed
    else:
        raise ClaudeOutputError(f"Unexpected claude output type: {type(parsed).__name__}")

    cost = result_obj.get("total_cost_usd", result_obj.get("cost_usd", 0))
    return ClaudeResponse(
        session_id=str(result_obj.get("session_id") or ""),
        result=str(result_obj.get("result") or ""),
        cost_usd=_number(cost),
        duration_ms=int(_number(result_obj.get("duration_ms", 0))),
        num_turns=int(_number(result_obj.get("num_turns", 0))),
        is_error=bool(result_obj.get("is_error", False)),
    )


class ClaudeClient:
    """Synchronous and streaming bridge to the claude CLI."""

    def __init__(self, config: AppConfig, identity_provider: Callable[[], str] | None = None) -> None:
        self._binary = config.claude.binary
        self._model = config.claude.model
        self._max_turns = config.claude.max_turns
        self._timeout = config.claude.timeout_seconds
        self._identity_provider = identity_provider

    @property
    def binary(self) -> str:
        return self._binary

    def _identity_context(self) -> str:
        if self._identity_provider is None:
            return ""
        return self._identity_provider()

    def build_args(self, prompt: str, output_format: str, options: AskOptions | None = None) -> list[str]:
        opts = options or AskOptions()
        args = ["-p", prompt, "--output-format", output_format, "--dangerously-skip-permissions"]
        # --print with stream-json requires --verbose.
        if output_format == "stream-json":
            args.append("--verbose")

        if opts.system_prompt:
            system_prompt = opts.system_prompt
            if opts.inject_identity:
                system_prompt = f"{self._identity_context()}\n\n{opts.system_prompt}"
            args.extend(["--system-prompt", system_prompt])
        elif opts.inject_identity:
            args.extend(["--system-prompt", self._identity_context()])

        if opts.continue_session:
            args.append("--continue")
        elif opts.session_id:
            args.extend(["--session-id", opts.session_id])

        args.extend(["--max-turns", str(opts.max_turns or self._max_turns)])
        args.extend(["--model", opts.model or self._model])
        if opts.no_session_persistence:
            args.append("--no-session-persistence")
        return args

    @staticmethod
    def _cwd(options: AskOptions | None) -> str:
        if options is not None and options.cwd:
            return options.cwd
        return str(Path.home())

    def ask(self, prompt: str, options: AskOptions | None = None) -> ClaudeResponse:
        """One-shot query; raises ClaudeProcessError on a non-zero exit."""
        args = self.build_args(prompt, "json", options)
        logger.info("claude ask", extra={"prompt": prompt[:100], "args_count": len(args)})
        completed = subprocess.run(
            [self._binary, *args],
            capture_output=True,
            text=True,
            env=build_claude_env(),
            cwd=self._cwd(options),
            timeout=self._timeout,
            check=False,
        )
        if completed.returncode != 0:
            logger.error("claude process exited with error", extra={"exit_code": completed.returncode, "stderr": completed.stderr})
            raise ClaudeProcessError(completed.returncode, completed.stderr)

        response = parse_claude_output(completed.stdout)
        logger.info(
            "claude ask complete",
            extra={
                "session_id": response.session_id,
                "cost_usd": response.cost_usd,
                "duration_ms": response.duration_ms,
                "num_turns": response.num_turns,
                "is_error": response.is_error,
            },
        )
        return response

    def ask_streaming(self, prompt: str, options: AskOptions | None = None) -> Iterator[dict[str, Any]]:
        """Yield stream-json events as they arrive.

        Malformed lines are logged and skipped. A non-zero exit raises
        ClaudeProcessError once every event has been yielded.
        """
        args = self.build_args(prompt, "stream-json", options)
        logger.info("claude ask_streaming", extra={"prompt": prompt[:100]})
        with tempfile.TemporaryFile(mode="w+", encoding="utf-8") as stderr_file:
            proc = subprocess.Popen(
                [self._binary, *args],
                stdout=subprocess.PIPE,
                stderr=stderr_file,
                text=True,
                env=build_claude_env(),
                cwd=self._cwd(options),
            )
            finished = False
            try:
                assert proc.stdout is not None
                for line in proc.stdout:
                    text = line.strip()
                    if not text:
                        continue
                    try:
                        event = json.loads(text)
                    except json.JSONDecodeError:
                        logger.warning("failed to parse stream-json line", extra={"line": text[:200]})
                        continue
                    if not isinstance(event, dict):
                        logger.warning("stream-json line is not an object", extra={"line": text[:200]})
                        continue
                    yield event
                exit_code = proc.wait()
                finished = True
            finally:
                if proc.stdout is not None:
                    proc.stdout.close()
                if not finished:
                    proc.kill()
                    proc.wait()

            if exit_code != 0:
                stderr_file.seek(0)
                stderr = stderr_file.read()
                logger.error("claude streaming process exited with error", extra={"exit_code": exit_code, "stderr": stderr})
                raise ClaudeProcessError(exit_code, stderr)
        logger.info("claude ask_streaming complete")

    def ask_for_task(self, task_description: str, context: str | None = None, cwd: str | None = None) -> ClaudeResponse:
        """Heartbeat task execution: identity + task instructions, no session persistence."""
        context_block = f"\n\n=== ADDITIONAL CONTEXT ===\n{context}" if context else ""
        system_prompt = f"{self._identity_context()}{context_block}\n\n=== TASK INSTRUCTIONS ===\n{TASK_INSTRUCTIONS}"
        logger.info("claude ask_for_task", extra={"task": task_description[:100], "cwd": cwd})
        return self.ask(
            task_description,
            AskOptions(
                system_prompt=system_prompt,
                inject_identity=False,
                no_session_persistence=True,
                cwd=cwd,
            ),
        )

    def login(self) -> int:
        """Run ``claude login`` interactively with the sanitized environment."""
        return subprocess.call([self._binary, "login"], env=build_claude_env())
