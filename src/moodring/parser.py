"""Hook payload parser — turns a hook's stdin JSON into a canonical Event."""

from __future__ import annotations

import json
import logging
import os

from moodring.models import Event, Phase, ToolResult

logger = logging.getLogger(__name__)

# Claude Code hook names, plus the lower-case aliases other adapters emit
HOOK_PHASES: dict[str, Phase] = {
    "pretooluse": Phase.PRE_TOOL,
    "tool_start": Phase.PRE_TOOL,
    "posttooluse": Phase.POST_TOOL,
    "tool_end": Phase.POST_TOOL,
    "userpromptsubmit": Phase.TURN_START,
    "turn_start": Phase.TURN_START,
    "stop": Phase.TURN_END,
    "sessionend": Phase.TURN_END,
    "session_end": Phase.TURN_END,
    "turn_end": Phase.TURN_END,
    "notification": Phase.NOTIFY,
    "waiting": Phase.NOTIFY,
    "subagentstart": Phase.SUBAGENT_START,
    "subagentstop": Phase.SUBAGENT_STOP,
}


class PayloadError(ValueError):
    """Hook input could not be turned into an Event."""


def resolve_phase(name: str | None) -> Phase | None:
    """Map a hook event name (any casing, canonical or Claude Code style) to a Phase."""
    if not name:
        return None
    key = str(name).strip().lower().replace("-", "_")
    try:
        return Phase(key)
    except ValueError:
        return HOOK_PHASES.get(key) or HOOK_PHASES.get(key.replace("_", ""))


def fallback_session_id() -> str:
    """Session id when the payload carries none: env var, then parent pid."""
    return os.environ.get("CLAUDE_SESSION_ID") or str(os.getppid())


def _as_text(value: object) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    if isinstance(value, list):
        # Content blocks: [{"type": "text", "text": "..."}]
        parts = []
        for item in value:
            if isinstance(item, dict):
                parts.append(str(item.get("text", "")))
            else:
                parts.append(str(item))
        return "\n".join(p for p in parts if p)
    return json.dumps(value) if isinstance(value, dict) else str(value)


def _parse_result(response: object) -> ToolResult:
    if isinstance(response, str):
        return ToolResult(stdout=response)
    if not isinstance(response, dict):
        return ToolResult()

    exit_code = response.get("exit_code", response.get("exitCode"))
    if isinstance(exit_code, bool) or not isinstance(exit_code, int):
        exit_code = None

    stdout = response.get("stdout")
    if stdout is None:
        stdout = response.get("output", response.get("content"))

    return ToolResult(
        stdout=_as_text(stdout),
        stderr=_as_text(response.get("stderr")),
        error_flag=bool(response.get("isError") or response.get("is_error")),
        interrupted=bool(response.get("interrupted")),
        exit_code=exit_code,
    )


def parse_event(data: dict, hook_event: str | None = None) -> Event:
    """Build an Event from a parsed hook payload.

    ``hook_event`` (the CLI argument) wins over ``hook_event_name`` in the
    payload. An unrecognised event that carries a ``tool_name`` is read as a
    pre_tool event. Raises PayloadError when no phase can be determined.
    """
    if not isinstance(data, dict):
        raise PayloadError("hook payload must be a JSON object")

    name = hook_event or data.get("hook_event_name")
    phase = resolve_phase(hook_event) or resolve_phase(data.get("hook_event_name"))
    if phase is None and data.get("tool_name"):
        # An event we do not know that names a tool still says what the agent is doing
        logger.debug("Unknown hook event %r with tool %r, treating as pre_tool", name, data["tool_name"])
        phase = Phase.PRE_TOOL
    if phase is None:
        raise PayloadError(f"unknown hook event: {name!r}")

    tool_input = data.get("tool_input")
    result = _parse_result(data.get("tool_response"))
    if data.get("is_error") or data.get("isError"):
        result = ToolResult(
            stdout=result.stdout,
            stderr=result.stderr,
            error_flag=True,
            interrupted=result.interrupted,
            exit_code=result.exit_code,
        )

    subagent_id = data.get("agent_id") or data.get("subagent_id")
    return Event(
        session_id=str(data.get("session_id") or fallback_session_id()),
        phase=phase,
        tool_name=str(data.get("tool_name") or ""),
        tool_input=tool_input if isinstance(tool_input, dict) else {},
        result=result,
        cwd=str(data.get("cwd") or ""),
        subagent_id=str(subagent_id) if subagent_id else None,
    )


def parse_payload(raw: str | bytes, hook_event: str | None = None) -> Event:
    """Parse raw stdin. Raises PayloadError on invalid JSON or shape.

    Bytes are decoded as UTF-8 with undecodable sequences replaced, so a
    stray byte in a command never reaches the database as a lone surrogate.
    """
    if isinstance(raw, bytes):
        raw = raw.decode("utf-8", "replace")
    try:
        data = json.loads(raw) if raw.strip() else {}
    except json.JSONDecodeError as e:
        raise PayloadError(f"invalid JSON: {e}") from e
    return parse_event(data, hook_event)
