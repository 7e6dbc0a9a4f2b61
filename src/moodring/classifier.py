"""Pattern classifier — maps a tool invocation to an activity state and detail.

Categories are an ordered rule table; the first rule whose predicate matches
the tool name resolves the event. Tool names cover Claude Code, Codex CLI,
OpenCode and OpenClaw naming.
"""

from __future__ import annotations

import logging
import posixpath
import re
from dataclasses import dataclass
from typing import Callable

from moodring.models import ActivityState, ClassificationResult

logger = logging.getLogger(__name__)

DETAIL_WIDTH = 40
ELLIPSIS = "..."

EDIT_TOOLS = re.compile(
    r"^(edit|multiedit|write|str_replace|create_file|file_edit|write_file|"
    r"create_file_with_contents|apply_diff|apply_patch|code_edit|insert_text|"
    r"replace_text|patch)$",
    re.IGNORECASE,
)
SHELL_TOOLS = re.compile(
    r"^(bash|shell|terminal|execute|run_command|run|exec|process|sh|cmd|"
    r"powershell|command|cli)$",
    re.IGNORECASE,
)
REVIEW_TOOLS = re.compile(r"diff|review|compare", re.IGNORECASE)
GENERIC_EDIT_TOOLS = re.compile(r"edit|replace|insert", re.IGNORECASE)
READ_TOOLS = re.compile(
    r"^(read|view|cat|file_read|read_file|get_file_contents|open_file)$",
    re.IGNORECASE,
)
SEARCH_TOOLS = re.compile(
    r"^(grep|glob|search|ripgrep|find|list|search_files|list_files|list_dir|"
    r"find_files|file_search|codebase_search)$",
    re.IGNORECASE,
)
WEB_TOOLS = re.compile(
    r"^(web_search|web_fetch|websearch|fetch|webfetch|browser|browse|"
    r"http_request|curl|canvas)$",
    re.IGNORECASE,
)
SUBAGENT_TOOLS = re.compile(
    r"^(task|agent|subagent|spawn_agent|delegate|codex_agent|sessions)$",
    re.IGNORECASE,
)
NAMESPACED_TOOL = re.compile(r"^mcp__", re.IGNORECASE)

TEST_COMMANDS = [
    re.compile(r"\b(jest|pytest|vitest|mocha|cypress|playwright|nosetests|tox)\b", re.IGNORECASE),
    re.compile(r"\.(test|spec)\.", re.IGNORECASE),
    re.compile(r"\b(npm|yarn|pnpm|bun|go|cargo|dotnet)\s+(run\s+)?tests?\b", re.IGNORECASE),
    re.compile(r"\b(rake|npx|composer)\s+test\b", re.IGNORECASE),
    re.compile(r"\bnode\s+(--test|test)\b", re.IGNORECASE),
    re.compile(r"\b(make|gradle|mvn|php\s+artisan)\s+test\b", re.IGNORECASE),
    re.compile(r"\bpython3?\s+-m\s+(pytest|unittest)\b", re.IGNORECASE),
]
INSTALL_COMMANDS = [
    re.compile(r"\b(npm|yarn|pnpm|bun)\s+(install|i|add)\b", re.IGNORECASE),
    re.compile(r"\b(pip|pip3|uv\s+pip|pipx)\s+(install|-r)\b", re.IGNORECASE),
    re.compile(r"\b(poetry|uv)\s+(add|install|sync)\b", re.IGNORECASE),
    re.compile(r"\bcargo\s+(build|add|install)\b", re.IGNORECASE),
    re.compile(r"\b(apt|apt-get|apk)\s+(install|add)\b", re.IGNORECASE),
    re.compile(r"\b(brew\s+install|homebrew)\b", re.IGNORECASE),
    re.compile(r"\bgo\s+(get|install)\b", re.IGNORECASE),
    re.compile(r"\bcomposer\s+(require|install)\b", re.IGNORECASE),
    re.compile(r"\bdotnet\s+(add|restore)\b", re.IGNORECASE),
]
BUILD_COMMANDS = re.compile(
    r"\b(build|compile|tsc|webpack|vite|esbuild|rollup|make)\b", re.IGNORECASE
)
GIT_PUBLISH = re.compile(r"\bgit\s+(commit|push|tag)\b", re.IGNORECASE)
GIT_PUSH = re.compile(r"\bgit\s+push\b", re.IGNORECASE)
GIT_TAG = re.compile(r"\bgit\s+tag\b", re.IGNORECASE)
GIT_COMMIT = re.compile(r"\bgit\s+commit\b", re.IGNORECASE)

PATH_KEYS = ("file_path", "path", "target_file", "notebook_path")
COMMAND_KEYS = ("command", "cmd", "input")
PATTERN_KEYS = ("pattern", "query", "search_term")


# ---------------------------------------------------------------------------
# Input helpers
# ---------------------------------------------------------------------------


def truncate(text: str, width: int = DETAIL_WIDTH) -> str:
    """Clip text to ``width`` characters, marking the cut with an ellipsis."""
    text = str(text or "")
    if len(text) <= width:
        return text
    return text[: max(0, width - len(ELLIPSIS))] + ELLIPSIS


def first_value(tool_input: dict | None, keys: tuple[str, ...]) -> str:
    """Return the first non-empty string value among ``keys``."""
    if not isinstance(tool_input, dict):
        return ""
    for key in keys:
        value = tool_input.get(key)
        if isinstance(value, str) and value:
            return value
    return ""


def file_basename(tool_input: dict | None) -> str:
    # Windows paths arrive from some front-ends
    path = first_value(tool_input, PATH_KEYS).replace("\\", "/")
    return posixpath.basename(path.rstrip("/")) if path else ""


def command_text(tool_input: dict | None) -> str:
    return first_value(tool_input, COMMAND_KEYS)


# ---------------------------------------------------------------------------
# Category predicates
# ---------------------------------------------------------------------------


def is_edit_tool(tool_name: str) -> bool:
    return bool(EDIT_TOOLS.match(tool_name or ""))


def is_shell_tool(tool_name: str) -> bool:
    return bool(SHELL_TOOLS.match(tool_name or ""))


def is_review_tool(tool_name: str) -> bool:
    return bool(REVIEW_TOOLS.search(tool_name or ""))


def is_generic_edit_tool(tool_name: str) -> bool:
    return bool(GENERIC_EDIT_TOOLS.search(tool_name or ""))


def is_read_tool(tool_name: str) -> bool:
    return bool(READ_TOOLS.match(tool_name or ""))


def is_search_tool(tool_name: str) -> bool:
    return bool(SEARCH_TOOLS.match(tool_name or ""))


def is_web_tool(tool_name: str) -> bool:
    return bool(WEB_TOOLS.match(tool_name or ""))


def is_subagent_tool(tool_name: str) -> bool:
    return bool(SUBAGENT_TOOLS.match(tool_name or ""))


def is_namespaced_tool(tool_name: str) -> bool:
    return bool(NAMESPACED_TOOL.match(tool_name or ""))


def is_test_command(cmd: str) -> bool:
    return any(p.search(cmd or "") for p in TEST_COMMANDS)


def is_install_command(cmd: str) -> bool:
    return any(p.search(cmd or "") for p in INSTALL_COMMANDS)


def is_build_command(cmd: str) -> bool:
    return bool(BUILD_COMMANDS.search(cmd or ""))


# ---------------------------------------------------------------------------
# Resolvers
# ---------------------------------------------------------------------------


def _resolve_edit(tool_name: str, tool_input: dict) -> tuple[ActivityState, str]:
    base = file_basename(tool_input)
    return ActivityState.CODING, f"editing {base}" if base else "writing code"


def _resolve_shell(tool_name: str, tool_input: dict) -> tuple[ActivityState, str]:
    cmd = command_text(tool_input)
    short = truncate(cmd)

    if is_test_command(cmd):
        return ActivityState.TESTING, short or "running tests"
    if is_install_command(cmd):
        return ActivityState.INSTALLING, short or "installing"
    if GIT_PUBLISH.search(cmd):
        if GIT_PUSH.search(cmd):
            fallback = "pushing to remote"
        elif GIT_TAG.search(cmd):
            fallback = "tagging release"
        else:
            fallback = "committing changes"
        return ActivityState.COMMITTING, short or fallback
    return ActivityState.EXECUTING, short or "running command"


def _resolve_review(tool_name: str, tool_input: dict) -> tuple[ActivityState, str]:
    return ActivityState.REVIEWING, tool_name or "reviewing"


def _resolve_read(tool_name: str, tool_input: dict) -> tuple[ActivityState, str]:
    base = file_basename(tool_input)
    return ActivityState.READING, f"reading {base}" if base else "reading"


def _resolve_search(tool_name: str, tool_input: dict) -> tuple[ActivityState, str]:
    pattern = first_value(tool_input, PATTERN_KEYS)
    return ActivityState.SEARCHING, f'looking for "{pattern}"' if pattern else "searching"


def _resolve_web(tool_name: str, tool_input: dict) -> tuple[ActivityState, str]:
    query = truncate(first_value(tool_input, ("query", "url")), 30)
    return ActivityState.SEARCHING, f'searching "{query}"' if query else "searching the web"


def _resolve_subagent(tool_name: str, tool_input: dict) -> tuple[ActivityState, str]:
    desc = truncate(first_value(tool_input, ("description", "prompt")), 30)
    return ActivityState.SUBAGENT, desc or "spawning subagent"


def _resolve_namespaced(tool_name: str, tool_input: dict) -> tuple[ActivityState, str]:
    parts = tool_name.split("__")
    server = parts[1] if len(parts) > 1 and parts[1] else "external"
    tool = parts[2] if len(parts) > 2 else ""
    return ActivityState.EXECUTING, f"{server}: {tool}"


def _resolve_default(tool_name: str, tool_input: dict) -> tuple[ActivityState, str]:
    return ActivityState.THINKING, tool_name or ""


@dataclass(frozen=True)
class Rule:
    category: str
    matches: Callable[[str], bool]
    resolve: Callable[[str, dict], tuple[ActivityState, str]]


# Order is precedence. Exact edit names come before the substring review
# rule, which in turn comes before the substring generic-edit rule.
RULES: tuple[Rule, ...] = (
    Rule("edit", is_edit_tool, _resolve_edit),
    Rule("shell", is_shell_tool, _resolve_shell),
    Rule("review", is_review_tool, _resolve_review),
    Rule("generic_edit", is_generic_edit_tool, _resolve_edit),
    Rule("read", is_read_tool, _resolve_read),
    Rule("search", is_search_tool, _resolve_search),
    Rule("web", is_web_tool, _resolve_web),
    Rule("subagent", is_subagent_tool, _resolve_subagent),
    Rule("namespaced", is_namespaced_tool, _resolve_namespaced),
    Rule("default", lambda name: True, _resolve_default),
)


def match_rule(tool_name: str, rules: tuple[Rule, ...] = RULES) -> Rule:
    """Return the first rule whose predicate accepts ``tool_name``."""
    for rule in rules:
        if rule.matches(tool_name):
            return rule
    return rules[-1]


def tool_category(tool_name: str) -> str:
    """Category name of a tool: edit, shell, review, read, search, web, ..."""
    category = match_rule(tool_name or "").category
    return "edit" if category == "generic_edit" else category


def classify(tool_name: str | None, tool_input: dict | None = None) -> ClassificationResult:
    """Classify a tool invocation. Never raises.

    Falls back to THINKING with the raw tool name when the input is malformed;
    the fallback carries a ``diagnostic`` so callers can tell it apart.
    """
    name = tool_name if isinstance(tool_name, str) else ""
    params = tool_input if isinstance(tool_input, dict) else {}
    try:
        rule = match_rule(name)
        state, detail = rule.resolve(name, params)
        return ClassificationResult(state=state, detail=truncate(detail))
    except Exception as e:
        logger.debug("Pattern classification failed for %r: %s", name, e)
        return ClassificationResult(
            state=ActivityState.THINKING,
            detail=truncate(name),
            diagnostic=f"classify failed: {e}",
        )
