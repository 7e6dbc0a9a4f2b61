"""Forensic result classifier — infers success or failure from a tool's output.

Most front-ends never report a structured success flag, so the verdict is
read out of free text. Steps run in order of confidence and the first one
that fires decides:

1. explicit error flag
2. interrupted
3. exit code (structured, or for shell tools inferred from "exit code: N"
   phrasings)
4. failure phrase in stderr
5. failure phrase in stdout, shell tools only
6. category-specific success

Every phrase match in steps 4-5 is negated by FALSE_POSITIVES. Failures from
steps 1, 3, 4 and 5 are relabelled RATELIMITED when the text reads like quota
exhaustion.
"""

from __future__ import annotations

import logging
import re

from moodring.classifier import (
    GIT_COMMIT,
    GIT_PUSH,
    PATTERN_KEYS,
    command_text,
    file_basename,
    first_value,
    is_build_command,
    is_install_command,
    is_read_tool,
    is_search_tool,
    is_shell_tool,
    is_test_command,
    is_web_tool,
    tool_category,
    truncate,
)
from moodring.models import ActivityState, ClassificationResult, StructuralMeta

logger = logging.getLogger(__name__)

STDOUT_ERROR_PATTERNS = [
    re.compile(r"\bcommand not found\b", re.IGNORECASE),
    re.compile(r"\bno such file or directory\b", re.IGNORECASE),
    re.compile(r"\bpermission denied\b", re.IGNORECASE),
    re.compile(r"\bsegmentation fault\b", re.IGNORECASE),
    re.compile(r"\bsyntax error\b", re.IGNORECASE),
    re.compile(r"\bENOENT\b"),
    re.compile(r"\bENOTDIR\b"),
    re.compile(r"\bEACCES\b"),
    re.compile(r"\bEPERM\b"),
    re.compile(r"\bFATAL\b"),
    re.compile(r"\bPANIC\b", re.IGNORECASE),
    re.compile(r"\bUnhandledPromiseRejection\b"),
    re.compile(r"\bTraceback \(most recent call last\)"),
    re.compile(r"\bat Object\.<anonymous>.*\n\s+at "),
    re.compile(r"\bCannot find module\b"),
    re.compile(r"\bModuleNotFoundError\b"),
    re.compile(r"\bImportError\b"),
    re.compile(r"\bCompilation failed\b", re.IGNORECASE),
    re.compile(r"\bbuild failed\b", re.IGNORECASE),
    re.compile(r"\btests? failed\b", re.IGNORECASE),
    re.compile(r"\bfailed with exit code\b", re.IGNORECASE),
    re.compile(r"\bnpm ERR!"),
    re.compile(r"\bcargo error\b", re.IGNORECASE),
    re.compile(r"\brustc.*error\[E\d+\]"),
    re.compile(r"\bCONFLICT\b"),
    re.compile(r"\bAutomatic merge failed\b", re.IGNORECASE),
    re.compile(r"\bfix conflicts and then commit\b", re.IGNORECASE),
]

STDERR_ERROR_PATTERNS = [
    re.compile(r"\berror\b", re.IGNORECASE),
    re.compile(r"\bfatal\b", re.IGNORECASE),
    re.compile(r"\bfailed\b", re.IGNORECASE),
    re.compile(r"\bENOENT\b"),
    re.compile(r"\bEACCES\b"),
    re.compile(r"\bcommand not found\b", re.IGNORECASE),
    re.compile(r"\bpermission denied\b", re.IGNORECASE),
    re.compile(r"\bsegmentation fault\b", re.IGNORECASE),
    re.compile(r"\bpanic\b", re.IGNORECASE),
]

# Scary-looking text that is not a failure. Checked after a positive match.
FALSE_POSITIVES = [
    re.compile(r"\b0 errors?\b", re.IGNORECASE),
    re.compile(r"\bno errors?\b", re.IGNORECASE),
    re.compile(r"\berrors?:\s*0\b", re.IGNORECASE),
    re.compile(r"error handling", re.IGNORECASE),
    re.compile(r"error\.(js|ts|py)\b", re.IGNORECASE),
    re.compile(r"stderr", re.IGNORECASE),
    re.compile(r"\.error\s*[=(]"),
    re.compile(r"error_count.*0", re.IGNORECASE),
    re.compile(r"warning", re.IGNORECASE),
    re.compile(r"\bno conflicts?\b", re.IGNORECASE),
]

RATE_LIMIT_PATTERNS = [
    re.compile(r"\brate.?limit", re.IGNORECASE),
    re.compile(r"\busage.?limit", re.IGNORECASE),
    re.compile(r"\btoo many requests\b", re.IGNORECASE),
    re.compile(r"\b429\b.*\b(error|status|rejected|failed)\b", re.IGNORECASE),
    re.compile(r"\b(error|status|http)\b.*\b429\b", re.IGNORECASE),
    re.compile(r"\bquota.?exceeded\b", re.IGNORECASE),
    re.compile(r"\b(at|over)\s+capacity\b", re.IGNORECASE),
    re.compile(r"\b(server|model|system)\s+(is\s+)?overloaded\b", re.IGNORECASE),
    re.compile(r"\bretry.?after\s+\d", re.IGNORECASE),
    re.compile(r"\bthrottled\b", re.IGNORECASE),
    re.compile(r"\bconcurrency.?limit", re.IGNORECASE),
]

RATE_LIMIT_FALSE_POSITIVES = [
    re.compile(r"\bthrottle\s*[=(]", re.IGNORECASE),
    re.compile(r"\bthrottle\.js\b", re.IGNORECASE),
    re.compile(r"useThrottle", re.IGNORECASE),
    re.compile(r"import.*throttle", re.IGNORECASE),
    re.compile(r"require.*throttle", re.IGNORECASE),
    re.compile(r"\boverload(ed|ing)?\s+(function|method|operator)", re.IGNORECASE),
    re.compile(r"\boperator\s+overload", re.IGNORECASE),
    re.compile(r"\bcapacity\s*(plan|test|check|monitor|report)", re.IGNORECASE),
    re.compile(r"\b(disk|memory|storage)\s+capacity\b", re.IGNORECASE),
]

EXIT_CODE = re.compile(r"(?:exit code|exited with|returned)[:=\s]+(\d+)", re.IGNORECASE)

MERGE_CONFLICT = [
    re.compile(r"\bCONFLICT\s+\(.*\):"),
    re.compile(r"\bAutomatic merge failed\b", re.IGNORECASE),
    re.compile(r"\bfix conflicts and then commit\b", re.IGNORECASE),
]

TEST_COUNTS = [
    re.compile(r"(\d+)\s+(?:tests?|specs?)\s+passed", re.IGNORECASE),
    re.compile(r"(\d+)\s+passing\b", re.IGNORECASE),
    re.compile(r"(\d+)\s+passed\b", re.IGNORECASE),
]

GIT_ANY = re.compile(r"\bgit\s", re.IGNORECASE)
GIT_MERGE = re.compile(r"\bgit\s+(merge|pull|rebase)\b", re.IGNORECASE)

# Ordered (pattern, detail) pairs for failure summaries
ERROR_DETAILS = [
    (re.compile(r"command not found", re.IGNORECASE), "command not found"),
    (re.compile(r"permission denied", re.IGNORECASE), "permission denied"),
    (re.compile(r"no such file or directory", re.IGNORECASE), "file not found"),
    (re.compile(r"segmentation fault", re.IGNORECASE), "segfault!"),
    (re.compile(r"ENOENT"), "missing file/path"),
    (re.compile(r"syntax error", re.IGNORECASE), "syntax error"),
]
LATE_ERROR_DETAILS = [
    (re.compile(r"Cannot find module|ModuleNotFound", re.IGNORECASE), "missing module"),
    (re.compile(r"Compilation failed|build failed", re.IGNORECASE), "build broke"),
    (re.compile(r"tests? failed|\d+\s+failed", re.IGNORECASE), "tests failed"),
    (re.compile(r"npm ERR!", re.IGNORECASE), "npm error"),
]
EXCEPTION_IN_STDOUT = re.compile(r"Traceback|at Object\.<anonymous>|Error:")


def looks_like_error(text: str, patterns: list[re.Pattern]) -> bool:
    """Positive match against ``patterns``, then negate on any false positive."""
    if not text:
        return False
    if not any(p.search(text) for p in patterns):
        return False
    return not any(p.search(text) for p in FALSE_POSITIVES)


def looks_like_rate_limit(stdout: str, stderr: str) -> bool:
    combined = (stdout or "") + (stderr or "")
    if not any(p.search(combined) for p in RATE_LIMIT_PATTERNS):
        return False
    return not any(p.search(combined) for p in RATE_LIMIT_FALSE_POSITIVES)


def is_merge_conflict(stdout: str, stderr: str) -> bool:
    combined = (stdout or "") + (stderr or "")
    return any(p.search(combined) for p in MERGE_CONFLICT)


def extract_exit_code(stdout: str) -> int | None:
    """Pull an exit code out of text like "Exit code: 2"."""
    match = EXIT_CODE.search(stdout or "")
    return int(match.group(1)) if match else None


def error_detail(stdout: str, stderr: str) -> str:
    """Short, friendly summary of what went wrong."""
    combined = (stdout or "") + (stderr or "")
    if is_merge_conflict(stdout, stderr):
        return "merge conflict!"
    for pattern, detail in ERROR_DETAILS:
        if pattern.search(combined):
            return detail
    if EXCEPTION_IN_STDOUT.search(stdout or ""):
        return "exception thrown"
    for pattern, detail in LATE_ERROR_DETAILS:
        if pattern.search(combined):
            return detail
    return "something went wrong"


def _line_count(text: str) -> int:
    return len(text.split("\n")) if text else 0


def edit_delta(tool_input: dict) -> StructuralMeta | None:
    """Lines added/removed by an edit, from the old/new text it carries."""
    edits = tool_input.get("edits")
    if isinstance(edits, list) and edits:
        pairs = [e for e in edits if isinstance(e, dict)]
    else:
        pairs = [tool_input]

    added = removed = 0
    seen = False
    for pair in pairs:
        old = first_value(pair, ("old_string", "old_str"))
        new = first_value(pair, ("new_string", "new_str", "content"))
        if old or new:
            seen = True
            removed += _line_count(old)
            added += _line_count(new)
    return StructuralMeta(added_lines=added, removed_lines=removed) if seen else None


def _shell_success(
    tool_input: dict, stdout: str, stderr: str
) -> tuple[ActivityState, str]:
    cmd = command_text(tool_input)

    if is_test_command(cmd):
        for pattern in TEST_COUNTS:
            match = pattern.search(stdout)
            if match:
                return ActivityState.RELIEVED, f"{match.group(1)} tests passed"
        return ActivityState.RELIEVED, "tests passed"
    if is_build_command(cmd):
        return ActivityState.RELIEVED, "build succeeded"
    if GIT_ANY.search(cmd):
        if is_merge_conflict(stdout, stderr):
            return ActivityState.ERROR, "merge conflict!"
        if GIT_PUSH.search(cmd):
            return ActivityState.PROUD, "pushed!"
        if GIT_COMMIT.search(cmd):
            return ActivityState.PROUD, "committed"
        if GIT_MERGE.search(cmd):
            return ActivityState.SATISFIED, "merged clean"
        return ActivityState.RELIEVED, "git done"
    if is_install_command(cmd):
        return ActivityState.RELIEVED, "installed"
    return ActivityState.RELIEVED, "command succeeded"


def _success(
    tool_name: str, tool_input: dict, stdout: str, stderr: str
) -> ClassificationResult:
    if tool_category(tool_name) == "edit":
        base = file_basename(tool_input)
        meta = edit_delta(tool_input)
        detail = f"saved {base}" if base else "code written"
        if meta is not None:
            detail = f"{detail} (+{meta.added_lines} -{meta.removed_lines})"
        return ClassificationResult(ActivityState.PROUD, truncate(detail), structural_meta=meta)
    if is_read_tool(tool_name):
        base = file_basename(tool_input)
        return ClassificationResult(ActivityState.SATISFIED, truncate(f"read {base}" if base else "got it"))
    if is_search_tool(tool_name):
        pattern = first_value(tool_input, PATTERN_KEYS)
        detail = f'found "{truncate(pattern, 20)}"' if pattern else "got it"
        return ClassificationResult(ActivityState.SATISFIED, truncate(detail))
    if is_web_tool(tool_name):
        return ClassificationResult(ActivityState.SATISFIED, "search complete")
    if is_shell_tool(tool_name):
        state, detail = _shell_success(tool_input, stdout, stderr)
        return ClassificationResult(state, truncate(detail))
    return ClassificationResult(ActivityState.SATISFIED, "step complete")


def _failure(stdout: str, stderr: str, detail: str | None = None) -> ClassificationResult:
    if looks_like_rate_limit(stdout, stderr):
        return ClassificationResult(ActivityState.RATELIMITED, "usage limit")
    return ClassificationResult(ActivityState.ERROR, truncate(detail or error_detail(stdout, stderr)))


def classify_result(
    tool_name: str | None,
    tool_input: dict | None,
    result_text: str | None,
    error_flag: bool = False,
    *,
    stderr: str | None = "",
    interrupted: bool = False,
    exit_code: int | None = None,
) -> ClassificationResult:
    """Classify a finished tool invocation. Never raises.

    ``result_text`` is the stdout-equivalent channel; ``stderr`` is kept apart
    because only shell tools echo diagnostics into stdout.
    """
    name = tool_name if isinstance(tool_name, str) else ""
    params = tool_input if isinstance(tool_input, dict) else {}
    stdout = result_text if isinstance(result_text, str) else ""
    errout = stderr if isinstance(stderr, str) else ""

    try:
        if error_flag:
            return _failure(stdout, errout)
        if interrupted:
            return ClassificationResult(ActivityState.ERROR, "interrupted")

        code = exit_code if isinstance(exit_code, int) else None
        if code is None and is_shell_tool(name):
            code = extract_exit_code(stdout)
        if code is not None and code != 0:
            detail = error_detail(stdout, errout)
            if detail == "something went wrong":
                detail = f"exit {code}"
            return _failure(stdout, errout, detail)

        if looks_like_error(errout, STDERR_ERROR_PATTERNS):
            return _failure(stdout, errout)
        if is_shell_tool(name) and looks_like_error(stdout, STDOUT_ERROR_PATTERNS):
            return _failure(stdout, errout)

        return _success(name, params, stdout, errout)
    except Exception as e:
        logger.debug("Result classification failed for %r: %s", name, e)
        return ClassificationResult(
            ActivityState.SATISFIED,
            "step complete",
            diagnostic=f"classify_result failed: {e}",
        )
