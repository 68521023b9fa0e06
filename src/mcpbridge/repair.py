"""Heuristic argument repair for tool calls that arrive with no arguments.

Some models emit a call to a well-known tool with an empty argument
object.  For the handful of tools listed in :data:`REPAIRABLE_TOOLS`
this module scrapes likely values out of the user's original message.
It is a narrow fallback, not argument inference: unknown tools and
messages with nothing recognisable yield ``{}``.
"""

import logging
import re

from mcpbridge.streaming import ToolArguments

logger = logging.getLogger(__name__)

_FENCE = re.compile(r"```([\w+-]*)\s*\n(.*?)```", re.DOTALL)
_PATH = re.compile(r"(?<![\w/.])((?:\.{0,2}/)?[\w.-]+(?:/[\w.-]+)*\.[A-Za-z0-9]{1,8})\b")
_GLOB = re.compile(r"(\S*\*\S*)")

_LANGUAGE_ALIASES = {
    "typescript": "typescript",
    "ts": "typescript",
    "javascript": "javascript",
    "js": "javascript",
    "python": "python",
    "py": "python",
    "java": "java",
    "json": "json",
    "css": "css",
    "html": "html",
    "markdown": "markdown",
    "md": "markdown",
}
_LANGUAGE_WORDS = re.compile(
    r"\b(" + "|".join(sorted(_LANGUAGE_ALIASES, key=len, reverse=True)) + r")\b",
    re.IGNORECASE,
)


def _extract_code(message: str) -> ToolArguments:
    fence = _FENCE.search(message)
    if fence:
        code = fence.group(2).strip()
        tag = fence.group(1).lower()
    else:
        _, sep, rest = message.partition(":")
        code = rest.strip() if sep else ""
        tag = ""
    if not code:
        return {}
    args: ToolArguments = {"code": code}
    language = _LANGUAGE_ALIASES.get(tag)
    if language is None:
        # Only look for language names outside the code itself.
        prose = message.replace(code, " ")
        match = _LANGUAGE_WORDS.search(prose)
        if match:
            language = _LANGUAGE_ALIASES[match.group(1).lower()]
    if language:
        args["language"] = language
    return args


def _extract_path(message: str) -> ToolArguments:
    match = _PATH.search(message)
    return {"filePath": match.group(1)} if match else {}


def _extract_pattern(message: str) -> ToolArguments:
    match = _GLOB.search(message)
    return {"pattern": match.group(1).strip("`'\"")} if match else {}


REPAIRABLE_TOOLS = {
    "format_code": _extract_code,
    "interactive_code_review": _extract_code,
    "generate_documentation": _extract_code,
    "read_file": _extract_path,
    "list_project_files": _extract_pattern,
    "scan_project": _extract_pattern,
}


def repair_arguments(tool_name: str, user_message: str) -> ToolArguments:
    """Guess arguments for *tool_name* from the raw user message."""
    extractor = REPAIRABLE_TOOLS.get(tool_name)
    if extractor is None:
        return {}
    args = extractor(user_message)
    if args:
        logger.warning(f"Repaired empty arguments for {tool_name} from user message: {sorted(args)}")
    return args
