"""
Text-processing commands: grep, sort, uniq, head, tail, wc.

Each command reads ``path`` from the sandbox when given, otherwise its piped
stdin, and writes plain text to stdout.
"""

import math
import re
from typing import Any

from toolpipe.schema import FileAccess, ParameterDefinition, ParameterType, ToolManifest
from toolpipe.tools.base import BuiltinTool, CommandFailed, ToolContext, builtin_manifest
from toolpipe.vio import VirtualIO

MAX_PATTERN_LENGTH = 1000
DEFAULT_LINE_COUNT = 10

_NUMBER_PREFIX = re.compile(r"^\s*[+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?")

_PATH = ParameterDefinition(
    type=ParameterType.STRING,
    description="File to read (omit to read piped input)",
)


def _flag(description: str) -> ParameterDefinition:
    return ParameterDefinition(type=ParameterType.BOOLEAN, description=description)


def compile_pattern(pattern: str, ignore_case: bool = False) -> re.Pattern[str]:
    """
    Compile a user-supplied regular expression.

    Raises:
        CommandFailed: If the pattern is too long or invalid
    """
    if len(pattern) > MAX_PATTERN_LENGTH:
        raise CommandFailed(f"grep: pattern too long (max {MAX_PATTERN_LENGTH} characters)")
    try:
        return re.compile(pattern, re.IGNORECASE if ignore_case else 0)
    except re.error as e:
        raise CommandFailed(f"grep: invalid pattern: {e}") from e


def parse_number(text: str) -> float | None:
    """Parse the leading number of a line, like a lenient numeric sort."""
    match = _NUMBER_PREFIX.match(text)
    if match is None:
        return None
    return float(match.group())


def _line_count(params: dict[str, Any], command: str) -> int:
    count = params.get("lines", DEFAULT_LINE_COUNT)
    if not math.isfinite(count) or count < 0 or count != int(count):
        raise CommandFailed(f"{command}: invalid line count: {count}")
    return int(count)


def _split_lines(content: str, drop_trailing_empty: bool = False) -> list[str]:
    lines = content.split("\n")
    if drop_trailing_empty and lines and lines[-1] == "":
        lines.pop()
    return lines


class GrepTool(BuiltinTool):
    """Keep lines matching a regular expression."""

    @property
    def manifest(self) -> ToolManifest:
        return builtin_manifest(
            "grep",
            "Filter lines matching a regular expression",
            {
                "pattern": ParameterDefinition(
                    type=ParameterType.STRING,
                    description="Regular expression to match",
                ),
                "path": _PATH,
                "case_insensitive": _flag("Ignore case when matching"),
                "invert_match": _flag("Keep lines that do not match"),
            },
            required=["pattern"],
            file_access=FileAccess.READ,
        )

    def run(self, params: dict[str, Any], io: VirtualIO, context: ToolContext) -> int:
        regex = compile_pattern(params["pattern"], bool(params.get("case_insensitive")))
        invert = bool(params.get("invert_match"))
        content = self.resolve_input(params, io, context)

        matched = [line for line in _split_lines(content) if bool(regex.search(line)) != invert]
        io.write_stdout("\n".join(matched))
        return 0


class SortTool(BuiltinTool):
    """Sort lines."""

    @property
    def manifest(self) -> ToolManifest:
        return builtin_manifest(
            "sort",
            "Sort lines of text",
            {
                "path": _PATH,
                "reverse": _flag("Sort in descending order"),
                "numeric": _flag("Compare leading numbers instead of text"),
                "unique": _flag("Drop duplicate lines after sorting"),
                "ignore_case": _flag("Compare case-insensitively"),
            },
            file_access=FileAccess.READ,
        )

    def run(self, params: dict[str, Any], io: VirtualIO, context: ToolContext) -> int:
        content = self.resolve_input(params, io, context)
        lines = _split_lines(content, drop_trailing_empty=True)
        ignore_case = bool(params.get("ignore_case"))
        reverse = bool(params.get("reverse"))

        def text_key(line: str) -> str:
            return line.lower() if ignore_case else line

        if params.get("numeric"):
            # Lines without a leading number sort after all numbers.
            def key(line: str) -> tuple[int, float, str]:
                number = parse_number(line)
                if number is None:
                    return (1, 0.0, text_key(line))
                return (0, number, "")

            lines.sort(key=key, reverse=reverse)
        else:
            lines.sort(key=text_key, reverse=reverse)

        if params.get("unique"):
            seen: set[str] = set()
            deduped = []
            for line in lines:
                marker = text_key(line)
                if marker not in seen:
                    seen.add(marker)
                    deduped.append(line)
            lines = deduped

        io.write_stdout("\n".join(lines))
        return 0


class UniqTool(BuiltinTool):
    """Collapse adjacent duplicate lines."""

    @property
    def manifest(self) -> ToolManifest:
        return builtin_manifest(
            "uniq",
            "Remove adjacent duplicate lines",
            {
                "path": _PATH,
                "count": _flag("Prefix lines with their repeat count"),
                "duplicates_only": _flag("Only print lines that repeat"),
                "unique_only": _flag("Only print lines that do not repeat"),
                "ignore_case": _flag("Compare case-insensitively"),
            },
            file_access=FileAccess.READ,
        )

    def run(self, params: dict[str, Any], io: VirtualIO, context: ToolContext) -> int:
        content = self.resolve_input(params, io, context)
        lines = _split_lines(content, drop_trailing_empty=True)
        ignore_case = bool(params.get("ignore_case"))

        groups: list[tuple[str, int]] = []
        for line in lines:
            marker = line.lower() if ignore_case else line
            if groups:
                previous, count = groups[-1]
                if (previous.lower() if ignore_case else previous) == marker:
                    groups[-1] = (previous, count + 1)
                    continue
            groups.append((line, 1))

        if params.get("duplicates_only"):
            groups = [g for g in groups if g[1] > 1]
        elif params.get("unique_only"):
            groups = [g for g in groups if g[1] == 1]

        if params.get("count"):
            output = [f"{count:>7} {line}" for line, count in groups]
        else:
            output = [line for line, _ in groups]

        io.write_stdout("\n".join(output))
        return 0


class HeadTool(BuiltinTool):
    """First N lines."""

    @property
    def manifest(self) -> ToolManifest:
        return builtin_manifest(
            "head",
            "Output the first lines of input",
            {
                "path": _PATH,
                "lines": ParameterDefinition(
                    type=ParameterType.NUMBER,
                    description="Number of lines (default 10)",
                ),
            },
            file_access=FileAccess.READ,
        )

    def run(self, params: dict[str, Any], io: VirtualIO, context: ToolContext) -> int:
        count = _line_count(params, self.name)
        content = self.resolve_input(params, io, context)
        io.write_stdout("\n".join(_split_lines(content)[:count]))
        return 0


class TailTool(BuiltinTool):
    """Last N lines."""

    @property
    def manifest(self) -> ToolManifest:
        return builtin_manifest(
            "tail",
            "Output the last lines of input",
            {
                "path": _PATH,
                "lines": ParameterDefinition(
                    type=ParameterType.NUMBER,
                    description="Number of lines (default 10)",
                ),
            },
            file_access=FileAccess.READ,
        )

    def run(self, params: dict[str, Any], io: VirtualIO, context: ToolContext) -> int:
        count = _line_count(params, self.name)
        content = self.resolve_input(params, io, context)
        lines = _split_lines(content)
        io.write_stdout("\n".join(lines[-count:] if count else []))
        return 0


class WcTool(BuiltinTool):
    """
    Count lines, words and characters.

    With no count flags all three are printed. Each column is right-aligned
    in eight characters.
    """

    @property
    def manifest(self) -> ToolManifest:
        return builtin_manifest(
            "wc",
            "Count lines, words and characters",
            {
                "path": _PATH,
                "count_lines": _flag("Print the newline count"),
                "count_words": _flag("Print the word count"),
                "count_chars": _flag("Print the character count"),
            },
            file_access=FileAccess.READ,
        )

    def run(self, params: dict[str, Any], io: VirtualIO, context: ToolContext) -> int:
        content = self.resolve_input(params, io, context)
        show_lines = bool(params.get("count_lines"))
        show_words = bool(params.get("count_words"))
        show_chars = bool(params.get("count_chars"))
        if not (show_lines or show_words or show_chars):
            show_lines = show_words = show_chars = True

        columns = []
        if show_lines:
            columns.append(content.count("\n"))
        if show_words:
            columns.append(len(content.split()))
        if show_chars:
            columns.append(len(content))

        io.write_stdout("".join(f"{n:>8}" for n in columns))
        return 0
