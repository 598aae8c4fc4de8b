"""
Content summaries for large tool output.

Large results are kept in the result cache and only a short description goes
back to the model: the file type, line count, size and a few preview lines.
"""

from collections.abc import Mapping
from pathlib import PurePosixPath
from typing import Any

from toolpipe.schema import ContentSummary, RuntimeSettings

DEFAULT_PREVIEW_LINES = 5
DEFAULT_LINE_WIDTH = 100

FILE_TYPES = {
    "js": "JavaScript",
    "ts": "TypeScript",
    "jsx": "React JSX",
    "tsx": "React TSX",
    "json": "JSON",
    "html": "HTML",
    "css": "CSS",
    "md": "Markdown",
    "txt": "Text",
    "py": "Python",
    "rb": "Ruby",
    "go": "Go",
    "rs": "Rust",
    "java": "Java",
    "c": "C",
    "cpp": "C++",
    "h": "C Header",
    "hpp": "C++ Header",
    "sh": "Shell Script",
    "yaml": "YAML",
    "yml": "YAML",
    "xml": "XML",
    "svg": "SVG",
    "sql": "SQL",
}


def detect_file_type(path: str | None, default: str = "Unknown file") -> str:
    """
    Human-readable file type from a path's extension.

    Examples:
        >>> detect_file_type("src/app.py")
        'Python'
        >>> detect_file_type("archive.zst")
        'ZST file'
    """
    if not path:
        return default
    ext = PurePosixPath(path).suffix.lstrip(".").lower()
    if not ext:
        return default
    return FILE_TYPES.get(ext, f"{ext.upper()} file")


def format_byte_size(size: int) -> str:
    """Format a byte count as bytes, KB or MB."""
    if size < 1024:
        return f"{size} bytes"
    if size < 1024 * 1024:
        return f"{size / 1024:.1f} KB"
    return f"{size / (1024 * 1024):.1f} MB"


def build_preview(content: str, lines: int = DEFAULT_PREVIEW_LINES, width: int = DEFAULT_LINE_WIDTH) -> str:
    """First lines of content, each cut at width characters with "..." appended."""
    preview = []
    for line in content.split("\n")[:lines]:
        preview.append(line[:width] + "..." if len(line) > width else line)
    return "\n".join(preview)


def generate_content_summary(
    content: str,
    path: str | None = None,
    *,
    preview_lines: int = DEFAULT_PREVIEW_LINES,
    line_width: int = DEFAULT_LINE_WIDTH,
    default_type: str = "Unknown file",
) -> ContentSummary:
    """
    Summarize content for the model.

    Args:
        content: Full text
        path: Source path, used for the file type
        preview_lines: Lines kept in the preview
        line_width: Characters kept per preview line
        default_type: Type name when the path gives none

    Returns:
        ContentSummary with "<type>, <N> lines, <size>" as its summary
    """
    line_count = len(content.split("\n"))
    byte_size = len(content.encode("utf-8"))
    file_type = detect_file_type(path, default_type)
    return ContentSummary(
        summary=f"{file_type}, {line_count} lines, {format_byte_size(byte_size)}",
        line_count=line_count,
        byte_size=byte_size,
        file_type=file_type,
        preview=build_preview(content, preview_lines, line_width),
    )


def summary_from_settings(content: str, path: str | None, settings: RuntimeSettings, **kwargs: Any) -> ContentSummary:
    return generate_content_summary(
        content,
        path,
        preview_lines=settings.summary_preview_lines,
        line_width=settings.summary_line_width,
        **kwargs,
    )


def needs_summary(content: str, settings: RuntimeSettings) -> bool:
    """Whether output is large enough to be cached and summarized."""
    if len(content.encode("utf-8")) >= settings.summarize_min_bytes:
        return True
    return content.count("\n") + 1 >= settings.summarize_min_lines


def format_tool_result_summary(result: Mapping[str, Any]) -> str:
    """
    One-line description of a tool result for display.

    Understands summarized results (``summary``), pipeline results
    (``commandsExecuted``) and plain output.
    """
    if not result.get("success", False):
        return f"Error: {result.get('error') or 'unknown error'}"

    summary = result.get("summary")
    if summary:
        text = summary if isinstance(summary, str) else summary.get("summary", "")
        result_id = result.get("resultId") or result.get("result_id")
        return f"{text} (result {result_id})" if result_id else text

    executed = result.get("commandsExecuted")
    output = result.get("output") or ""
    size = format_byte_size(len(output.encode("utf-8")))
    if executed is not None:
        noun = "command" if executed == 1 else "commands"
        return f"Pipeline of {executed} {noun}, {size} output"
    line_count = len(output.split("\n")) if output else 0
    return f"{line_count} lines, {size}"
