"""
File commands: cat, read_file, write_file.

These are binary-safe. File contents and piped input are copied to stdout
byte for byte, and write_file stores exactly the bytes it receives.
"""

from typing import Any

from toolpipe.schema import FileAccess, ParameterDefinition, ParameterType, ToolManifest
from toolpipe.tools.base import BuiltinTool, CommandFailed, ToolContext, builtin_manifest
from toolpipe.vio import VirtualIO


class CatTool(BuiltinTool):
    """
    Concatenate files, or pass piped input through unchanged.

    Several files are joined with a newline between them.
    """

    path_params = ("path", "paths")

    @property
    def manifest(self) -> ToolManifest:
        return builtin_manifest(
            "cat",
            "Output file contents, or pass piped input through",
            {
                "path": ParameterDefinition(type=ParameterType.STRING, description="File to read"),
                "paths": ParameterDefinition(
                    type=ParameterType.ARRAY,
                    items=ParameterType.STRING,
                    description="Files to concatenate",
                ),
            },
            file_access=FileAccess.READ,
        )

    def run(self, params: dict[str, Any], io: VirtualIO, context: ToolContext) -> int:
        paths = list(params.get("paths") or [])
        if params.get("path"):
            paths.insert(0, params["path"])

        if paths:
            files = context.require_files()
            io.write_stdout(b"\n".join(files.read_file(p) for p in paths))
            return 0

        if io.stdin_attached:
            io.write_stdout(io.read_all_stdin())
            return 0

        raise CommandFailed("cat: no input (provide path or pipe input)")


class ReadFileTool(BuiltinTool):
    """Read one file."""

    @property
    def manifest(self) -> ToolManifest:
        return builtin_manifest(
            "read_file",
            "Read the contents of a file",
            {
                "path": ParameterDefinition(type=ParameterType.STRING, description="File to read"),
            },
            required=["path"],
            file_access=FileAccess.READ,
        )

    def run(self, params: dict[str, Any], io: VirtualIO, context: ToolContext) -> int:
        io.write_stdout(context.require_files().read_file(params["path"]))
        return 0


class WriteFileTool(BuiltinTool):
    """
    Write ``content``, or piped input, to a file.

    Prints a short confirmation naming the path.
    """

    @property
    def manifest(self) -> ToolManifest:
        return builtin_manifest(
            "write_file",
            "Write content or piped input to a file",
            {
                "path": ParameterDefinition(type=ParameterType.STRING, description="File to write"),
                "content": ParameterDefinition(
                    type=ParameterType.STRING,
                    description="Text to write (omit to write piped input)",
                ),
            },
            required=["path"],
            file_access=FileAccess.WRITE,
        )

    def run(self, params: dict[str, Any], io: VirtualIO, context: ToolContext) -> int:
        path = params["path"]
        content = params.get("content")
        if content is not None:
            data = content.encode("utf-8")
        elif io.stdin_attached:
            data = io.read_all_stdin()
        else:
            raise CommandFailed("write_file: no content (provide content or pipe input)")

        context.require_files().write_file(path, data)
        io.write_stdout(f"Written to {path}")
        return 0
