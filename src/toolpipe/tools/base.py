"""
Base classes for the tool interface.

This module defines the core abstractions for tools in Toolpipe:
- Tool: Abstract base class every tool implements
- ToolContext: Runtime context passed to tools during execution
- BuiltinTool: In-process command that talks through a VirtualIO
- CommandFailed: Raised inside a built-in to end it with a diagnostic

Design Principles:
    - Every tool is described by a ToolManifest; the runtime validates and
      converts arguments from it before execute() is called
    - Tools return ExecutionResult and never raise for expected failures
    - Tools touch files only through the ScopedFileSystem in their context
    - Built-in commands get a fresh VirtualIO per invocation
"""

import asyncio
from abc import ABC, abstractmethod
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from toolpipe.contract import ConvertedInvocation
from toolpipe.sandbox import ScopedFileSystem
from toolpipe.schema import (
    ArgStyle,
    ExecutionConfig,
    ExecutionResult,
    FileAccess,
    ParameterDefinition,
    ParametersSchema,
    ToolManifest,
)
from toolpipe.vio import VirtualIO


@dataclass
class ToolContext:
    """
    Runtime context passed to tools during execution.

    Attributes:
        invocation_id: Unique identifier for this call
        files: Sandboxed file system (None when no backend is configured)
        cancel: Event set by the caller to abort the call
        timeout: Time limit in seconds for adapter work
        metadata: Additional context-specific metadata
    """

    invocation_id: str
    files: ScopedFileSystem | None = None
    cancel: asyncio.Event | None = None
    timeout: float | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def cancelled(self) -> bool:
        return self.cancel is not None and self.cancel.is_set()

    def require_files(self) -> ScopedFileSystem:
        """Return the sandbox or raise if none is configured."""
        if self.files is None:
            raise PermissionError("No file system is available to this tool")
        return self.files


class Tool(ABC):
    """
    Abstract base class for all Toolpipe tools.

    Subclasses must implement:
    - manifest property: the tool's declaration
    - execute(): run a converted invocation

    Example:
        class EchoTool(Tool):
            @property
            def manifest(self) -> ToolManifest:
                return builtin_manifest("echo", "Echo text", {...})

            async def execute(self, invocation, context) -> ExecutionResult:
                return ExecutionResult.ok(invocation.params["text"])
    """

    @property
    @abstractmethod
    def manifest(self) -> ToolManifest:
        """The manifest describing this tool."""
        ...

    @property
    def name(self) -> str:
        return self.manifest.name

    @property
    def description(self) -> str:
        return self.manifest.description or f"Tool: {self.name}"

    @property
    def file_access(self) -> FileAccess:
        return self.manifest.execution.file_access

    def touches_files(self, params: Mapping[str, Any]) -> bool:
        """
        Whether this call will touch the sandbox.

        Tools that only sometimes read files override this to look at the
        arguments, so that pure stdin processing is never gated.
        """
        return self.file_access != FileAccess.NONE

    def reads_files(self, params: Mapping[str, Any]) -> bool:
        return self.touches_files(params) and self.file_access.can_read

    @abstractmethod
    async def execute(
        self,
        invocation: ConvertedInvocation,
        context: ToolContext,
    ) -> ExecutionResult:
        """
        Run the tool.

        Called after argument validation and the permission check.

        Args:
            invocation: Converted arguments and stdin
            context: Runtime context

        Returns:
            ExecutionResult indicating success or failure
        """
        ...

    def __repr__(self) -> str:
        """String representation of the tool."""
        return f"<Tool: {self.name}>"


# =============================================================================
# Built-in Commands
# =============================================================================


class CommandFailed(Exception):
    """Ends a built-in command with a message on stderr and exit code 1."""


def builtin_manifest(
    name: str,
    description: str,
    properties: dict[str, ParameterDefinition],
    required: list[str] | None = None,
    file_access: FileAccess = FileAccess.NONE,
) -> ToolManifest:
    """Build the manifest of an in-process command."""
    return ToolManifest(
        name=name,
        version="1.0.0",
        description=description,
        category="builtin",
        parameters=ParametersSchema(properties=properties, required=required or []),
        execution=ExecutionConfig(arg_style=ArgStyle.STRUCTURED, file_access=file_access),
    )


class BuiltinTool(Tool):
    """
    An in-process command.

    Subclasses implement run(), reading stdin and writing stdout through the
    VirtualIO they are handed, and return an exit code.
    """

    # Arguments naming sandbox paths. A call without any of them only
    # processes stdin and is not gated.
    path_params: tuple[str, ...] = ("path",)

    def touches_files(self, params: Mapping[str, Any]) -> bool:
        if self.file_access == FileAccess.NONE:
            return False
        return any(params.get(name) for name in self.path_params)

    async def execute(
        self,
        invocation: ConvertedInvocation,
        context: ToolContext,
    ) -> ExecutionResult:
        io = VirtualIO()
        stdin = invocation.stdin
        if stdin is not None:
            io.set_stdin(stdin)

        try:
            exit_code = self.run(invocation.params, io, context)
        except CommandFailed as e:
            io.write_stderr(str(e))
            exit_code = 1
        except OSError as e:
            io.write_stderr(f"{self.name}: {e}")
            exit_code = 1

        return ExecutionResult.from_io(io, exit_code)

    @abstractmethod
    def run(self, params: dict[str, Any], io: VirtualIO, context: ToolContext) -> int:
        """
        Run the command.

        Args:
            params: Validated arguments
            io: Virtual stdio for this invocation
            context: Runtime context

        Returns:
            Exit code (0 = success)

        Raises:
            CommandFailed: To fail with a diagnostic
        """
        ...

    def stdin_text(self, io: VirtualIO) -> str:
        """Everything left on stdin, decoded lossily."""
        return io.read_all_stdin().decode("utf-8", errors="replace")

    def resolve_input(self, params: Mapping[str, Any], io: VirtualIO, context: ToolContext) -> str:
        """
        Input text for a text command: ``path`` if given, else stdin.

        Raises:
            CommandFailed: When neither a path nor piped input is available
        """
        path = params.get("path")
        if path:
            return context.require_files().read_text(path)
        if io.stdin_attached:
            return self.stdin_text(io)
        raise CommandFailed(f"{self.name}: no input (provide path or pipe input)")
