"""
Tool runtime: one validated, permission-checked tool call.

The runtime is the boundary where exceptions become results. Everything
below it (contract checks, sandbox access) may raise; everything above it
(the pipeline composer, the CLI, an embedding chat loop) receives an
ExecutionResult or ToolResponse.

Flow of invoke():
    1. Resolve the tool by name
    2. Validate and convert arguments against its manifest
    3. Check permission if the call touches the sandbox
    4. Run the tool with a fresh ToolContext
"""

import asyncio
import logging
import uuid
from collections.abc import Mapping
from typing import Any

from toolpipe.cache import ResultCache
from toolpipe.contract import ConvertedInvocation, convert_arguments
from toolpipe.errors import ErrorKind, ExecutionCancelledError, PermissionDeniedError, ToolpipeError
from toolpipe.permissions import PermissionGate
from toolpipe.sandbox import FileSystem, ScopedFileSystem
from toolpipe.schema import CacheMetadata, ExecutionResult, RuntimeSettings, ToolResponse
from toolpipe.summary import needs_summary, summary_from_settings
from toolpipe.tools.base import Tool, ToolContext
from toolpipe.tools.registry import ToolRegistry, create_default_registry

logger = logging.getLogger(__name__)


class ToolRuntime:
    """
    Executes tools on behalf of a caller.

    Args:
        registry: Tools available to callers (default: built-ins and adapters)
        permissions: Gate consulted before file-touching calls (default: ask,
            with no prompt, which denies)
        cache: Cache for large outputs
        settings: Runtime tunables
        file_system: Sandbox backend handed to tools
    """

    def __init__(
        self,
        registry: ToolRegistry | None = None,
        *,
        permissions: PermissionGate | None = None,
        cache: ResultCache | None = None,
        settings: RuntimeSettings | None = None,
        file_system: FileSystem | None = None,
    ) -> None:
        self.settings = settings or RuntimeSettings()
        self.registry = registry if registry is not None else create_default_registry()
        self.permissions = permissions or PermissionGate(self.settings.permissions)
        self.cache = cache or ResultCache.from_settings(self.settings)
        self.file_system = file_system

    def prepare(self, tool: Tool, args: Mapping[str, Any], *, piped: bool = False) -> ConvertedInvocation:
        """
        Validate and convert arguments for a tool.

        Raises:
            ValidationError: If the arguments do not satisfy the manifest
        """
        return convert_arguments(tool.manifest, args, piped=piped)

    async def invoke(
        self,
        tool_name: str,
        args: Mapping[str, Any] | None = None,
        *,
        stdin: bytes | None = None,
        cancel: asyncio.Event | None = None,
    ) -> ExecutionResult:
        """
        Run one tool by name.

        Args:
            tool_name: Registered tool name
            args: Tool arguments
            stdin: Bytes fed to the tool as piped input
            cancel: Event that aborts the call when set

        Returns:
            ExecutionResult; validation problems come back as failures with
            error_kind "validation"
        """
        try:
            tool = self.registry.get(tool_name)
            invocation = self.prepare(tool, args or {}, piped=stdin is not None)
        except ToolpipeError as e:
            logger.info("Rejected %s: %s", tool_name, e.message)
            return ExecutionResult.from_error(e).model_copy(update={"tool": tool_name})

        if stdin is not None:
            invocation = invocation.with_piped_stdin(stdin)
        return await self.execute(tool, invocation, cancel=cancel)

    async def execute(
        self,
        tool: Tool,
        invocation: ConvertedInvocation,
        *,
        cancel: asyncio.Event | None = None,
    ) -> ExecutionResult:
        """Run a prepared invocation: permission check, then the tool itself."""
        if cancel is not None and cancel.is_set():
            error = ExecutionCancelledError(tool=tool.name)
            return ExecutionResult.from_error(error).model_copy(update={"tool": tool.name})

        if tool.touches_files(invocation.params):
            decision = await self.permissions.check(tool.name, invocation.params)
            if not decision.allowed:
                error = PermissionDeniedError(tool=tool.name, reason=decision.reason)
                logger.warning("%s", error.message)
                return ExecutionResult.from_error(error).model_copy(update={"tool": tool.name})

        context = ToolContext(
            invocation_id=uuid.uuid4().hex,
            files=ScopedFileSystem(self.file_system, tool.file_access) if self.file_system else None,
            cancel=cancel,
            timeout=self.settings.default_timeout_seconds,
        )

        logger.debug("Running %s %s", tool.name, invocation.cli_args[1:])
        try:
            result = await tool.execute(invocation, context)
        except ToolpipeError as e:
            result = ExecutionResult.from_error(e)
        except Exception as e:
            logger.exception("Unexpected error in %s", tool.name)
            result = ExecutionResult.fail(f"Tool execution failed: {e}")

        if not result.success:
            logger.info("%s failed: %s", tool.name, result.error)
        return result.model_copy(update={"tool": tool.name})

    async def run_tool(
        self,
        tool_name: str,
        args: Mapping[str, Any] | None = None,
        *,
        cancel: asyncio.Event | None = None,
    ) -> ToolResponse:
        """
        Run one tool and split large output into a cache entry and a summary.

        Output read from files is always cached, as is any output at least
        summarize_min_bytes long or summarize_min_lines lines.
        """
        args = dict(args or {})
        result = await self.invoke(tool_name, args, cancel=cancel)

        if not result.success:
            return ToolResponse(
                success=False,
                tool=tool_name,
                error=result.error,
                error_kind=result.error_kind or ErrorKind.EXECUTION,
                exit_code=result.exit_code,
            )

        tool = self.registry.get(tool_name)
        content = result.stdout
        if not (tool.reads_files(args) or needs_summary(content, self.settings)):
            return ToolResponse(success=True, tool=tool_name, output=content)

        path = args.get("path") or args.get("input_path")
        summary = summary_from_settings(content, path, self.settings, default_type="Text output")
        result_id = self.cache.store(
            tool_name,
            content,
            CacheMetadata(
                path=path,
                line_count=summary.line_count,
                byte_size=summary.byte_size,
                file_type=summary.file_type,
            ),
        )
        return ToolResponse(success=True, tool=tool_name, result_id=result_id, summary=summary)

    def get_cached_result(self, result_id: str) -> str | None:
        """Full content of a cached output, or None if it was evicted."""
        return self.cache.get_content(result_id)
