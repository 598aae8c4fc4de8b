"""
Tool wrapper around a processing adapter.

Bridges the runtime's invocation model to Adapter.execute(): piped or decoded
binary input becomes ``_stdin_binary``, ``input_path`` is read from the
sandbox and ``output_path`` receives the result instead of the caller.
"""

import logging
from collections.abc import Mapping
from pathlib import PurePosixPath
from typing import Any

from toolpipe.adapters.base import STDIN_BINARY_KEY, Adapter
from toolpipe.contract import ConvertedInvocation
from toolpipe.schema import ExecutionResult, ToolManifest
from toolpipe.summary import format_byte_size
from toolpipe.tools.base import Tool, ToolContext

logger = logging.getLogger(__name__)

PATH_PARAMS = ("input_path", "output_path")


class AdapterTool(Tool):
    """
    A tool whose work is done by an Adapter.

    Args:
        manifest: The tool's manifest
        adapter: Adapter doing the processing
        library_binary: Engine binary passed to the adapter
    """

    def __init__(self, manifest: ToolManifest, adapter: Adapter, library_binary: bytes = b"") -> None:
        self._manifest = manifest
        self.adapter = adapter
        self.library_binary = library_binary

    @property
    def manifest(self) -> ToolManifest:
        return self._manifest

    def touches_files(self, params: Mapping[str, Any]) -> bool:
        return any(params.get(name) for name in PATH_PARAMS)

    def _with_derived_filenames(self, args: dict[str, Any]) -> dict[str, Any]:
        # Adapters that need filenames for format detection get them from the paths.
        declared = self.manifest.parameters.properties
        for path_key, name_key in (("input_path", "input_filename"), ("output_path", "output_filename")):
            if name_key in declared and not args.get(name_key) and args.get(path_key):
                args[name_key] = PurePosixPath(args[path_key]).name
        return args

    async def execute(
        self,
        invocation: ConvertedInvocation,
        context: ToolContext,
    ) -> ExecutionResult:
        args = self._with_derived_filenames(dict(invocation.params))
        args.pop(STDIN_BINARY_KEY, None)

        input_path = args.get("input_path")
        output_path = args.get("output_path")
        try:
            if input_path:
                args[STDIN_BINARY_KEY] = context.require_files().read_file(input_path)
            elif invocation.stdin is not None:
                args[STDIN_BINARY_KEY] = invocation.stdin
        except OSError as e:
            return ExecutionResult.fail(f"Failed to read {input_path}: {e}")

        timeout = self.manifest.execution.timeout or context.timeout
        result = await self.adapter.execute(
            self.library_binary,
            args,
            cancel=context.cancel,
            timeout=timeout,
        )

        if not result.success or not output_path:
            return result

        data = result.stdout_binary or b""
        try:
            context.require_files().write_file(output_path, data)
        except OSError as e:
            return ExecutionResult.fail(f"Failed to write {output_path}: {e}")

        logger.info("%s wrote %d bytes to %s", self.name, len(data), output_path)
        return ExecutionResult.ok(f"Output written to {output_path} ({format_byte_size(len(data))})")

    def __repr__(self) -> str:
        return f"<AdapterTool: {self.name} via {self.adapter.name}>"
