"""
Tool registry for Toolpipe.

The registry is the central location for all registered tools. Tools must be
registered before they can be used in a call or a pipeline.

Design:
    - One registry per runtime; create_default_registry() builds the standard set
    - Adapter-backed tools are installed from a manifest and an engine binary
    - Unknown names raise UnknownToolError listing what is available

Usage:
    from toolpipe.tools.registry import create_default_registry

    registry = create_default_registry()
    tool = registry.get("grep")
"""

import logging
from collections.abc import Iterator
from typing import TYPE_CHECKING

from toolpipe.contract import validate_manifest
from toolpipe.errors import UnknownToolError
from toolpipe.schema import ToolManifest
from toolpipe.tools.base import Tool
from toolpipe.tools.files import CatTool, ReadFileTool, WriteFileTool
from toolpipe.tools.text import GrepTool, HeadTool, SortTool, TailTool, UniqTool, WcTool

if TYPE_CHECKING:
    from toolpipe.adapters.base import Adapter
    from toolpipe.store import ManifestStore

logger = logging.getLogger(__name__)


class ToolRegistry:
    """
    Registry for looking up tools by name.

    Attributes:
        _tools: Internal mapping of tool names to tool instances
    """

    def __init__(self) -> None:
        """Initialize an empty registry."""
        self._tools: dict[str, Tool] = {}

    def register(self, tool: Tool) -> None:
        """
        Register a tool, replacing any tool with the same name.

        Raises:
            ValueError: If tool is None
            ManifestInvalidError: If the tool's manifest is invalid
        """
        if tool is None:
            msg = "Cannot register None as a tool"
            raise ValueError(msg)

        validate_manifest(tool.manifest)
        if tool.name in self._tools:
            logger.debug("Replacing registered tool: %s", tool.name)
        self._tools[tool.name] = tool

    def install_adapter_tool(
        self,
        manifest: ToolManifest,
        adapter: "Adapter",
        binary: bytes = b"",
    ) -> Tool:
        """
        Register a tool backed by a processing adapter.

        Args:
            manifest: The tool's manifest
            adapter: Adapter that does the work
            binary: Engine binary handed to the adapter on first use

        Returns:
            The registered tool
        """
        from toolpipe.adapters.tool import AdapterTool

        tool = AdapterTool(manifest, adapter, binary)
        self.register(tool)
        logger.info("Installed adapter tool %s (%s)", manifest.name, adapter.name)
        return tool

    def install_from_store(self, store: "ManifestStore", name: str, adapter: "Adapter") -> Tool:
        """Install an adapter tool whose manifest and binary live in a store."""
        return self.install_adapter_tool(store.get_manifest(name), adapter, store.get_binary(name))

    def get(self, name: str) -> Tool:
        """
        Look up a tool by name.

        Raises:
            UnknownToolError: If no tool with that name is registered
        """
        tool = self._tools.get(name)
        if tool is None:
            raise UnknownToolError(tool=name, available=self.list_tools())
        return tool

    def get_optional(self, name: str) -> Tool | None:
        return self._tools.get(name)

    def has(self, name: str) -> bool:
        return name in self._tools

    def unregister(self, name: str) -> bool:
        """
        Remove a tool from the registry.

        Returns:
            True if the tool was removed, False if it wasn't registered
        """
        if name in self._tools:
            del self._tools[name]
            return True
        return False

    uninstall = unregister

    def clear(self) -> None:
        """Remove all tools from the registry."""
        self._tools.clear()

    def list_tools(self) -> list[str]:
        """List all registered tool names in sorted order."""
        return sorted(self._tools.keys())

    def build_pipe_description(self) -> str:
        """
        Help text for the pipe command, generated from the registered tools.

        Lists every command with its description and parameters so a model
        can compose pipelines without a separate lookup.
        """
        lines = [
            "Chain commands like a Unix pipe: each command's output becomes the "
            "next command's input.",
            "",
            "Available commands:",
        ]
        for name in self.list_tools():
            manifest = self._tools[name].manifest
            params = []
            for param, definition in manifest.parameters.properties.items():
                marker = "" if param in manifest.parameters.required else "?"
                params.append(f"{param}{marker}: {definition.type.value}")
            signature = f"({', '.join(params)})" if params else "()"
            lines.append(f"- {name}{signature}: {manifest.description}")
        lines.extend([
            "",
            'Example: {"commands": [{"tool": "cat", "args": {"path": "log.txt"}}, '
            '{"tool": "grep", "args": {"pattern": "ERROR"}}, {"tool": "wc"}]}',
        ])
        return "\n".join(lines)

    def __len__(self) -> int:
        return len(self._tools)

    def __iter__(self) -> Iterator[Tool]:
        return iter(self._tools.values())

    def __contains__(self, name: str) -> bool:
        return name in self._tools

    def __repr__(self) -> str:
        tools = ", ".join(self.list_tools())
        return f"<ToolRegistry: [{tools}]>"


def register_builtin_tools(registry: ToolRegistry) -> None:
    """Register the in-process commands."""
    for tool in (
        CatTool(),
        ReadFileTool(),
        WriteFileTool(),
        GrepTool(),
        SortTool(),
        UniqTool(),
        HeadTool(),
        TailTool(),
        WcTool(),
    ):
        registry.register(tool)


def register_adapter_tools(registry: ToolRegistry) -> None:
    """Register the image and media adapters with their default engines."""
    from toolpipe.adapters.image import ImageAdapter, image_manifest
    from toolpipe.adapters.transcoder import TranscoderAdapter, transcoder_manifest

    registry.install_adapter_tool(image_manifest(), ImageAdapter())
    registry.install_adapter_tool(transcoder_manifest(), TranscoderAdapter())


def create_default_registry(include_adapters: bool = True) -> ToolRegistry:
    """
    Build a registry with the built-in commands.

    Args:
        include_adapters: Also install the image and media adapter tools
    """
    registry = ToolRegistry()
    register_builtin_tools(registry)
    if include_adapters:
        register_adapter_tools(registry)
    return registry
