"""
Unit tests for the tool registry.

Tests cover:
- Registration and lookup
- Unknown tool errors
- Pipe command description
- Installing adapter tools, including from a manifest store
"""

from typing import Any

import pytest

from toolpipe.adapters.base import Adapter
from toolpipe.errors import MultipleBinaryParamsError, UnknownToolError
from toolpipe.schema import ToolManifest
from toolpipe.store import MemoryManifestStore
from toolpipe.tools.base import Tool
from toolpipe.tools.registry import ToolRegistry, create_default_registry


class EchoAdapter(Adapter):
    """Adapter returning its input unchanged."""

    name = "echo"

    async def initialize(self, binary: bytes) -> Any:
        return binary

    async def process(self, engine: Any, data: bytes, args: dict[str, Any]) -> bytes:
        return data


class TestToolRegistry:
    """Tests for ToolRegistry."""

    def test_default_builtins(self) -> None:
        """The default registry holds the built-in commands."""
        registry = create_default_registry(include_adapters=False)
        assert registry.list_tools() == [
            "cat", "grep", "head", "read_file", "sort", "tail", "uniq", "wc", "write_file",
        ]

    def test_default_with_adapters(self) -> None:
        """Adapters add the image and ffmpeg tools."""
        registry = create_default_registry()
        assert "image" in registry
        assert "ffmpeg" in registry

    def test_get_unknown(self) -> None:
        """Unknown names list what is available."""
        registry = create_default_registry(include_adapters=False)
        with pytest.raises(UnknownToolError) as exc_info:
            registry.get("nope")
        assert exc_info.value.message.startswith("Unknown command: nope. Available: cat, grep")

    def test_register_none(self) -> None:
        """None cannot be registered."""
        with pytest.raises(ValueError):
            ToolRegistry().register(None)  # type: ignore[arg-type]

    def test_unregister(self) -> None:
        """Tools can be removed."""
        registry = create_default_registry(include_adapters=False)
        assert registry.unregister("wc")
        assert not registry.unregister("wc")
        assert registry.get_optional("wc") is None

    def test_iteration(self) -> None:
        """Iterating yields tools."""
        registry = create_default_registry(include_adapters=False)
        assert all(isinstance(tool, Tool) for tool in registry)
        assert len(registry) == 9

    def test_pipe_description(self) -> None:
        """The description lists each command with its parameters."""
        description = create_default_registry(include_adapters=False).build_pipe_description()
        assert "- grep(pattern: string, path?: string" in description
        assert "- wc(" in description
        assert "Example:" in description


class TestAdapterInstall:
    """Tests for adapter-backed tools."""

    def test_install(self, binary_manifest: ToolManifest) -> None:
        """An adapter tool is registered under its manifest name."""
        registry = ToolRegistry()
        tool = registry.install_adapter_tool(binary_manifest, EchoAdapter())
        assert registry.get("image-tool") is tool

    def test_invalid_manifest_rejected(self) -> None:
        """Manifests with two binary parameters cannot be installed."""
        manifest = ToolManifest.model_validate({
            "name": "bad",
            "parameters": {
                "properties": {"a": {"type": "binary"}, "b": {"type": "binary"}},
            },
        })
        with pytest.raises(MultipleBinaryParamsError):
            ToolRegistry().install_adapter_tool(manifest, EchoAdapter())

    def test_install_from_store(self, binary_manifest: ToolManifest) -> None:
        """Manifest and binary come from the store."""
        store = MemoryManifestStore()
        store.put(binary_manifest, b"engine")
        registry = ToolRegistry()
        tool = registry.install_from_store(store, "image-tool", EchoAdapter())
        assert tool.library_binary == b"engine"
        assert registry.has("image-tool")
