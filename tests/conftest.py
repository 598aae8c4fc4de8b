"""
Pytest configuration and fixtures for Toolpipe tests.

This module provides shared fixtures used across unit, integration,
and security tests.
"""

import tempfile
from pathlib import Path
from typing import Generator

import pytest

from toolpipe.permissions import PermissionGate
from toolpipe.pipeline import PipelineComposer
from toolpipe.runtime import ToolRuntime
from toolpipe.sandbox import MemoryFileSystem
from toolpipe.schema import ToolManifest
from toolpipe.tools.registry import create_default_registry


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for test files."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def memory_fs() -> MemoryFileSystem:
    """In-memory sandbox with a few text files."""
    return MemoryFileSystem({
        "fruits.txt": "banana\napple\ncherry\napple\ndate\napricot",
        "notes/todo.md": "# Todo\n- write tests\n- ship it\n",
        "numbers.txt": "10\n9\n100\n-3\n",
    })


@pytest.fixture
def runtime(memory_fs: MemoryFileSystem) -> ToolRuntime:
    """Runtime over the in-memory sandbox that grants all file access."""
    return ToolRuntime(
        create_default_registry(include_adapters=False),
        permissions=PermissionGate.allow_all(),
        file_system=memory_fs,
    )


@pytest.fixture
def composer(runtime: ToolRuntime) -> PipelineComposer:
    """Pipeline composer over the shared runtime."""
    return PipelineComposer(runtime)


@pytest.fixture
def binary_manifest() -> ToolManifest:
    """Manifest with one binary parameter and positional arguments."""
    return ToolManifest.model_validate({
        "name": "image-tool",
        "version": "1.0.0",
        "description": "Process an image",
        "parameters": {
            "type": "object",
            "properties": {
                "data": {"type": "binary", "description": "Image data"},
                "format": {"type": "string", "description": "Output format"},
            },
            "required": ["data"],
        },
        "execution": {"argStyle": "positional", "fileAccess": "none"},
    })


@pytest.fixture
def sample_manifest_yaml() -> str:
    """Return a simple manifest YAML for testing."""
    return """
name: json-format
version: "1.2.0"
description: Pretty-print JSON
category: data
parameters:
  type: object
  properties:
    input:
      type: string
      description: JSON text
    indent:
      type: number
      default: 2
  required: [input]
execution:
  argStyle: cli-flags
  fileAccess: none
  stdinParam: input
"""
