"""
Tools module for Toolpipe.

This module provides the tool interface and the built-in commands.

Built-in commands:
    - cat, read_file, write_file: binary-safe file access
    - grep, sort, uniq, head, tail, wc: text processing

Architecture:
    - Tool: Abstract base class defining the tool interface
    - BuiltinTool: In-process command over a VirtualIO
    - ToolRegistry: Central registry for looking up tools by name
    - ToolContext: Runtime context passed to tools (sandbox, cancel signal)

Permission checks happen BEFORE tool execution, not within tools.
"""

from toolpipe.tools.base import BuiltinTool, CommandFailed, Tool, ToolContext, builtin_manifest
from toolpipe.tools.files import CatTool, ReadFileTool, WriteFileTool
from toolpipe.tools.registry import (
    ToolRegistry,
    create_default_registry,
    register_adapter_tools,
    register_builtin_tools,
)
from toolpipe.tools.text import GrepTool, HeadTool, SortTool, TailTool, UniqTool, WcTool

__all__ = [
    "BuiltinTool",
    "CommandFailed",
    "Tool",
    "ToolContext",
    "ToolRegistry",
    "builtin_manifest",
    "create_default_registry",
    "register_adapter_tools",
    "register_builtin_tools",
    "CatTool",
    "ReadFileTool",
    "WriteFileTool",
    "GrepTool",
    "SortTool",
    "UniqTool",
    "HeadTool",
    "TailTool",
    "WcTool",
]
