"""
Toolpipe - manifest-driven tool execution for AI file assistants.

Toolpipe sits between a language model's structured tool calls and the
programs that do the work. It provides:
- Declarative tool manifests with argument validation
- Binary-safe argument conversion (base64 in, stdin bytes out)
- Unix-style pipelines with fail-fast error reporting
- A result cache that keeps large output out of model context

Example usage:
    $ toolpipe pipe request.yaml --root ./project
    $ toolpipe run grep -a pattern=TODO -a path=notes.md
    $ toolpipe validate my-tool.yaml
"""

__version__ = "0.1.0"
__author__ = "Toolpipe Contributors"

__all__ = [
    "__version__",
    "__author__",
]
