"""
CLI entry point for Toolpipe.

This module provides the Typer-based command-line interface.

Commands:
    pipe        Run a pipeline request (YAML) against a directory
    run         Run a single tool
    tools       List registered tools
    validate    Validate a tool manifest

Architecture Note:
    The CLI is thin: it loads files, builds a ToolRuntime rooted at a local
    directory and prints results. File-touching tools ask for confirmation
    unless --yes is given or the settings file grants them.
"""

import asyncio
import json
import logging
from collections.abc import Mapping
from pathlib import Path
from typing import Annotated, Any, Optional

import pydantic
import typer
import yaml
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.prompt import Confirm
from rich.table import Table

from toolpipe import __version__
from toolpipe.contract import validate_manifest
from toolpipe.errors import ToolpipeError
from toolpipe.permissions import PermissionGate
from toolpipe.pipeline import PipelineComposer
from toolpipe.runtime import ToolRuntime
from toolpipe.sandbox import LocalFileSystem
from toolpipe.schema import (
    PermissionLevel,
    PipelineResult,
    RuntimeSettings,
    ToolResponse,
    load_manifest,
    load_settings,
)
from toolpipe.summary import format_tool_result_summary
from toolpipe.tools.registry import create_default_registry
from toolpipe.vio import is_binary_output

app = typer.Typer(
    name="toolpipe",
    help="Run manifest-described tools and Unix-style pipelines.",
    add_completion=False,
    no_args_is_help=True,
)

console = Console()
err_console = Console(stderr=True)


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"[bold]toolpipe[/bold] version {__version__}")
        raise typer.Exit()


def configure_logging(verbose: bool) -> None:
    """Route library logging through rich; DEBUG when verbose, WARNING otherwise."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=err_console, show_path=False)],
        force=True,
    )


@app.callback()
def main(
    version: Annotated[
        Optional[bool],
        typer.Option(
            "--version",
            "-V",
            help="Show version and exit.",
            callback=version_callback,
            is_eager=True,
        ),
    ] = None,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Enable debug logging."),
    ] = False,
) -> None:
    """
    Toolpipe - manifest-driven tools with Unix-style pipes.

    Tools are described by manifests; arguments are validated before anything
    runs, and binary data flows between pipeline steps untouched.
    """
    configure_logging(verbose)


# =============================================================================
# Helpers
# =============================================================================


def _prompt_permission(tool_name: str, args: Mapping[str, Any]) -> bool:
    shown = ", ".join(f"{k}={v!r}" for k, v in args.items())
    return Confirm.ask(
        f"Allow [cyan]{tool_name}[/cyan] to access files ({shown})?",
        console=console,
        default=False,
    )


def _build_runtime(root: Path, config: Path | None, yes: bool) -> ToolRuntime:
    settings = load_settings(config) if config else RuntimeSettings()
    policy = settings.permissions
    if yes:
        policy = policy.model_copy(update={"default": PermissionLevel.ALWAYS})
    return ToolRuntime(
        create_default_registry(),
        permissions=PermissionGate(policy, prompt=_prompt_permission),
        settings=settings,
        file_system=LocalFileSystem(root),
    )


def _load_error(what: str, path: Path, error: Exception, json_output: bool) -> None:
    if json_output:
        print(json.dumps({"success": False, "error": f"Error loading {what}: {error}"}, indent=2))
    else:
        console.print(f"[red]Error loading {what} {path}:[/red] {escape(str(error))}")


def parse_assignment(text: str) -> tuple[str, Any]:
    """
    Parse a ``key=value`` argument.

    Values are read as YAML scalars or lists, so ``lines=5`` is a number and
    ``reverse=true`` a boolean; anything else stays a string.
    """
    key, sep, raw = text.partition("=")
    if not sep or not key:
        raise typer.BadParameter(f"expected key=value, got {text!r}")
    try:
        value = yaml.safe_load(raw)
    except yaml.YAMLError:
        return key, raw
    if isinstance(value, (str, bool, int, float, list)):
        return key, value
    return key, raw


def _display_pipeline_result(result: PipelineResult) -> None:
    if result.intermediate_results is not None:
        table = Table(show_header=True, header_style="bold")
        table.add_column("#", style="dim", width=3)
        table.add_column("Tool", style="cyan")
        table.add_column("Status", width=8)
        table.add_column("Output")
        for index, step in enumerate(result.intermediate_results):
            status = "[green]ok[/green]" if step.success else "[red]failed[/red]"
            text = step.stdout if step.success else (step.error or "")
            if len(text) > 60:
                text = text[:57] + "..."
            table.add_row(str(index + 1), step.tool or "", status, text.replace("\n", "\\n"))
        err_console.print(table)

    if not result.success:
        err_console.print(f"[red]✗[/red] {escape(result.error or '')}")
        return

    typer.echo(result.output or "", nl=not (result.output or "").endswith("\n"))
    err_console.print(f"[dim]{format_tool_result_summary(result.to_model_payload())}[/dim]")


def _display_tool_response(response: ToolResponse, full_output: str | None) -> None:
    if not response.success:
        err_console.print(f"[red]✗[/red] {escape(response.error or '')}")
        return
    if full_output is not None:
        typer.echo(full_output)
        return
    if response.summary is not None:
        console.print(f"[bold]{response.summary.summary}[/bold]")
        typer.echo(response.summary.preview)
        return
    typer.echo(response.output or "")


# =============================================================================
# Commands
# =============================================================================


@app.command()
def pipe(
    request_path: Annotated[
        Path,
        typer.Argument(help="Path to the pipeline request YAML file.", exists=True, readable=True),
    ],
    root: Annotated[
        Path,
        typer.Option("--root", "-r", help="Sandbox root directory.", file_okay=False, exists=True),
    ] = Path("."),
    config: Annotated[
        Optional[Path],
        typer.Option("--config", "-c", help="Runtime settings YAML file.", exists=True),
    ] = None,
    debug: Annotated[
        bool,
        typer.Option("--debug", help="Show every step's result."),
    ] = False,
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output the result as JSON."),
    ] = False,
    out: Annotated[
        Optional[Path],
        typer.Option("--out", "-o", help="Write the final output bytes to a file."),
    ] = None,
    yes: Annotated[
        bool,
        typer.Option("--yes", "-y", help="Grant file access without asking."),
    ] = False,
) -> None:
    """
    Run a pipeline request.

    Example:
        $ toolpipe pipe request.yaml --root ./project --yes
    """
    try:
        data = yaml.safe_load(request_path.read_text(encoding="utf-8"))
        runtime = _build_runtime(root, config, yes)
    except (OSError, yaml.YAMLError, pydantic.ValidationError) as e:
        _load_error("request", request_path, e, json_output)
        raise typer.Exit(code=1)

    if debug and isinstance(data, dict):
        data = {**data, "debug": True}

    result = asyncio.run(PipelineComposer(runtime).run(data))

    if out is not None and result.success:
        payload = result.output_binary if result.output_binary is not None else (result.output or "").encode("utf-8")
        out.write_bytes(payload)
        err_console.print(f"[dim]Wrote {len(payload)} bytes to {out}[/dim]")
    elif result.success and result.output_binary and is_binary_output(result.output_binary):
        err_console.print("[yellow]Output is binary; use --out to save it.[/yellow]")

    if json_output:
        print(json.dumps(result.to_model_payload(), indent=2, default=str))
    elif out is None:
        _display_pipeline_result(result)
    elif not result.success:
        err_console.print(f"[red]✗[/red] {escape(result.error or '')}")

    raise typer.Exit(code=0 if result.success else 1)


@app.command()
def run(
    tool_name: Annotated[str, typer.Argument(help="Tool to run.")],
    arg: Annotated[
        Optional[list[str]],
        typer.Option("--arg", "-a", help="Tool argument as key=value (repeatable)."),
    ] = None,
    root: Annotated[
        Path,
        typer.Option("--root", "-r", help="Sandbox root directory.", file_okay=False, exists=True),
    ] = Path("."),
    config: Annotated[
        Optional[Path],
        typer.Option("--config", "-c", help="Runtime settings YAML file.", exists=True),
    ] = None,
    full: Annotated[
        bool,
        typer.Option("--full", help="Print the full output even when it is summarized."),
    ] = False,
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output the result as JSON."),
    ] = False,
    yes: Annotated[
        bool,
        typer.Option("--yes", "-y", help="Grant file access without asking."),
    ] = False,
) -> None:
    """
    Run a single tool.

    Large output is cached and summarized; pass --full to print all of it.

    Example:
        $ toolpipe run grep -a pattern=TODO -a path=src/app.py --yes
    """
    args = dict(parse_assignment(item) for item in arg or [])
    try:
        runtime = _build_runtime(root, config, yes)
    except (OSError, yaml.YAMLError, pydantic.ValidationError) as e:
        _load_error("settings", config or Path("."), e, json_output)
        raise typer.Exit(code=1)

    response = asyncio.run(runtime.run_tool(tool_name, args))
    full_output = None
    if full and response.result_id:
        full_output = runtime.get_cached_result(response.result_id)

    if json_output:
        payload = response.model_dump(mode="json", exclude_none=True)
        if full_output is not None:
            payload["output"] = full_output
        print(json.dumps(payload, indent=2))
    else:
        _display_tool_response(response, full_output)

    raise typer.Exit(code=0 if response.success else 1)


@app.command("tools")
def list_tools() -> None:
    """List registered tools."""
    registry = create_default_registry()

    table = Table(show_header=True, header_style="bold")
    table.add_column("Tool", style="cyan")
    table.add_column("Category")
    table.add_column("Files")
    table.add_column("Description")
    for tool in registry:
        manifest = tool.manifest
        table.add_row(
            manifest.name,
            manifest.category,
            manifest.execution.file_access.value,
            manifest.description,
        )
    console.print(table)


@app.command()
def validate(
    manifest_path: Annotated[
        Path,
        typer.Argument(help="Path to the manifest YAML or JSON file.", exists=True, readable=True),
    ],
) -> None:
    """
    Validate a tool manifest.

    Checks the schema and the manifest rules (at most one binary parameter,
    stdin_param naming a string parameter).
    """
    try:
        manifest = load_manifest(manifest_path)
        validate_manifest(manifest)
    except (OSError, yaml.YAMLError) as e:
        console.print(f"[red]✗[/red] Cannot read {manifest_path}: {escape(str(e))}")
        raise typer.Exit(code=1)
    except pydantic.ValidationError as e:
        console.print(f"[red]✗[/red] Invalid manifest {manifest_path}")
        for error in e.errors():
            location = ".".join(str(part) for part in error["loc"])
            console.print(f"  [dim]{location}:[/dim] {escape(error['msg'])}")
        raise typer.Exit(code=1)
    except ToolpipeError as e:
        console.print(f"[red]✗[/red] {escape(e.message)}")
        raise typer.Exit(code=1)

    params = ", ".join(manifest.parameter_names()) or "none"
    console.print(f"[green]✓[/green] {manifest.name} {manifest.version} is valid")
    console.print(f"[dim]  Parameters: {params}[/dim]")
    console.print(f"[dim]  Style: {manifest.execution.arg_style.value}, files: {manifest.execution.file_access.value}[/dim]")


if __name__ == "__main__":
    app()
