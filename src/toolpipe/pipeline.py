"""
Pipeline composer: Unix-style chains of tools.

A pipeline request is an ordered list of commands. The first command gets no
piped input; every later command receives the exact output bytes of the one
before it.

Design Principles:
    - The whole request is validated before anything runs: unknown tools,
      bad manifests, bad arguments and malformed base64 all fail with zero
      commands executed
    - Execution is fail-fast: the first failing step ends the run and its
      error is reported verbatim, prefixed with the step number and tool
    - Binary data is never re-encoded between steps
    - run() never raises for caller mistakes; it returns a failed result
"""

import asyncio
import logging
from collections.abc import Mapping
from typing import Any

import pydantic

from toolpipe.contract import ConvertedInvocation
from toolpipe.errors import (
    ErrorKind,
    ExecutionCancelledError,
    PipelineEmptyError,
    PipelineError,
    PipelineTooLongError,
    ToolpipeError,
    ValidationError,
)
from toolpipe.runtime import ToolRuntime
from toolpipe.schema import CacheMetadata, ExecutionResult, PipelineRequest, PipelineResult
from toolpipe.summary import needs_summary, summary_from_settings
from toolpipe.tools.base import Tool

logger = logging.getLogger(__name__)


def _describe_validation_error(exc: pydantic.ValidationError) -> str:
    problems = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error["loc"])
        problems.append(f"{location}: {error['msg']}" if location else error["msg"])
    return "Invalid pipeline request: " + "; ".join(problems)


class PipelineComposer:
    """
    Runs pipeline requests on a ToolRuntime.

    Args:
        runtime: Runtime used for every step

    Example:
        composer = PipelineComposer(runtime)
        result = await composer.run({
            "commands": [
                {"tool": "cat", "args": {"path": "fruits.txt"}},
                {"tool": "grep", "args": {"pattern": "^a"}},
                {"tool": "sort"},
            ]
        })
    """

    def __init__(self, runtime: ToolRuntime) -> None:
        self.runtime = runtime

    def parse_request(self, request: PipelineRequest | Mapping[str, Any]) -> PipelineRequest:
        """
        Coerce a raw request into a PipelineRequest.

        Raises:
            PipelineEmptyError: If there are no commands
            ValidationError: If the request does not match the schema
        """
        if isinstance(request, PipelineRequest):
            return request
        if not isinstance(request, Mapping):
            raise ValidationError(message="Pipeline request must be an object")
        if not request.get("commands"):
            raise PipelineEmptyError()
        try:
            return PipelineRequest.model_validate(request)
        except pydantic.ValidationError as e:
            raise ValidationError(message=_describe_validation_error(e)) from e

    def validate(self, request: PipelineRequest) -> list[tuple[Tool, ConvertedInvocation]]:
        """
        Resolve and convert every step before execution.

        Raises:
            ValidationError: For the first invalid step, with step_index in
                its context
        """
        if not request.commands:
            raise PipelineEmptyError()

        limit = self.runtime.settings.max_pipeline_steps
        if len(request.commands) > limit:
            raise PipelineTooLongError(count=len(request.commands), max_count=limit)

        prepared = []
        for index, step in enumerate(request.commands):
            try:
                tool = self.runtime.registry.get(step.tool)
                invocation = self.runtime.prepare(tool, step.args, piped=index > 0)
            except ValidationError as e:
                e.context["step_index"] = index
                e.context["step_tool"] = step.tool
                raise
            prepared.append((tool, invocation))
        return prepared

    async def run(
        self,
        request: PipelineRequest | Mapping[str, Any],
        *,
        cancel: asyncio.Event | None = None,
    ) -> PipelineResult:
        """
        Validate and execute a pipeline.

        Args:
            request: PipelineRequest or the equivalent dict
            cancel: Event that aborts the run when set

        Returns:
            PipelineResult; never raises for invalid requests
        """
        try:
            parsed = self.parse_request(request)
            steps = self.validate(parsed)
        except ToolpipeError as e:
            logger.info("Pipeline rejected: %s", e.message)
            step_index = e.context.get("step_index")
            return PipelineResult(
                success=False,
                error=e.message,
                error_kind=e.kind,
                failed_step=step_index,
                failed_tool=e.context.get("step_tool"),
                commands_executed=0,
            )

        debug = parsed.debug
        records: list[ExecutionResult] = []
        piped: bytes | None = None
        last: ExecutionResult | None = None
        executed = 0

        for index, (tool, invocation) in enumerate(steps):
            if cancel is not None and cancel.is_set():
                return self._failure(
                    index,
                    tool.name,
                    ExecutionCancelledError(tool=tool.name).message,
                    ErrorKind.CANCELLED,
                    executed,
                    records if debug else None,
                )

            if piped is not None:
                invocation = invocation.with_piped_stdin(piped)

            executed += 1
            result = await self.runtime.execute(tool, invocation, cancel=cancel)
            if debug:
                records.append(result)

            if not result.success:
                return self._failure(
                    index,
                    tool.name,
                    result.error or result.stderr or f"exited with code {result.exit_code}",
                    result.error_kind or ErrorKind.EXECUTION,
                    executed,
                    records if debug else None,
                )

            piped = result.output_bytes
            last = result

        logger.info("Pipeline of %d commands succeeded", executed)
        return self._success(last, executed, records if debug else None)

    def _failure(
        self,
        index: int,
        tool_name: str,
        message: str,
        kind: ErrorKind,
        executed: int,
        records: list[ExecutionResult] | None,
    ) -> PipelineResult:
        error = PipelineError(
            step_index=index,
            tool=tool_name,
            underlying_error=message,
            underlying_kind=kind,
        )
        logger.info("%s", error.message)
        return PipelineResult(
            success=False,
            error=error.message,
            error_kind=kind,
            failed_step=index,
            failed_tool=tool_name,
            commands_executed=executed,
            intermediate_results=records,
        )

    def _success(
        self,
        last: ExecutionResult,
        executed: int,
        records: list[ExecutionResult] | None,
    ) -> PipelineResult:
        output = last.stdout
        result_id = None
        summary = None
        settings = self.runtime.settings
        if needs_summary(output, settings):
            summary = summary_from_settings(output, None, settings, default_type="Pipeline output")
            result_id = self.runtime.cache.store(
                "pipe",
                output,
                CacheMetadata(
                    line_count=summary.line_count,
                    byte_size=summary.byte_size,
                    file_type=summary.file_type,
                ),
            )

        return PipelineResult(
            success=True,
            output=output,
            output_binary=last.stdout_binary,
            commands_executed=executed,
            intermediate_results=records,
            result_id=result_id,
            summary=summary,
        )
