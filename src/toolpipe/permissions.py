"""
Permission gate for file-touching tools.

The gate answers one question before a tool touches the sandbox: may this
tool run with these arguments? The answer comes from the policy first; only
ASK falls through to an interactive prompt.
"""

import inspect
import logging
from collections.abc import Awaitable, Callable, Mapping
from typing import Any

from toolpipe.schema import PermissionDecision, PermissionLevel, PermissionPolicy

logger = logging.getLogger(__name__)

PromptCallback = Callable[[str, Mapping[str, Any]], bool | Awaitable[bool]]


class PermissionGate:
    """
    Decides whether a tool may run.

    Args:
        policy: Permission levels (default: ask for everything)
        prompt: Callback used for ASK; may be sync or async. Without one,
            ASK denies.

    Example:
        gate = PermissionGate(PermissionPolicy(default=PermissionLevel.ALWAYS))
        decision = await gate.check("cat", {"path": "notes.txt"})
    """

    def __init__(
        self,
        policy: PermissionPolicy | None = None,
        prompt: PromptCallback | None = None,
    ) -> None:
        self.policy = policy or PermissionPolicy()
        self.prompt = prompt

    @classmethod
    def allow_all(cls) -> "PermissionGate":
        """A gate that grants everything."""
        return cls(PermissionPolicy(default=PermissionLevel.ALWAYS))

    @classmethod
    def from_callback(cls, prompt: PromptCallback) -> "PermissionGate":
        """A gate that asks the callback about every tool."""
        return cls(PermissionPolicy(default=PermissionLevel.ASK), prompt=prompt)

    async def check(self, tool_name: str, args: Mapping[str, Any]) -> PermissionDecision:
        level = self.policy.level_for(tool_name)

        if level == PermissionLevel.ALWAYS:
            return PermissionDecision(allowed=True, level=level)

        if level == PermissionLevel.NEVER:
            logger.info("Permission refused by policy: %s", tool_name)
            return PermissionDecision(allowed=False, level=level, reason="blocked by policy")

        if self.prompt is None:
            return PermissionDecision(
                allowed=False,
                level=level,
                reason="no prompt available to ask for permission",
            )

        answer = self.prompt(tool_name, args)
        if inspect.isawaitable(answer):
            answer = await answer

        if answer:
            return PermissionDecision(allowed=True, level=level)
        logger.info("Permission declined by user: %s", tool_name)
        return PermissionDecision(allowed=False, level=level, reason="declined by user")

    def __repr__(self) -> str:
        return f"PermissionGate(default={self.policy.default.value}, overrides={len(self.policy.tools)})"
