"""mnemo runtime — the one object a host constructs per process.

Responsibilities:
1. Scope resolution for the working directory
2. Backend selection (tool calls if the host wires a dispatcher, else REST)
3. First-turn context injection, at most once per session id
4. Memory-keyword nudges
5. The ``openmemory`` tool surface and temporal fact access

Contract: construct once per process and keep it for the process lifetime.
The injected-session set lives only in memory, so a restart re-injects on
each session's next first turn.
"""

from __future__ import annotations

import logging
import re
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from mnemo.backends.selector import BackendSelector
from mnemo.context import format_context
from mnemo.retrieval import RetrievalOrchestrator
from mnemo.scope import get_scopes
from mnemo.temporal import TemporalFactClient
from mnemo.tools.memory_tool import CommandRouter

if TYPE_CHECKING:
    from mnemo.backends.tool_call import ToolCaller
    from mnemo.config import MnemoConfig

logger = logging.getLogger(__name__)

_CODE_BLOCK = re.compile(r"```.*?```", re.DOTALL)
_INLINE_CODE = re.compile(r"`[^`]+`")

MEMORY_KEYWORD = re.compile(
    r"\b(remember|memorize|save\s+this|note\s+this|keep\s+in\s+mind|don'?t\s+forget"
    r"|learn\s+this|store\s+this|record\s+this|make\s+a\s+note|take\s+note|jot\s+down"
    r"|commit\s+to\s+memory|remember\s+that|never\s+forget|always\s+remember)\b",
    re.IGNORECASE,
)

MEMORY_NUDGE = """\
[MEMORY TRIGGER DETECTED]
The user wants you to remember something. You MUST use the `openmemory` tool with `mode: "add"` to save this information.

Extract the key information the user wants remembered and save it as a concise, searchable memory.
- Use `scope: "project"` for project-specific preferences (e.g., "run lint with tests")
- Use `scope: "user"` for cross-project preferences (e.g., "prefers concise responses")
- Choose an appropriate `type`: "preference", "project-config", "learned-pattern", etc.

DO NOT skip this step. The user explicitly asked you to remember."""


def detect_memory_keyword(text: str) -> bool:
    """Keyword check that ignores fenced and inline code."""
    without_code = _INLINE_CODE.sub("", _CODE_BLOCK.sub("", text))
    return MEMORY_KEYWORD.search(without_code) is not None


@dataclass
class Injection:
    """Synthetic text the host should add to the user's message."""

    context: str | None = None  # prepend
    nudge: str | None = None  # append


class Mnemo:
    """Explicit runtime context shared by the chat hook and the tool."""

    def __init__(
        self,
        config: MnemoConfig,
        directory: str,
        caller: ToolCaller | None = None,
    ) -> None:
        self.config = config
        self.directory = directory
        self.scopes = get_scopes(directory)
        self.backend = BackendSelector(config, caller)
        self.facts = TemporalFactClient(self.backend.rest)
        self.router = CommandRouter(self.backend, self.scopes)
        self.retrieval = RetrievalOrchestrator(self.backend, config)
        self._injected_sessions: set[str] = set()
        logger.info("mnemo initialized for %s (user=%s)", directory, self.scopes.user.user_id)

    def set_caller(self, caller: ToolCaller | None) -> None:
        self.backend.set_caller(caller)

    def was_injected(self, session_id: str) -> bool:
        return session_id in self._injected_sessions

    async def handle_message(self, session_id: str, text: str) -> Injection:
        """Chat hook. Never raises; a memory outage must not break the turn."""
        injection = Injection()
        if not text.strip():
            logger.debug("Empty message, skipping")
            return injection

        start = time.monotonic()
        try:
            if detect_memory_keyword(text):
                logger.debug("Memory keyword detected")
                injection.nudge = MEMORY_NUDGE

            if session_id in self._injected_sessions:
                return injection
            # Mark before awaiting so concurrent turns of one session inject once
            self._injected_sessions.add(session_id)

            retrieved = await self.retrieval.gather(text, self.scopes)
            context = format_context(
                retrieved.profile,
                retrieved.user_memories,
                retrieved.project_memories,
                self.config,
            )
            if context:
                injection.context = context
                logger.info(
                    "Context injected for %s (%d chars, %.0fms)",
                    session_id,
                    len(context),
                    (time.monotonic() - start) * 1000,
                )
        except Exception as e:
            logger.error("handle_message failed: %s", e)
        return injection

    async def execute(self, mode: str | None = None, **args: Any) -> str:
        """Run one ``openmemory`` tool command and return its JSON envelope."""
        return await self.router.execute(mode, **args)
