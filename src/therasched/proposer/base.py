# src/therasched/proposer/base.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol, runtime_checkable


@dataclass(frozen=True)
class ChatPrompt:
    """System + user message pair sent to the proposer in one call."""

    system_prompt: str
    user_prompt: str


@runtime_checkable
class Proposer(Protocol):
    """
    @brief
    External, untrusted schedule proposer.

    @details
    Both calls return the raw JSON text of a single response; parsing and
    validation happen in the engine. Implementations raise ProposerError
    (or a subclass) for transport, timeout or empty-response failures.
    """

    def is_configured(self) -> bool: ...

    async def generate(self, prompt: ChatPrompt) -> str: ...

    async def repair(self, prompt: ChatPrompt) -> str: ...
