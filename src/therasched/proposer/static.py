# src/therasched/proposer/static.py
from __future__ import annotations

import json
from collections import deque
from collections.abc import Iterable
from pathlib import Path
from typing import Any

from therasched.errors import DataError, ProposerError
from therasched.proposer.base import ChatPrompt


class StaticProposer:
    """
    Replays recorded proposer responses in order.

    Generation and repair calls draw from separate queues. Every prompt is
    kept in `prompts` so callers can inspect what would have been sent.
    """

    def __init__(
        self,
        generate_responses: Iterable[str | dict[str, Any]] = (),
        repair_responses: Iterable[str | dict[str, Any]] = (),
        configured: bool = True,
    ) -> None:
        self._generate = deque(self._as_text(r) for r in generate_responses)
        self._repair = deque(self._as_text(r) for r in repair_responses)
        self._configured = configured
        self.prompts: list[tuple[str, ChatPrompt]] = []

    @staticmethod
    def _as_text(response: str | dict[str, Any]) -> str:
        return response if isinstance(response, str) else json.dumps(response)

    @classmethod
    def from_file(cls, path: str | Path) -> StaticProposer:
        """
        Load recorded responses from a JSON file:
            {"generate": [...], "repair": [...]}
        Each item is either a response object or its raw text.
        """
        p = Path(path)
        try:
            data = json.loads(p.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            raise DataError(
                f"Failed to read recorded responses: {p}",
                source="proposer.StaticProposer.from_file",
                suggested_action="Check the file path and JSON syntax.",
            ) from e
        if not isinstance(data, dict):
            raise DataError(
                "Recorded responses must be a JSON object with 'generate'/'repair' lists",
                source="proposer.StaticProposer.from_file",
            )
        return cls(data.get("generate", []), data.get("repair", []))

    def is_configured(self) -> bool:
        return self._configured

    async def generate(self, prompt: ChatPrompt) -> str:
        self.prompts.append(("generate", prompt))
        return self._next(self._generate, "generate")

    async def repair(self, prompt: ChatPrompt) -> str:
        self.prompts.append(("repair", prompt))
        return self._next(self._repair, "repair")

    def _next(self, queue: deque[str], kind: str) -> str:
        if not queue:
            raise ProposerError(
                f"No recorded {kind} response left",
                source="proposer.StaticProposer",
                retryable=False,
            )
        return queue.popleft()


__all__ = ["StaticProposer"]
