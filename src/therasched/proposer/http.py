# src/therasched/proposer/http.py
"""
@brief
OpenAI-compatible chat-completions adapter for the Proposer protocol.

@details
One POST per call, no streaming. The response content is returned as raw
text; shape checks live in proposer.parsing.
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from therasched.errors import ProposerError, ProposerNotConfiguredError
from therasched.proposer.base import ChatPrompt
from therasched.schemas.config import ProposerConfig

logger = logging.getLogger(__name__)

# rate limits and server-side failures are worth another attempt
_RETRYABLE_STATUS = {408, 409, 429}


class HttpChatProposer:
    """
    Proposer backed by an HTTP chat-completions endpoint.

    An httpx.AsyncClient may be injected (tests use httpx.MockTransport);
    otherwise a short-lived client is opened per call.
    """

    def __init__(self, cfg: ProposerConfig, client: httpx.AsyncClient | None = None) -> None:
        self.cfg = cfg
        self._client = client

    def is_configured(self) -> bool:
        return self.cfg.is_configured()

    async def generate(self, prompt: ChatPrompt) -> str:
        return await self._chat(prompt, max_tokens=self.cfg.max_tokens)

    async def repair(self, prompt: ChatPrompt) -> str:
        return await self._chat(prompt, max_tokens=self.cfg.repair_max_tokens)

    # ---------- Internals ----------
    def _payload(self, prompt: ChatPrompt, max_tokens: int) -> dict[str, Any]:
        return {
            "model": self.cfg.model,
            "messages": [
                {"role": "system", "content": prompt.system_prompt},
                {"role": "user", "content": prompt.user_prompt},
            ],
            "response_format": {"type": "json_object"},
            "max_tokens": max_tokens,
        }

    async def _post(self, client: httpx.AsyncClient, body: dict[str, Any]) -> httpx.Response:
        return await client.post(
            f"{self.cfg.base_url.rstrip('/')}/chat/completions",
            json=body,
            headers={"Authorization": f"Bearer {self.cfg.api_key()}"},
            timeout=self.cfg.timeout_seconds,
        )

    async def _chat(self, prompt: ChatPrompt, max_tokens: int) -> str:
        """
        @brief
        Send one chat completion request and return the message content.

        @raises
            ProposerNotConfiguredError
                If provider or API key is missing.
            ProposerError
                On timeout, transport error, non-2xx status or empty content.
        """
        source = "proposer.HttpChatProposer"
        if not self.is_configured():
            raise ProposerNotConfiguredError(
                f"Proposer not configured (provider={self.cfg.provider}, "
                f"key env={self.cfg.api_key_env})",
                source=source,
            )

        body = self._payload(prompt, max_tokens)
        logger.info("Calling proposer model=%s max_tokens=%d", self.cfg.model, max_tokens)

        # (1) Transport
        try:
            if self._client is not None:
                response = await self._post(self._client, body)
            else:
                async with httpx.AsyncClient(timeout=self.cfg.timeout_seconds) as client:
                    response = await self._post(client, body)
        except httpx.TimeoutException as e:
            raise ProposerError(
                f"Proposer request timed out after {self.cfg.timeout_seconds}s",
                source=source,
            ) from e
        except httpx.HTTPError as e:
            raise ProposerError(f"Proposer transport error: {e}", source=source) from e

        # (2) Status
        if response.status_code >= 400:
            retryable = response.status_code in _RETRYABLE_STATUS or response.status_code >= 500
            logger.error("Proposer returned HTTP %d", response.status_code)
            raise ProposerError(
                f"Proposer returned HTTP {response.status_code}",
                source=source,
                retryable=retryable,
            )

        # (3) Content
        try:
            data = response.json()
            content = data["choices"][0]["message"]["content"]
        except (ValueError, KeyError, IndexError, TypeError) as e:
            raise ProposerError(
                "Unexpected chat completion payload", source=source, retryable=False
            ) from e

        if not content:
            raise ProposerError("No response from proposer", source=source)
        return str(content)


__all__ = ["HttpChatProposer"]
