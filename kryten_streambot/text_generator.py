"""Async client for the external chat-completion text generator.

Sends an OpenAI-style chat request (role-tagged messages, max_tokens,
temperature, top_p) and returns the normalized reply. Transport errors,
timeouts and non-2xx responses are retried with linear backoff; when all
attempts fail ``TextGeneratorError`` is raised. An empty normalized reply
after the last attempt yields ``None``.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any, Callable

import aiohttp

from .errors import TextGeneratorError

if TYPE_CHECKING:
    from .config import TextGeneratorConfig


def extract_content(content: Any) -> str:
    """Pull plain text out of a message ``content`` (string or list of parts)."""
    if not content:
        return ""
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts: list[str] = []
        for part in content:
            if isinstance(part, str):
                parts.append(part)
            elif isinstance(part, dict):
                text = part.get("text") or part.get("content")
                if isinstance(text, str):
                    parts.append(text)
        return " ".join(p for p in parts if p).strip()
    if isinstance(content, dict) and isinstance(content.get("text"), str):
        return content["text"]
    return ""


class TextGenerator:
    """Chat-completion client with bounded retries."""

    def __init__(self, config: TextGeneratorConfig, logger: logging.Logger | None = None) -> None:
        self._config = config
        self._logger = logger or logging.getLogger("streambot.generator")
        self._session: aiohttp.ClientSession | None = None

        # Metrics
        self.failures: int = 0

    @property
    def enabled(self) -> bool:
        return bool(self._config.api_key.strip())

    async def start(self) -> None:
        """Create the HTTP session."""
        self._session = aiohttp.ClientSession(
            headers={
                "Authorization": f"Bearer {self._config.api_key.strip()}",
                "Content-Type": "application/json",
            },
            timeout=aiohttp.ClientTimeout(total=self._config.timeout_seconds),
        )

    async def stop(self) -> None:
        """Close the HTTP session."""
        if self._session:
            await self._session.close()
            self._session = None

    async def complete(
        self,
        messages: list[dict[str, str]],
        normalize: Callable[[str], str] = str.strip,
        max_tokens: int | None = None,
        temperature: float | None = None,
        top_p: float | None = None,
    ) -> str | None:
        """Return normalized generated text, or None if it stayed empty.

        Raises TextGeneratorError when every attempt failed.
        """
        if not self.enabled or not self._session:
            return None

        cfg = self._config
        body = {
            "model": cfg.model,
            "messages": messages,
            "max_tokens": max_tokens or cfg.max_tokens,
            "temperature": cfg.temperature if temperature is None else temperature,
            "top_p": cfg.top_p if top_p is None else top_p,
        }

        last_error: Exception | None = None
        for attempt in range(cfg.retries + 1):
            try:
                async with self._session.post(cfg.chat_url, json=body) as resp:
                    if resp.status < 200 or resp.status >= 300:
                        text = await resp.text()
                        raise TextGeneratorError(
                            f"Generator responded with status {resp.status}: {text}"
                        )
                    data = await resp.json()
                choices = data.get("choices") or [{}]
                raw = extract_content((choices[0].get("message") or {}).get("content"))
                text = normalize(raw)
                if text:
                    return text
                last_error = None
            except (aiohttp.ClientError, asyncio.TimeoutError, TextGeneratorError) as e:
                last_error = e
                self._logger.debug("Generator attempt %d failed: %s", attempt + 1, e)

            if attempt < cfg.retries:
                await asyncio.sleep(cfg.backoff_seconds * (attempt + 1))

        if last_error is not None:
            self.failures += 1
            raise TextGeneratorError(str(last_error)) from last_error
        return None
