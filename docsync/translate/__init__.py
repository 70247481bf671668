"""Translate backends.

``LLMTranslator`` talks to any OpenAI-compatible chat-completions endpoint.
``fallback_translate`` is a deterministic phrase substitution used only as a
degraded result when the backend is unavailable.
"""

from __future__ import annotations

import logging
import re
from typing import Protocol

from openai import AsyncOpenAI, OpenAIError

from ..config import DEFAULT_PROMPT, LLMConfig
from ..errors import TranslationError

logger = logging.getLogger(__name__)

FALLBACK_PHRASES: tuple[tuple[str, str], ...] = (
    ("Getting Started", "开始使用"),
    ("API Reference", "API 参考"),
    ("Authentication", "认证"),
    ("Endpoints", "端点"),
    ("Parameters", "参数"),
    ("Response", "响应"),
    ("Documentation", "文档"),
    ("Installation", "安装"),
    ("Configuration", "配置"),
    ("Usage", "使用方法"),
    ("Examples", "示例"),
    ("FAQ", "常见问题"),
    ("Troubleshooting", "故障排除"),
    ("Contributing", "贡献指南"),
    ("License", "许可证"),
    ("Changelog", "更新日志"),
)
_FALLBACK_RE = re.compile("|".join(re.escape(source) for source, _ in FALLBACK_PHRASES))
_FALLBACK_MAP = dict(FALLBACK_PHRASES)


class Translator(Protocol):
    async def translate(self, text: str, prompt: str | None = None) -> str: ...


def clean_translation_result(content: str) -> str:
    """Strip surrounding whitespace and a wrapping Markdown code fence.

    An opening fence line (```` ``` ````, ```` ```markdown ```` ...) and a
    trailing ```` ``` ```` are removed independently.
    """
    cleaned = content.strip()
    if cleaned.startswith("```"):
        newline = cleaned.find("\n")
        if newline != -1:
            cleaned = cleaned[newline + 1 :]
    if cleaned.endswith("```"):
        cleaned = cleaned[:-3]
    return cleaned.strip()


def fallback_translate(text: str) -> str:
    """Replace a fixed table of common heading phrases. Not a real translation."""
    return _FALLBACK_RE.sub(lambda match: _FALLBACK_MAP[match.group(0)], text)


class LLMTranslator:
    """Chat-completions translator: system message is the prompt, user message the text."""

    def __init__(
        self,
        config: LLMConfig,
        prompt: str | None = None,
        client: AsyncOpenAI | None = None,
    ) -> None:
        self.config = config
        self.prompt = prompt or DEFAULT_PROMPT
        self._client = client

    def _get_client(self) -> AsyncOpenAI:
        if self._client is None:
            api_key = self.config.resolved_api_key()
            if not api_key:
                raise TranslationError("translate backend API key is not configured")
            self._client = AsyncOpenAI(api_key=api_key, base_url=self.config.base_url)
        return self._client

    async def translate(self, text: str, prompt: str | None = None) -> str:
        client = self._get_client()
        try:
            response = await client.chat.completions.create(
                model=self.config.model,
                messages=[
                    {"role": "system", "content": prompt or self.prompt},
                    {"role": "user", "content": text},
                ],
                temperature=self.config.temperature,
                max_tokens=self.config.max_tokens,
            )
        except OpenAIError as exc:
            raise TranslationError(f"translate request failed: {exc}") from exc

        if not response.choices or not response.choices[0].message.content:
            raise TranslationError("translate backend returned an empty response")

        usage = getattr(response, "usage", None)
        if usage is not None:
            logger.info(
                "translated %d chars with %s (%s prompt / %s completion tokens)",
                len(text),
                self.config.model,
                usage.prompt_tokens,
                usage.completion_tokens,
            )
        return clean_translation_result(response.choices[0].message.content)

    async def validate(self) -> bool:
        """Whether the configured endpoint accepts the key (lists models)."""
        try:
            client = self._get_client()
            await client.models.list()
        except (TranslationError, OpenAIError) as exc:
            logger.warning("translate backend validation failed: %s", exc)
            return False
        return True


__all__ = [
    "FALLBACK_PHRASES",
    "Translator",
    "LLMTranslator",
    "clean_translation_result",
    "fallback_translate",
]
