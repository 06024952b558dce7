"""
Vision Model Gateway — single call site for document images

Both pipeline stages (classification and extraction) talk to the vision
model through one narrow method:

  ┌─────────────────────────────────────────────────────┐
  │  VisionModelClient.call(prompt, image, mime_type)   │
  │       │                                             │
  │       ▼                                             │
  │  build_messages()      ← system prompt + image_url  │
  │       │                   data URL + instruction    │
  │       ▼                                             │
  │  ChatOpenAI (JSON mode) ← one model per max_tokens  │
  │       │                                             │
  │       ▼                                             │
  │  asyncio.wait_for       ← per-call timeout          │
  │       │                                             │
  │       ▼                                             │
  │  raw JSON string                                    │
  └─────────────────────────────────────────────────────┘

The client never retries. Transport errors, rate limits and timeouts are
raised to the caller; the stages turn them into their degraded results.

Usage::

    client = VisionModelClient()
    raw = await client.call(
        prompt, image_bytes, "image/png",
        instruction="Please classify this document.",
        max_tokens=1024,
    )
"""

from __future__ import annotations

import asyncio
import base64
import logging
import time
from dataclasses import dataclass
from typing import Protocol

from langchain_core.language_models import BaseChatModel
from langchain_core.messages import BaseMessage, HumanMessage, SystemMessage

from careify.core.config import Settings, settings as default_settings

logger = logging.getLogger(__name__)


class VisionClient(Protocol):
    """What the pipeline stages need from a model client."""

    async def call(
        self,
        prompt:     str,
        image:      bytes,
        mime_type:  str,
        *,
        instruction: str,
        max_tokens:  int | None = None,
    ) -> str: ...


@dataclass
class VisionCallStats:
    """Timing of one model call; logged, never returned to callers."""
    model:        str
    max_tokens:   int
    image_bytes:  int
    output_chars: int
    latency_ms:   float


class VisionModelClient:
    """
    OpenAI vision chat model behind langchain, in JSON-object response mode.

    One ChatOpenAI instance is built lazily per max_tokens value and reused;
    the client is safe for concurrent use.
    """

    def __init__(self, cfg: Settings | None = None, llm: BaseChatModel | None = None) -> None:
        self._cfg     = cfg or default_settings
        self._timeout = self._cfg.llm_timeout_seconds
        self._fixed   = llm   # injected model is used for every max_tokens value
        self._models: dict[int, BaseChatModel] = {}

    @property
    def model_name(self) -> str:
        return self._cfg.llm_model

    # -----------------------------------------------------------------------
    # Model construction
    # -----------------------------------------------------------------------

    def _build_llm(self, max_tokens: int) -> BaseChatModel:
        from langchain_openai import ChatOpenAI

        llm = ChatOpenAI(
            model=self._cfg.llm_model,
            api_key=self._cfg.openai_api_key,
            temperature=self._cfg.llm_temperature,
            max_tokens=max_tokens,
        )
        return llm.bind(response_format={"type": "json_object"})  # type: ignore[return-value]

    def _llm_for(self, max_tokens: int) -> BaseChatModel:
        if self._fixed is not None:
            return self._fixed
        if max_tokens not in self._models:
            self._models[max_tokens] = self._build_llm(max_tokens)
        return self._models[max_tokens]

    @staticmethod
    def build_messages(prompt: str, image: bytes, mime_type: str, instruction: str) -> list[BaseMessage]:
        """[SystemMessage(prompt), HumanMessage(image data URL + instruction)]"""
        encoded = base64.b64encode(image).decode("ascii")
        return [
            SystemMessage(content=prompt),
            HumanMessage(
                content=[
                    {
                        "type": "image_url",
                        "image_url": {"url": f"data:{mime_type};base64,{encoded}", "detail": "high"},
                    },
                    {"type": "text", "text": instruction},
                ]
            ),
        ]

    # -----------------------------------------------------------------------
    # Call
    # -----------------------------------------------------------------------

    async def call(
        self,
        prompt:      str,
        image:       bytes,
        mime_type:   str,
        *,
        instruction: str,
        max_tokens:  int | None = None,
    ) -> str:
        """
        Send one image to the model and return the raw response text.

        Raises:
            TimeoutError: the call exceeded llm_timeout_seconds.
            Exception:    any provider/transport error, unchanged.
        """
        tokens   = max_tokens or self._cfg.llm_max_tokens
        llm      = self._llm_for(tokens)
        messages = self.build_messages(prompt, image, mime_type, instruction)

        t0 = time.perf_counter()
        try:
            result = await asyncio.wait_for(llm.ainvoke(messages), timeout=self._timeout)
        except asyncio.TimeoutError as exc:
            logger.warning(
                "VisionModel | timed out | model=%s timeout_s=%.1f",
                self._cfg.llm_model, self._timeout,
            )
            raise TimeoutError(f"Vision model timed out after {self._timeout}s") from exc

        content = result.content if isinstance(result.content, str) else ""
        stats = VisionCallStats(
            model        = self._cfg.llm_model,
            max_tokens   = tokens,
            image_bytes  = len(image),
            output_chars = len(content),
            latency_ms   = (time.perf_counter() - t0) * 1000,
        )
        logger.info(
            "VisionModel | model=%s max_tokens=%d image_bytes=%d output_chars=%d latency_ms=%.1f",
            stats.model, stats.max_tokens, stats.image_bytes, stats.output_chars, stats.latency_ms,
        )
        return content
