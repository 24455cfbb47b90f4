"""Oracle backends: OpenAI-compatible APIs and local transformers models.

Backends:

- OpenAI (via the async client of the `openai` Python package)
- Local HuggingFace transformers models (via `transformers` + `torch`)

Every backend exposes the same coroutine, ``call(system_prompt,
user_prompt, temperature)``. Transient failures such as timeouts or rate
limits are raised as :class:`~maker.errors.OracleTransportError` so the
voting engine can retry them without spending vote budget.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Protocol

import openai
from openai import AsyncOpenAI

from .config import LLMBackendConfig
from .errors import OracleTransportError

logger = logging.getLogger(__name__)

# Retried by the voting engine; any other SDK error propagates unchanged.
_TRANSIENT_ERRORS = (
    openai.APIConnectionError,
    openai.APITimeoutError,
    openai.RateLimitError,
    openai.InternalServerError,
)


@dataclass
class OracleResponse:
    text: str
    token_count: int


class Oracle(Protocol):
    """Anything that can propose a move for a prompt."""

    async def call(
        self, system_prompt: str, user_prompt: str, temperature: float
    ) -> OracleResponse:
        ...


class LLMClient:
    """Async chat client for either OpenAI or local transformers models."""

    def __init__(self, cfg: LLMBackendConfig) -> None:
        self.cfg = cfg
        self._client: Optional[AsyncOpenAI] = None

        # transformers-specific fields
        self._tf_model = None
        self._tf_tokenizer = None
        self._tf_device: Optional[str] = None

        if cfg.provider == "openai":
            self._client = AsyncOpenAI(
                base_url=cfg.base_url or None,
                api_key=cfg.api_key or None,
                timeout=cfg.timeout,
                # retries are owned by the voting engine
                max_retries=0,
            )

        elif cfg.provider == "transformers":
            # Lazy import so that users who only use OpenAI don't need transformers.
            try:
                import torch  # type: ignore
                from transformers import AutoModelForCausalLM, AutoTokenizer  # type: ignore
            except ImportError as e:  # pragma: no cover
                raise RuntimeError(
                    "To use provider='transformers', install the local extra:\n"
                    "  pip install 'maker-solver[local]'\n"
                ) from e

            self._tf_device = "cuda" if torch.cuda.is_available() else "cpu"
            self._tf_tokenizer = AutoTokenizer.from_pretrained(cfg.model)
            self._tf_model = AutoModelForCausalLM.from_pretrained(
                cfg.model, torch_dtype=torch.bfloat16
            )
            self._tf_model.to(self._tf_device)
            self._tf_model.eval()

        else:
            raise ValueError(f"Unsupported provider: {cfg.provider}")

    # ------------------------------------------------------------------ utils

    @staticmethod
    def _messages(system_prompt: str, user_prompt: str) -> List[Dict[str, str]]:
        return [
            {"role": "system", "content": system_prompt},
            {"role": "user", "content": user_prompt},
        ]

    def _build_transformers_prompt(self, messages: List[Dict[str, str]]) -> str:
        """Convert chat-style messages into a single prompt string.

        If the tokenizer supports `apply_chat_template`, we use it.
        Otherwise we fall back to a simple 'ROLE: content' transcript.
        """
        assert self._tf_tokenizer is not None
        tok = self._tf_tokenizer

        if getattr(tok, "chat_template", None):
            return tok.apply_chat_template(
                messages,
                tokenize=False,
                add_generation_prompt=True,
            )

        parts = [f"{m['role'].upper()}: {m['content']}" for m in messages]
        parts.append("ASSISTANT:")
        return "\n".join(parts)

    def _generate_local(self, messages: List[Dict[str, str]], temperature: float) -> OracleResponse:
        assert self._tf_model is not None and self._tf_tokenizer is not None
        import torch  # type: ignore

        prompt = self._build_transformers_prompt(messages)
        enc = self._tf_tokenizer(prompt, return_tensors="pt")
        enc = {k: v.to(self._tf_device) for k, v in enc.items()}

        # Greedy vs sampled generation depending on temperature.
        do_sample = temperature > 0.0

        with torch.no_grad():
            out = self._tf_model.generate(
                **enc,
                do_sample=do_sample,
                temperature=temperature if do_sample else None,
                max_new_tokens=self.cfg.max_tokens,
                pad_token_id=self._tf_tokenizer.eos_token_id,
            )

        # Decode only the newly generated tokens.
        gen_ids = out[0][enc["input_ids"].shape[-1] :]
        text = self._tf_tokenizer.decode(gen_ids, skip_special_tokens=True)
        return OracleResponse(text=text, token_count=int(out[0].shape[-1]))

    # ------------------------------------------------------------------ main API

    async def call(
        self, system_prompt: str, user_prompt: str, temperature: float = 0.1
    ) -> OracleResponse:
        """Request one completion and return its text and token usage."""
        messages = self._messages(system_prompt, user_prompt)

        if self.cfg.provider == "openai":
            assert self._client is not None
            try:
                resp = await self._client.chat.completions.create(
                    model=self.cfg.model,
                    messages=messages,
                    temperature=temperature,
                    max_tokens=self.cfg.max_tokens,
                )
            except _TRANSIENT_ERRORS as e:
                logger.warning("Oracle call failed: %s", e)
                raise OracleTransportError(str(e)) from e

            content = resp.choices[0].message.content if resp.choices else None
            tokens = resp.usage.total_tokens if resp.usage else 0
            return OracleResponse(text=content or "", token_count=tokens)

        if self.cfg.provider == "transformers":
            try:
                return await asyncio.to_thread(self._generate_local, messages, temperature)
            except RuntimeError as e:
                # CUDA OOM and device errors surface as RuntimeError
                raise OracleTransportError(str(e)) from e

        # Should never get here because of __init__ checks.
        raise RuntimeError(f"Unsupported provider at runtime: {self.cfg.provider}")
