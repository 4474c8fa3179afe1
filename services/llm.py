"""
Text-completion capability used for AI-assisted field mapping and email drafting.

Providers are tried in the configured order (Gemini first, Groq fallback, OpenAI last).
Each SDK call is blocking, so it runs in a worker thread under a strict timeout.
A provider without an API key is skipped. Every provider failing raises CompletionError;
callers treat that as "nothing resolved".
"""
from __future__ import annotations

import asyncio
import hashlib
import logging
import time
from typing import Callable, Optional, Protocol

from config import Settings
from services.errors import CompletionError

logger = logging.getLogger(__name__)

# Simple in-process cache so repeated identical prompts
# don't re-bill / re-hit provider rate limits.
_CACHE_MAX = 32
_CACHE_TTL_SECONDS = 60 * 30  # 30 minutes


class TextCompletion(Protocol):
    async def complete(self, system_prompt: str, user_prompt: str) -> str: ...


def _hash_prompt(system_prompt: str, user_prompt: str) -> str:
    return hashlib.sha256(f"{system_prompt}\x00{user_prompt}".encode("utf-8", errors="ignore")).hexdigest()


class _PromptCache:
    def __init__(self, max_entries: int = _CACHE_MAX, ttl_seconds: float = _CACHE_TTL_SECONDS):
        self._items: dict[str, tuple[float, str]] = {}
        self._max = max_entries
        self._ttl = ttl_seconds

    def get(self, key: str) -> Optional[str]:
        item = self._items.get(key)
        if not item:
            return None
        ts, value = item
        if time.time() - ts > self._ttl:
            self._items.pop(key, None)
            return None
        return value

    def put(self, key: str, value: str) -> None:
        # Evict oldest if needed
        if key not in self._items and len(self._items) >= self._max:
            oldest_key = min(self._items.items(), key=lambda kv: kv[1][0])[0]
            self._items.pop(oldest_key, None)
        self._items[key] = (time.time(), value)


class LLMCompletionClient:
    """Multi-provider completion client; constructed once at startup and shared."""

    def __init__(self, settings: Settings, temperature: float = 0.1, max_output_tokens: int = 4096):
        self._settings = settings
        self._temperature = temperature
        self._max_tokens = max_output_tokens
        self._cache = _PromptCache()
        self._providers: dict[str, Callable[[str, str], Optional[str]]] = {
            "gemini": self._call_gemini,
            "groq": self._call_groq,
            "openai": self._call_openai,
        }

    @property
    def available(self) -> bool:
        return any(self._has_key(p) for p in self._settings.provider_order)

    def _has_key(self, provider: str) -> bool:
        return bool(getattr(self._settings, f"{provider}_api_key", None))

    async def complete(self, system_prompt: str, user_prompt: str) -> str:
        cache_key = _hash_prompt(system_prompt, user_prompt)
        cached = self._cache.get(cache_key)
        if cached is not None:
            return cached

        errors: list[str] = []
        for provider in self._settings.provider_order:
            call = self._providers.get(provider)
            if call is None:
                errors.append(f"{provider}: unknown provider")
                continue
            if not self._has_key(provider):
                continue
            try:
                text = await asyncio.wait_for(
                    asyncio.to_thread(call, system_prompt, user_prompt),
                    timeout=self._settings.llm_timeout_seconds,
                )
            except asyncio.TimeoutError:
                logger.warning("LLM provider %s timed out after %.0fs", provider, self._settings.llm_timeout_seconds)
                errors.append(f"{provider}: timeout")
                continue
            except Exception as e:
                logger.warning("LLM provider %s failed: %s", provider, e)
                errors.append(f"{provider}: {e}")
                continue
            if text:
                self._cache.put(cache_key, text)
                return text
            errors.append(f"{provider}: empty response")

        raise CompletionError("; ".join(errors) or "no text-completion provider configured")

    def _call_gemini(self, system_prompt: str, user_prompt: str) -> Optional[str]:
        import google.generativeai as genai

        genai.configure(api_key=self._settings.gemini_api_key)
        model = genai.GenerativeModel(self._settings.gemini_model, system_instruction=system_prompt)
        resp = model.generate_content(
            user_prompt,
            generation_config=genai.types.GenerationConfig(
                temperature=self._temperature,
                max_output_tokens=self._max_tokens,
            ),
        )
        content = resp.text if resp and resp.text else None
        return content.strip() if content else None

    def _call_groq(self, system_prompt: str, user_prompt: str) -> Optional[str]:
        from groq import Groq

        client = Groq(api_key=self._settings.groq_api_key)
        resp = client.chat.completions.create(
            model=self._settings.groq_model,
            messages=[
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
            temperature=self._temperature,
            max_tokens=self._max_tokens,
        )
        content = resp.choices[0].message.content
        return content.strip() if content else None

    def _call_openai(self, system_prompt: str, user_prompt: str) -> Optional[str]:
        from openai import OpenAI

        client = OpenAI(api_key=self._settings.openai_api_key)
        resp = client.chat.completions.create(
            model=self._settings.openai_model,
            messages=[
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
            temperature=self._temperature,
            max_tokens=self._max_tokens,
        )
        content = resp.choices[0].message.content
        return content.strip() if content else None
