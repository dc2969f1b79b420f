"""Generative oracle interface and the multi-provider LLM client."""

import asyncio
import os
import random
import re
import time
from abc import ABC, abstractmethod

from dotenv import load_dotenv

from src.contracts.errors import OracleCallError, QuotaExhaustedError
from src.contracts.schemas import GenerationOptions, GenerationResponse, TokenUsage

load_dotenv()

SUPPORTED_PROVIDERS = ("gemini", "groq", "cerebras")

# Minimum seconds between requests per provider (free-tier safe)
PROVIDER_INTERVALS = {
    "cerebras": 2.0,
    "groq": 3.0,
    "gemini": 4.0,
}

# Pricing per 1M tokens (rough estimates)
PRICING = {
    "gemini": {"in": 0.10, "out": 0.40},
    "groq": {"in": 0.50, "out": 0.50},
    "cerebras": {"in": 0.20, "out": 0.20},
}


class GenerativeOracle(ABC):
    """Anything that turns a prompt into text."""

    @abstractmethod
    async def generate(
        self,
        prompt: str,
        options: GenerationOptions | None = None,
    ) -> GenerationResponse:
        """Generate a response for ``prompt``.

        Implementations raise on failure; retry and fallback are the caller's job.
        """
        ...


class ProviderStats:
    """Track throttling state and API keys for one provider."""

    def __init__(self, name: str, interval: float):
        self.name = name
        self.interval = interval
        self.last_request_time = 0.0
        self.lock = asyncio.Lock()

        # Multi-key support: GROQ_API_KEY=key1,key2
        env_var = f"{name.upper()}_API_KEY"
        raw_keys = os.getenv(env_var, "")
        if name == "gemini" and not raw_keys:
            raw_keys = os.getenv("GOOGLE_API_KEY", "")
        self.keys = [k.strip() for k in raw_keys.split(",") if k.strip()]
        self.current_key_index = 0

    def get_current_key(self) -> str | None:
        if not self.keys:
            return None
        return self.keys[self.current_key_index]

    def rotate_key(self) -> bool:
        """Rotate to the next key. Returns True if we looped back."""
        if not self.keys:
            return False
        self.current_key_index = (self.current_key_index + 1) % len(self.keys)
        return self.current_key_index == 0


class LLMClient(GenerativeOracle):
    """Client for Gemini, Groq and Cerebras.

    Each call goes to exactly one provider (``options.provider`` or the
    default). Failover between providers is handled by the resilient call
    envelope, which passes the route name in as the provider.
    """

    def __init__(self, provider: str | None = None, model: str | None = None):
        self.default_provider = (provider or os.getenv("LLM_PROVIDER", "gemini")).lower()
        self.model = model
        self.providers = {name: ProviderStats(name, PROVIDER_INTERVALS[name]) for name in SUPPORTED_PROVIDERS}
        self._clients: dict[str, object] = {}

        # Usage tracking
        self.total_tokens = 0
        self.total_cost = 0.0

    def _get_client(self, stats: ProviderStats, key: str):
        cache_key = f"{stats.name}_{stats.current_key_index}"
        if cache_key not in self._clients:
            if stats.name == "groq":
                from groq import AsyncGroq
                self._clients[cache_key] = AsyncGroq(api_key=key)
            elif stats.name == "cerebras":
                from cerebras.cloud.sdk import AsyncCerebras
                self._clients[cache_key] = AsyncCerebras(api_key=key)
        return self._clients.get(cache_key)

    async def _throttle(self, stats: ProviderStats) -> None:
        """Enforce the minimum interval for a provider."""
        async with stats.lock:
            elapsed = time.time() - stats.last_request_time
            if elapsed < stats.interval:
                # Jitter to avoid a thundering herd
                await asyncio.sleep(stats.interval - elapsed + random.uniform(0.1, 0.5))
            stats.last_request_time = time.time()

    async def generate(
        self,
        prompt: str,
        options: GenerationOptions | None = None,
    ) -> GenerationResponse:
        options = options or GenerationOptions()
        provider = (options.provider or self.default_provider).lower()
        stats = self.providers.get(provider)
        if stats is None:
            raise OracleCallError(f"Unknown provider: {provider}", provider=provider)

        key = stats.get_current_key()
        if not key:
            raise OracleCallError(f"{provider.upper()}_API_KEY not configured", provider=provider)

        model_name = self._resolve_model(provider, options.model or self.model)
        await self._throttle(stats)

        try:
            if provider == "gemini":
                response = await self._generate_gemini(prompt, key, model_name, options.temperature)
            else:
                response = await self._generate_chat(stats, key, prompt, model_name, options.temperature)
        except Exception as e:
            error_str = str(e)
            status = _extract_status(e)
            if "RESOURCE_EXHAUSTED" in error_str or "quota" in error_str.lower():
                print(f"[WARN] Quota exhausted on {provider} (key {stats.current_key_index}). Rotating key...")
                stats.rotate_key()
                raise QuotaExhaustedError(error_str, status=status or 429, provider=provider) from e
            if status == 429 or "429" in error_str:
                print(f"[WARN] Rate limit on {provider} (key {stats.current_key_index}). Rotating key...")
                stats.rotate_key()
            raise OracleCallError(error_str, status=status, provider=provider) from e

        self.total_tokens += response.usage.total_tokens
        self.total_cost += response.usage.cost_usd
        return response

    async def _generate_gemini(
        self,
        prompt: str,
        key: str,
        model_name: str,
        temperature: float | None,
    ) -> GenerationResponse:
        import google.genai as genai

        config = {"temperature": temperature} if temperature is not None else None

        # Fresh client per call, run in a worker thread since the SDK call is sync
        def _run_gemini_sync():
            local_client = genai.Client(api_key=key)
            return local_client.models.generate_content(
                model=model_name,
                contents=prompt,
                config=config,
            )

        response = await asyncio.to_thread(_run_gemini_sync)
        content = response.text or ""

        # Gemini usage metadata is not always present; estimate
        prompt_tok = len(prompt) // 4
        comp_tok = len(content) // 4
        usage = TokenUsage(
            prompt_tokens=prompt_tok,
            completion_tokens=comp_tok,
            total_tokens=prompt_tok + comp_tok,
            cost_usd=self._calculate_cost("gemini", prompt_tok, comp_tok),
        )
        return GenerationResponse(content=content, usage=usage, model_name=model_name, provider="gemini")

    async def _generate_chat(
        self,
        stats: ProviderStats,
        key: str,
        prompt: str,
        model_name: str,
        temperature: float | None,
    ) -> GenerationResponse:
        client = self._get_client(stats, key)
        kwargs = {"temperature": temperature} if temperature is not None else {}
        response = await client.chat.completions.create(
            messages=[{"role": "user", "content": prompt}],
            model=model_name,
            **kwargs,
        )
        message = response.choices[0].message
        content = message.content or ""
        tool_calls = [
            {"name": call.function.name, "arguments": call.function.arguments}
            for call in (getattr(message, "tool_calls", None) or [])
        ]

        usage = TokenUsage()
        if response.usage:
            usage = TokenUsage(
                prompt_tokens=response.usage.prompt_tokens,
                completion_tokens=response.usage.completion_tokens,
                total_tokens=response.usage.total_tokens,
                cost_usd=self._calculate_cost(
                    stats.name,
                    response.usage.prompt_tokens,
                    response.usage.completion_tokens,
                ),
            )
        return GenerationResponse(
            content=content,
            tool_calls=tool_calls,
            usage=usage,
            model_name=model_name,
            provider=stats.name,
        )

    def _resolve_model(self, provider: str, override: str | None) -> str:
        """Get the correct model name for the provider."""
        # Handle provider prefixes e.g. "gemini/gemini-2.5-flash"
        if override and "/" in override:
            req_provider, req_model = override.split("/", 1)
            if provider == req_provider.lower():
                return req_model
            override = None

        if override:
            return override

        if provider == "gemini":
            return os.getenv("GEMINI_MODEL", "gemini-2.5-flash")
        elif provider == "groq":
            return os.getenv("GROQ_MODEL", "llama-3.3-70b-versatile")
        return os.getenv("CEREBRAS_MODEL", "llama-3.3-70b")

    def _calculate_cost(self, provider: str, prompt_tokens: int, completion_tokens: int) -> float:
        """Calculate estimated cost (very rough estimates)."""
        p = PRICING.get(provider, {"in": 0.0, "out": 0.0})
        cost = (prompt_tokens / 1_000_000 * p["in"]) + (completion_tokens / 1_000_000 * p["out"])
        return round(cost, 6)


def _extract_status(error: Exception) -> int | None:
    """Best-effort HTTP status from provider SDK exceptions."""
    for attr in ("status_code", "status", "code"):
        value = getattr(error, attr, None)
        if isinstance(value, int) and 100 <= value < 600:
            return value
    match = re.search(r"\b(429|5\d\d)\b", str(error))
    return int(match.group(1)) if match else None
