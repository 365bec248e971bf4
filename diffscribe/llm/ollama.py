import aiohttp
import requests
from typing import AsyncIterator, List

from .base import LLMClient, TransportError
from ..log_setup import token_tracker, log


SYSTEM_PROMPT = """You are a commit message generator. Analyze git diffs and output JSON commit messages.

RULES:
1. Read the diff carefully - describe the ACTUAL changes you see
2. The subject must be SPECIFIC - mention what was added/changed/fixed
3. Output ONLY valid JSON
4. Start subject with lowercase verb: add, fix, update, remove, refactor

BAD: "describe what changed" or "update code"
GOOD: "add rate limiting to api endpoints" or "fix null check in user service\""""


class OllamaClient(LLMClient):

    def __init__(self, base_url: str, model: str,
                 system_prompt: str = SYSTEM_PROMPT,
                 request_timeout: float = 120.0, **kwargs):
        super().__init__(**kwargs)
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.system_prompt = system_prompt
        self.request_timeout = request_timeout
        # Derive the API root for endpoints like /api/tags
        if "/api/" in self.base_url:
            self._api_root = self.base_url.rsplit("/api/", 1)[0]
        else:
            self._api_root = self.base_url
            self.base_url = f"{self._api_root}/api/generate"

    def _payload(self, prompt: str, stream: bool) -> dict:
        return {
            "model": self.model,
            "prompt": prompt,
            "system": self.system_prompt,
            "stream": stream,
        }

    # ── Non-streaming generation ──

    def _generate(self, prompt: str) -> str:
        est_tokens = int(len(prompt.split()) * 1.3)
        log.debug(f"[Ollama] Sending ~{est_tokens} est. tokens")
        log.debug(f"[Ollama] Prompt:\n{prompt}")

        response = requests.post(self.base_url, json=self._payload(prompt, False),
                                 timeout=(10, self.request_timeout))
        response.raise_for_status()
        data = response.json()
        result = data.get("response", "")

        prompt_tokens = data.get("prompt_eval_count", est_tokens)
        completion_tokens = data.get("eval_count", 0)
        token_tracker.record(
            prompt_tokens if isinstance(prompt_tokens, int) else est_tokens,
            completion_tokens if isinstance(completion_tokens, int) else 0,
        )
        log.debug(f"[Ollama] Usage: prompt={prompt_tokens} completion={completion_tokens}")
        log.debug(f"[Ollama] Response:\n{result}")
        return result

    # ── Streaming generation ──

    async def stream_bytes(self, prompt: str, cancel=None) -> AsyncIterator[bytes]:
        est_tokens = int(len(prompt.split()) * 1.3)
        log.debug(f"[Ollama] Streaming ~{est_tokens} est. tokens")
        log.debug(f"[Ollama] Prompt:\n{prompt}")

        timeout = aiohttp.ClientTimeout(total=self.request_timeout, sock_connect=10)
        try:
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.post(self.base_url, json=self._payload(prompt, True)) as response:
                    if response.status != 200:
                        error_text = await response.text()
                        log.error(f"[Ollama] HTTP {response.status}: {error_text}")
                        raise TransportError(f"Ollama HTTP {response.status}: {error_text}")
                    async for chunk in response.content.iter_any():
                        yield chunk
        except aiohttp.ClientError as e:
            log.error(f"[Ollama] Connection error: {e}")
            raise TransportError(f"Ollama connection error: {e}") from e

    def _record_usage(self, prompt: str, result) -> None:
        est_tokens = int(len(prompt.split()) * 1.3)
        prompt_tokens = result.usage.get("prompt_eval_count", est_tokens)
        completion_tokens = result.usage.get("eval_count", result.records)
        token_tracker.record(prompt_tokens, completion_tokens)
        log.debug(f"[Ollama] Usage: prompt={prompt_tokens} completion={completion_tokens}")

    # ── Model discovery ──

    def list_models(self) -> List[str]:
        """Return the names of locally available models."""
        response = requests.get(f"{self._api_root}/api/tags", timeout=10)
        response.raise_for_status()
        models = response.json().get("models", [])
        return [m.get("name", "") for m in models if isinstance(m, dict)]

    def verify_model(self) -> bool:
        """Return ``True`` if the configured model is available on the server."""
        try:
            names = self.list_models()
        except requests.exceptions.RequestException as e:
            log.error(f"[Ollama] Cannot reach server: {e}")
            return False
        wanted = self.model if ":" in self.model else f"{self.model}:latest"
        return self.model in names or wanted in names
