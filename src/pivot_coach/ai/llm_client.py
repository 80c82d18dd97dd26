"""
Local LLM Client.

Talks to Ollama's native API (/api/generate, /api/tags).
"""

import asyncio
import json
import logging
from typing import AsyncIterator, Optional

import aiohttp

from ..config.settings import OllamaSettings
from ..errors import BackendUnavailable, RequestFailed

logger = logging.getLogger(__name__)


class OllamaClient:
    """
    Client for a local Ollama server.

    Setup:
    1. Install: brew install ollama
    2. Start server: ollama serve
    3. Pull model: ollama pull qwen2.5:7b-instruct-q4_K_M
    """

    def __init__(
        self,
        base_url: str = "http://127.0.0.1:11434",
        model: str = "qwen2.5:7b-instruct-q4_K_M",
        timeout: float = 60.0,
        temperature: float = 0.7,
        num_predict: int = 256,
        top_p: float = 0.9,
        repeat_penalty: float = 1.1,
    ):
        """
        Initialize Ollama client.

        Args:
            base_url: Ollama API URL
            model: Model name (e.g., qwen2.5, mistral, llama3.2)
            timeout: Total request timeout in seconds
            temperature: Sampling temperature
            num_predict: Maximum tokens to generate
            top_p: Nucleus sampling
            repeat_penalty: Repetition penalty
        """
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.timeout = timeout
        self.temperature = temperature
        self.num_predict = num_predict
        self.top_p = top_p
        self.repeat_penalty = repeat_penalty

        logger.info(f"OllamaClient initialized: {self.base_url} ({model})")

    @classmethod
    def from_settings(cls, settings: OllamaSettings) -> "OllamaClient":
        return cls(
            base_url=settings.url,
            model=settings.model,
            timeout=settings.timeout,
            temperature=settings.temperature,
            num_predict=settings.num_predict,
            top_p=settings.top_p,
            repeat_penalty=settings.repeat_penalty,
        )

    def _payload(self, prompt: str, system: Optional[str], stream: bool) -> dict:
        return {
            "model": self.model,
            "prompt": prompt,
            "system": system,
            "stream": stream,
            "options": {
                "temperature": self.temperature,
                "num_predict": self.num_predict,
                "top_p": self.top_p,
                "repeat_penalty": self.repeat_penalty,
            },
        }

    # ============================================
    # Health
    # ============================================

    async def is_available(self) -> bool:
        """Check if Ollama server is available."""
        try:
            async with aiohttp.ClientSession() as session:
                async with session.get(
                    f"{self.base_url}/api/tags",
                    timeout=aiohttp.ClientTimeout(total=5),
                ) as response:
                    return response.status == 200
        except (aiohttp.ClientError, asyncio.TimeoutError):
            return False

    async def list_models(self) -> list[str]:
        """List models pulled on the server."""
        try:
            async with aiohttp.ClientSession() as session:
                async with session.get(
                    f"{self.base_url}/api/tags",
                    timeout=aiohttp.ClientTimeout(total=5),
                ) as response:
                    if response.status != 200:
                        return []
                    data = await response.json()
                    return [m["name"] for m in data.get("models", []) if "name" in m]
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            logger.warning(f"Failed to list models: {e}")
            return []

    # ============================================
    # Generation
    # ============================================

    async def generate(self, prompt: str, system: Optional[str] = None) -> str:
        """
        Non-streaming generation.

        Raises:
            BackendUnavailable: Server not reachable
            RequestFailed: Non-200 status, timeout or malformed response
        """
        payload = self._payload(prompt, system, stream=False)

        try:
            async with aiohttp.ClientSession() as session:
                async with session.post(
                    f"{self.base_url}/api/generate",
                    json=payload,
                    timeout=aiohttp.ClientTimeout(total=self.timeout),
                ) as response:
                    if response.status != 200:
                        error_text = await response.text()
                        logger.error(f"Ollama request failed: {response.status}")
                        raise RequestFailed(f"Ollama error: {error_text}", status=response.status)

                    data = await response.json(content_type=None)

        except asyncio.TimeoutError as e:
            raise RequestFailed(f"Ollama request timed out after {self.timeout}s") from e
        except aiohttp.ClientConnectorError as e:
            raise BackendUnavailable(f"Ollama not reachable at {self.base_url}: {e}") from e
        except aiohttp.ClientError as e:
            raise RequestFailed(f"Ollama request failed: {e}") from e
        except ValueError as e:
            raise RequestFailed(f"Invalid Ollama response: {e}") from e

        if "error" in data:
            raise RequestFailed(f"Ollama error: {data['error']}")

        return data.get("response", "")

    async def generate_stream(
        self,
        prompt: str,
        system: Optional[str] = None,
    ) -> AsyncIterator[str]:
        """
        Streaming generation over newline-delimited JSON.

        Yields non-empty text fragments until a line with done=true.
        Closing the iterator early closes the HTTP response.

        Raises:
            BackendUnavailable: Server not reachable
            RequestFailed: Non-200 status, timeout or stream error
        """
        payload = self._payload(prompt, system, stream=True)

        try:
            async with aiohttp.ClientSession() as session:
                async with session.post(
                    f"{self.base_url}/api/generate",
                    json=payload,
                    timeout=aiohttp.ClientTimeout(total=self.timeout),
                ) as response:
                    if response.status != 200:
                        error_text = await response.text()
                        logger.error(f"Ollama stream failed: {response.status}")
                        raise RequestFailed(f"Ollama error: {error_text}", status=response.status)

                    async for raw_line in response.content:
                        line = raw_line.decode("utf-8", errors="replace").strip()
                        if not line:
                            continue

                        try:
                            data = json.loads(line)
                        except json.JSONDecodeError:
                            logger.debug(f"Skipping malformed stream line: {line[:80]}")
                            continue

                        if "error" in data:
                            raise RequestFailed(f"Ollama error: {data['error']}")

                        token = data.get("response", "")
                        if token:
                            yield token
                        if data.get("done"):
                            break

        except asyncio.TimeoutError as e:
            raise RequestFailed(f"Ollama stream timed out after {self.timeout}s") from e
        except aiohttp.ClientConnectorError as e:
            raise BackendUnavailable(f"Ollama not reachable at {self.base_url}: {e}") from e
        except aiohttp.ClientError as e:
            raise RequestFailed(f"Ollama stream failed: {e}") from e
