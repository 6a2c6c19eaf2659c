import time
import asyncio
import logging
from typing import Any, Dict, List, Tuple

from langchain_ollama import ChatOllama, OllamaEmbeddings
from langchain_core.messages import HumanMessage
import httpx

from core.errors import GenerationError

logger = logging.getLogger(__name__)


def estimate_tokens(text: str) -> int:
    """Rough token count used for cost records (about 4 characters per token)."""
    return max(1, len(text) // 4)


class OllamaClient:
    """
    LangChain-based Ollama client for completions and embeddings. Each call
    is a single attempt bounded by `timeout`.
    """

    def __init__(
        self,
        base_url: str,
        model: str,
        embed_model: str = "nomic-embed-text",
        temperature: float = 0.1,
        timeout: float = 120.0,
    ):
        # ChatOllama uses Ollama's native API, not the OpenAI-compatible /v1 endpoint
        if base_url.endswith("/v1"):
            base_url = base_url[:-3]
        elif base_url.endswith("/v1/"):
            base_url = base_url[:-4]

        self.base_url = base_url.rstrip('/')
        self.model = model
        self.embed_model = embed_model
        self.temperature = temperature
        self.timeout = timeout

        self._chat_models: Dict[Tuple[int, bool], ChatOllama] = {}
        self.embeddings = OllamaEmbeddings(base_url=self.base_url, model=embed_model)

    def _chat(self, max_tokens: int, json_mode: bool) -> ChatOllama:
        key = (max_tokens, json_mode)
        if key not in self._chat_models:
            options: Dict[str, Any] = {
                "base_url": self.base_url,
                "model": self.model,
                "temperature": self.temperature,
                "num_ctx": 4096,
                "num_predict": max_tokens,
            }
            if json_mode:
                options["format"] = "json"
            self._chat_models[key] = ChatOllama(**options)
        return self._chat_models[key]

    async def _invoke(self, call) -> Any:
        """
        Await call() once under the request deadline. Failed calls are not
        retried; the caller tries again on its next request.
        """
        try:
            return await asyncio.wait_for(call(), timeout=self.timeout)
        except asyncio.TimeoutError:
            logger.warning(f"Ollama request timed out after {self.timeout}s (model={self.model})")
            raise TimeoutError(f"Request timed out after {self.timeout}s")
        except Exception as e:
            logger.warning(f"Ollama request failed: {e} (base_url={self.base_url}, model={self.model})")
            raise

    async def evaluate(self, prompt: str, max_tokens: int = 400, json_mode: bool = False) -> Dict[str, Any]:
        """
        Run a prompt and return the response with metadata.
        """
        start = time.time()
        llm = self._chat(max_tokens, json_mode)

        response = await self._invoke(
            lambda: llm.ainvoke([HumanMessage(content=prompt)])
        )

        latency_ms = int((time.time() - start) * 1000)

        return {
            "raw": response,
            "content": response.content,
            "latency_ms": latency_ms,
        }

    async def complete(self, prompt: str, max_tokens: int = 400, json_mode: bool = False) -> str:
        """
        Text completion. Any failure surfaces as GenerationError.
        """
        try:
            result = await self.evaluate(prompt, max_tokens=max_tokens, json_mode=json_mode)
        except Exception as e:
            raise GenerationError(f"Completion failed: {e}") from e

        content = result["content"]
        if not isinstance(content, str):
            content = str(content)
        logger.debug(f"Completion finished in {result['latency_ms']}ms")
        return content.strip()

    async def embed(self, texts: List[str]) -> List[List[float]]:
        """
        Embed a batch of texts with the configured embedding model.
        """
        if not texts:
            return []
        try:
            vectors = await self._invoke(
                lambda: self.embeddings.aembed_documents(texts)
            )
        except Exception as e:
            raise GenerationError(f"Embedding failed: {e}") from e

        logger.debug(f"Embedded {len(texts)} texts with {self.embed_model}")
        return vectors

    async def health_check(self) -> bool:
        """
        Check if the Ollama server is reachable by calling /api/tags.
        """
        url = f"{self.base_url}/api/tags"
        try:
            async with httpx.AsyncClient(timeout=5.0) as client:
                resp = await client.get(url)
                if resp.status_code == 200:
                    return True
                logger.error(f"Ollama health check failed: {resp.status_code} {resp.text}")
                return False
        except Exception as e:
            logger.error(f"Ollama health check error: {e} (url={url})")
            return False
