"""Client for the external contract generation and auditing service."""

from __future__ import annotations

import logging
from typing import Any, AsyncIterator, Dict, Optional, Protocol

import httpx

from .errors import AuditServiceError
from .extraction import AuditResult, score_from_report

logger = logging.getLogger(__name__)

DEFAULT_CHAINGPT_URL = "https://api.chaingpt.org"
GENERATOR_MODEL = "smart_contract_generator"
AUDITOR_MODEL = "smart_contract_auditor"


class CodeService(Protocol):
    """prompt -> streamed text, code -> scored report."""

    def generate(self, prompt: str) -> AsyncIterator[str]:
        ...

    async def audit(self, code: str) -> AuditResult:
        ...


class ChainGPTClient:
    """Streams generator and auditor models over the ChainGPT chat API."""

    def __init__(
        self,
        api_key: str,
        *,
        base_url: str = DEFAULT_CHAINGPT_URL,
        http_client: Optional[httpx.AsyncClient] = None,
        timeout: float = 120.0,
    ) -> None:
        if not api_key:
            raise ValueError("ChainGPT API key is required")
        self._api_key = api_key
        self._url = f"{base_url.rstrip('/')}/chat/stream"
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(timeout=timeout)

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self._api_key}",
            "Content-Type": "application/json",
        }

    async def _stream(self, model: str, question: str) -> AsyncIterator[str]:
        body: Dict[str, Any] = {"model": model, "question": question, "chatHistory": "off"}
        try:
            async with self._client.stream(
                "POST", self._url, headers=self._headers(), json=body
            ) as response:
                if response.status_code >= 400:
                    await response.aread()
                    raise AuditServiceError(
                        f"{model} request failed ({response.status_code}): {response.text}",
                        status=response.status_code,
                    )
                async for chunk in response.aiter_text():
                    if chunk:
                        yield chunk
        except httpx.HTTPError as exc:
            raise AuditServiceError(f"{model} request failed: {exc}") from exc

    async def generate(self, prompt: str) -> AsyncIterator[str]:
        logger.info("generating contract prompt=%r", prompt[:100])
        async for chunk in self._stream(GENERATOR_MODEL, prompt):
            yield chunk
        logger.info("contract generation completed")

    async def audit(self, code: str) -> AuditResult:
        logger.info("auditing contract (%s chars)", len(code))
        parts = []
        async for chunk in self._stream(AUDITOR_MODEL, f"Audit the following Solidity contract:\n\n{code}"):
            parts.append(chunk)
        result = score_from_report("".join(parts))
        logger.info("audit completed score=%s source=%s", result.score, result.score_source)
        return result

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()
