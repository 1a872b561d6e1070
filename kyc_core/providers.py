"""
KYC Upstream Providers
======================
Thin adapters over the two supported generation backends:
- Gemini REST API (httpx), with capability-tagged model discovery
- Groq API (AsyncGroq), with round-robin key rotation

Both expose the same two calls, `list_models()` and `generate()`, and raise
UpstreamError for every failure so the gateway can classify them uniformly.
No retries happen here.
"""

import base64
import logging
from typing import List, Literal, Optional

import groq
import httpx
from groq import AsyncGroq
from pydantic import BaseModel

from . import config
from .errors import UpstreamError
from .structs import ModelInfo

logger = logging.getLogger(__name__)

GENERATE_CONTENT = "generateContent"


class InlineImage(BaseModel):
    data: bytes
    mime_type: str = "image/jpeg"

    def b64(self) -> str:
        return base64.b64encode(self.data).decode("ascii")


class Message(BaseModel):
    role: Literal["system", "user", "model"]
    text: str


# ─── GEMINI ─────────────────────────────────────────────────────────────────

class GeminiProvider:
    name = "gemini"

    def __init__(
        self,
        api_key: str,
        base_url: str = config.GEMINI_BASE_URL,
        temperature: float = config.LLM_TEMP,
        timeout: float = config.UPSTREAM_TIMEOUT_SECONDS,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.temperature = temperature
        self.client = client or httpx.AsyncClient(timeout=timeout, headers={"x-goog-api-key": api_key})

    async def _request(self, method: str, path: str, **kwargs) -> httpx.Response:
        try:
            response = await self.client.request(method, f"{self.base_url}{path}", **kwargs)
        except httpx.TimeoutException as e:
            raise UpstreamError(None, f"Gemini timeout: {e}") from e
        except httpx.HTTPError as e:
            raise UpstreamError(None, f"Gemini connection error: {e}") from e

        if response.status_code != 200:
            logger.error(f"Gemini API Error ({response.status_code}): {response.text[:300]}")
            raise UpstreamError(response.status_code, response.text[:500])
        return response

    async def list_models(self) -> List[ModelInfo]:
        models: List[ModelInfo] = []
        page_token = None
        while True:
            params = {"pageSize": 1000}
            if page_token:
                params["pageToken"] = page_token
            response = await self._request("GET", "/models", params=params)
            try:
                data = response.json()
            except ValueError as e:
                raise UpstreamError(response.status_code, "Model listing is not JSON") from e
            if not isinstance(data, dict) or not isinstance(data.get("models", []), list):
                raise UpstreamError(response.status_code, "Model listing has an unexpected shape")

            for entry in data.get("models", []):
                if not isinstance(entry, dict) or not isinstance(entry.get("name"), str):
                    continue
                name = entry["name"]
                if name.startswith("models/"):
                    name = name[len("models/"):]
                models.append(ModelInfo(
                    name=name,
                    capabilities=frozenset(entry.get("supportedGenerationMethods") or []),
                ))

            page_token = data.get("nextPageToken")
            if not page_token:
                return models

    async def generate(self, model: str, messages: List[Message], image: Optional[InlineImage] = None) -> str:
        system_parts = [{"text": m.text} for m in messages if m.role == "system"]
        contents = [
            {"role": m.role, "parts": [{"text": m.text}]}
            for m in messages if m.role != "system"
        ]
        if image is not None:
            if not contents or contents[-1]["role"] != "user":
                contents.append({"role": "user", "parts": []})
            contents[-1]["parts"].append({"inline_data": {"mime_type": image.mime_type, "data": image.b64()}})

        body = {
            "contents": contents,
            "generationConfig": {"temperature": self.temperature},
        }
        if system_parts:
            body["systemInstruction"] = {"parts": system_parts}

        response = await self._request("POST", f"/models/{model}:generateContent", json=body)
        try:
            data = response.json()
        except ValueError:
            # 2xx with an unreadable body: let the parser reject it
            return response.text
        return _candidate_text(data)

    async def aclose(self):
        await self.client.aclose()


def _candidate_text(data) -> str:
    """Text of the first candidate. Any unexpected shape yields "" so the parser rejects it."""
    if not isinstance(data, dict):
        logger.warning(f"Gemini returned a {type(data).__name__} instead of an object")
        return ""
    candidates = data.get("candidates")
    if not isinstance(candidates, list) or not candidates:
        logger.warning(f"Gemini returned no candidates (blocked: {data.get('promptFeedback')})")
        return ""

    first = candidates[0] if isinstance(candidates[0], dict) else {}
    content = first.get("content")
    parts = content.get("parts") if isinstance(content, dict) else None
    if not isinstance(parts, list):
        logger.warning(f"Gemini candidate has no content (finishReason: {first.get('finishReason')})")
        return ""
    return "".join(p["text"] for p in parts if isinstance(p, dict) and isinstance(p.get("text"), str))


# ─── GROQ ───────────────────────────────────────────────────────────────────

# Groq lists every hosted model without capability tags
_GROQ_NON_CHAT = {
    "whisper": "audio.transcriptions",
    "tts": "audio.speech",
    "guard": "moderation",
}


def groq_capabilities(model_id: str) -> frozenset:
    lowered = model_id.lower()
    for marker, capability in _GROQ_NON_CHAT.items():
        if marker in lowered:
            return frozenset({capability})
    return frozenset({GENERATE_CONTENT})


class GroqProvider:
    name = "groq"

    def __init__(
        self,
        api_keys: List[str],
        temperature: float = config.LLM_TEMP,
        timeout: float = config.UPSTREAM_TIMEOUT_SECONDS,
    ):
        if not api_keys:
            raise ValueError("No GROQ_API_KEY found")
        self.clients: List[AsyncGroq] = [AsyncGroq(api_key=k, timeout=timeout, max_retries=0) for k in api_keys]
        self.current_client_idx = 0
        self.temperature = temperature
        logger.info(f"✅ Groq provider initialized with {len(self.clients)} API keys")

    def _get_client(self) -> AsyncGroq:
        """Get the next client in rotation."""
        client = self.clients[self.current_client_idx]
        self.current_client_idx = (self.current_client_idx + 1) % len(self.clients)
        return client

    def _translate(self, e: Exception) -> UpstreamError:
        if isinstance(e, groq.APIStatusError):
            if e.status_code == 429:
                logger.warning("Rate limit hit, rotating key immediately.")
                self.current_client_idx = (self.current_client_idx + 1) % len(self.clients)
            return UpstreamError(e.status_code, str(e))
        if isinstance(e, groq.APIResponseValidationError):
            return UpstreamError(None, f"Groq response has an unexpected shape: {e}")
        return UpstreamError(None, f"Groq connection error: {e}")

    async def list_models(self) -> List[ModelInfo]:
        client = self._get_client()
        try:
            listing = await client.models.list()
        except groq.APIError as e:
            raise self._translate(e) from e
        return [
            ModelInfo(name=m.id, capabilities=groq_capabilities(m.id))
            for m in (getattr(listing, "data", None) or []) if isinstance(getattr(m, "id", None), str)
        ]

    async def generate(self, model: str, messages: List[Message], image: Optional[InlineImage] = None) -> str:
        roles = {"system": "system", "user": "user", "model": "assistant"}
        payload = [{"role": roles[m.role], "content": m.text} for m in messages]
        if image is not None:
            last = payload[-1] if payload and payload[-1]["role"] == "user" else None
            text = last["content"] if last else ""
            content = [
                {"type": "text", "text": text},
                {"type": "image_url", "image_url": {"url": f"data:{image.mime_type};base64,{image.b64()}"}},
            ]
            if last:
                last["content"] = content
            else:
                payload.append({"role": "user", "content": content})

        client = self._get_client()
        try:
            response = await client.chat.completions.create(
                model=model,
                messages=payload,
                temperature=self.temperature,
                max_tokens=1024,
            )
        except groq.APIResponseValidationError as e:
            # 2xx the SDK could not read: let the parser reject it
            logger.warning(f"Unreadable completion from {model}: {e}")
            return ""
        except groq.APIError as e:
            logger.error(f"API Call Failed ({model}): {e}")
            raise self._translate(e) from e

        choices = getattr(response, "choices", None) or []
        if not choices:
            logger.warning(f"Groq returned no choices for {model}")
            return ""
        content = getattr(getattr(choices[0], "message", None), "content", None)
        return content if isinstance(content, str) else ""

    async def aclose(self):
        for client in self.clients:
            await client.close()


def build_provider(provider: str = config.PROVIDER):
    """Create the configured provider. Raises ConfigurationError when credentials are missing."""
    keys = config.load_api_keys(provider)
    if provider == "groq":
        return GroqProvider(keys)
    return GeminiProvider(keys[0])
