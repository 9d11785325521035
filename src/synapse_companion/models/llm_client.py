"""
Language intelligence client.

Issues the three requests the companion makes to a hosted text-generation
service (the Gemini REST API):

- single-shot emotion + language classification (structured output)
- streamed empathetic reply generation
- single-shot fact extraction (structured output, ``{}`` means "nothing new")

Transport failures are classified into rate-limit, credential and
connectivity errors so callers can show the right message. There is no
internal retry; callers decide.
"""

from __future__ import annotations

import ast
import json
import logging
import re
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator, Mapping
from typing import Any

import httpx

from synapse_companion.config import get_settings
from synapse_companion.errors import (
    AnalysisError,
    ConnectivityError,
    CredentialError,
    ExtractionError,
    LanguageServiceError,
    RateLimitError,
)
from synapse_companion.memory.credentials import SessionCredentials
from synapse_companion.models.prompts import (
    build_classification_prompt,
    build_extraction_prompt,
    build_response_prompt,
)
from synapse_companion.orchestrator.schemas import Emotion, InitialAnalysis

logger = logging.getLogger(__name__)

DEFAULT_GEMINI_MODEL = "gemini-2.5-flash"
DEFAULT_GEMINI_BASE_URL = "https://generativelanguage.googleapis.com"

# Low latency: no extended reasoning before answering.
NO_THINKING = {"thinkingBudget": 0}

CLASSIFICATION_SCHEMA: dict[str, Any] = {
    "type": "OBJECT",
    "properties": {
        "emotion": {"type": "STRING", "enum": [e.value for e in Emotion]},
        "languageCode": {"type": "STRING"},
    },
    "required": ["emotion", "languageCode"],
}

_RATE_LIMIT_MARKERS = ("RESOURCE_EXHAUSTED", "overloaded", "UNAVAILABLE")
_CREDENTIAL_MARKERS = ("API key not valid", "API_KEY_INVALID", "PERMISSION_DENIED")


def classify_http_failure(status_code: int, body: str) -> LanguageServiceError:
    """
    Map an HTTP failure onto the user-facing error categories.

    Args:
        status_code: HTTP status returned by the provider.
        body: Response body (may be empty).

    Returns:
        RateLimitError, CredentialError or ConnectivityError.
    """
    detail = f"HTTP {status_code}: {body[:300]}"
    if status_code in (429, 503) or any(m in body for m in _RATE_LIMIT_MARKERS):
        return RateLimitError(detail)
    if status_code in (401, 403) or any(m in body for m in _CREDENTIAL_MARKERS):
        return CredentialError(detail)
    return ConnectivityError(detail)


def classify_transport_error(exc: Exception) -> LanguageServiceError:
    """Map a transport exception (httpx or already classified) onto an error category."""
    if isinstance(exc, LanguageServiceError):
        return exc
    if isinstance(exc, httpx.HTTPStatusError):
        try:
            body = exc.response.text
        except httpx.ResponseNotRead:
            body = ""
        return classify_http_failure(exc.response.status_code, body)
    return ConnectivityError(f"{type(exc).__name__}: {exc}")


class LanguageIntelligenceClient(ABC):
    """Abstract base class for the hosted language-intelligence collaborator."""

    @abstractmethod
    async def classify(self, text: str) -> InitialAnalysis:
        """
        Detect the emotion and language of a user message.

        Args:
            text: User message.

        Returns:
            Detected emotion and BCP-47 language code.

        Raises:
            AnalysisError: If the response is missing a field or unparseable.
        """
        ...

    @abstractmethod
    async def stream_response(
        self,
        text: str,
        emotion: Emotion,
        language_code: str,
        profile: Mapping[str, str],
    ) -> AsyncIterator[str]:
        """
        Start generating an empathetic reply.

        Awaiting this issues the request and fails fast if it cannot be
        issued; iterating the returned stream yields non-empty fragments.

        Args:
            text: User message.
            emotion: Detected emotion.
            language_code: Language to reply in.
            profile: Known facts about the user.

        Returns:
            Async iterator of text fragments.
        """
        ...

    @abstractmethod
    async def extract_facts(self, text: str) -> dict[str, str] | None:
        """
        Extract memorable personal facts from a user message.

        Args:
            text: User message.

        Returns:
            Flat fact mapping, or None when nothing new was found.

        Raises:
            ExtractionError: If the output is not a flat JSON object.
        """
        ...

    async def close(self) -> None:
        """Close the client and release resources."""


class GeminiClient(LanguageIntelligenceClient):
    """
    Gemini REST client.

    Uses ``generateContent`` for the structured requests and
    ``streamGenerateContent?alt=sse`` for the streamed reply.
    """

    def __init__(
        self,
        credentials: SessionCredentials | None = None,
        *,
        model: str | None = None,
        base_url: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """
        Initialize the Gemini client.

        Args:
            credentials: Session credential holder (seeded from settings if None).
            model: Model name (defaults to settings / gemini-2.5-flash).
            base_url: API base URL.
            timeout: Transport timeout in seconds.
            transport: Optional httpx transport (tests use a mock transport).
        """
        settings = get_settings()
        self._credentials = credentials or SessionCredentials(settings.gemini_api_key)
        self._model = model or settings.gemini_model or DEFAULT_GEMINI_MODEL
        self._base_url = (base_url or settings.gemini_base_url or DEFAULT_GEMINI_BASE_URL).rstrip("/")
        self._timeout = timeout or settings.llm_timeout
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

        logger.info(f"Initialized Gemini client with model: {self._model}")

    @property
    def model(self) -> str:
        """Get the model name."""
        return self._model

    @property
    def credentials(self) -> SessionCredentials:
        return self._credentials

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self._base_url,
                timeout=self._timeout,
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    def _headers(self) -> dict[str, str]:
        api_key = self._credentials.api_key
        if not api_key:
            raise CredentialError("No API key configured")
        return {"Content-Type": "application/json", "x-goog-api-key": api_key}

    def _body(self, prompt: str, generation_config: dict[str, Any]) -> dict[str, Any]:
        return {
            "contents": [{"role": "user", "parts": [{"text": prompt}]}],
            "generationConfig": generation_config,
        }

    async def _generate(self, prompt: str, generation_config: dict[str, Any]) -> str:
        """
        Run a single-shot generateContent request.

        Returns:
            Concatenated text of the first candidate.
        """
        headers = self._headers()
        client = await self._get_client()
        url = f"/v1beta/models/{self._model}:generateContent"
        try:
            response = await client.post(url, json=self._body(prompt, generation_config), headers=headers)
        except httpx.HTTPError as e:
            raise classify_transport_error(e) from e

        if response.status_code >= 400:
            raise classify_http_failure(response.status_code, response.text)

        try:
            data = response.json()
        except ValueError as e:
            raise ConnectivityError("Response body is not JSON") from e
        return _candidate_text(data)

    async def classify(self, text: str) -> InitialAnalysis:
        """Detect emotion and language with a schema-constrained request."""
        raw = await self._generate(
            build_classification_prompt(text),
            {
                "responseMimeType": "application/json",
                "responseSchema": CLASSIFICATION_SCHEMA,
                "thinkingConfig": NO_THINKING,
            },
        )

        parsed = self._parse_json_object(_extract_json_block(raw))
        if parsed is None:
            logger.warning(f"Unparseable classification response: {raw[:200]!r}")
            raise AnalysisError("Invalid analysis response structure.")

        emotion_raw = parsed.get("emotion")
        language_code = parsed.get("languageCode") or parsed.get("language_code")
        if not emotion_raw or not language_code:
            raise AnalysisError("Invalid analysis response structure.")

        try:
            emotion = Emotion(str(emotion_raw).strip().upper())
        except ValueError as e:
            raise AnalysisError(f"Unknown emotion: {emotion_raw!r}") from e

        analysis = InitialAnalysis(emotion=emotion, language_code=str(language_code).strip())
        logger.debug(f"Classified emotion={analysis.emotion.value} language={analysis.language_code}")
        return analysis

    async def stream_response(
        self,
        text: str,
        emotion: Emotion,
        language_code: str,
        profile: Mapping[str, str],
    ) -> AsyncIterator[str]:
        """Issue the streaming request and return the fragment iterator."""
        headers = self._headers()
        client = await self._get_client()
        request = client.build_request(
            "POST",
            f"/v1beta/models/{self._model}:streamGenerateContent",
            params={"alt": "sse"},
            json=self._body(
                build_response_prompt(text, emotion, language_code, profile),
                {"thinkingConfig": NO_THINKING},
            ),
            headers=headers,
        )

        try:
            response = await client.send(request, stream=True)
        except httpx.HTTPError as e:
            raise classify_transport_error(e) from e

        if response.status_code >= 400:
            try:
                body = (await response.aread()).decode("utf-8", errors="replace")
            finally:
                await response.aclose()
            raise classify_http_failure(response.status_code, body)

        return self._iter_fragments(response)

    async def _iter_fragments(self, response: httpx.Response) -> AsyncIterator[str]:
        """Yield non-empty text increments from a server-sent-event stream."""
        try:
            async for line in response.aiter_lines():
                line = line.strip()
                if not line.startswith("data:"):
                    continue
                payload = line[len("data:"):].strip()
                if not payload or payload == "[DONE]":
                    continue
                try:
                    chunk = json.loads(payload)
                except json.JSONDecodeError:
                    logger.warning(f"Skipping malformed stream chunk: {payload[:200]!r}")
                    continue
                if isinstance(chunk, dict) and "error" in chunk:
                    error = chunk["error"]
                    code = error.get("code") if isinstance(error, dict) else None
                    status = code if isinstance(code, int) and code > 0 else 500
                    raise classify_http_failure(status, json.dumps(error))
                fragment = _candidate_text(chunk)
                if fragment:
                    yield fragment
        except httpx.HTTPError as e:
            raise classify_transport_error(e) from e
        finally:
            await response.aclose()

    async def extract_facts(self, text: str) -> dict[str, str] | None:
        """Extract personal facts; the ``{}`` sentinel means nothing new."""
        raw = (
            await self._generate(
                build_extraction_prompt(text),
                {"responseMimeType": "application/json", "thinkingConfig": NO_THINKING},
            )
        ).strip()

        if raw == "{}":
            return None

        parsed = self._parse_json_object(_extract_json_block(raw))
        if parsed is None:
            logger.warning(f"Unparseable extraction response: {raw[:200]!r}")
            raise ExtractionError("Fact extraction did not return a JSON object")
        if not parsed:
            return None

        facts: dict[str, str] = {}
        for key, value in parsed.items():
            if value is None:
                continue
            if isinstance(value, (dict, list)):
                raise ExtractionError(f"Fact {key!r} is not a flat value")
            facts[str(key)] = str(value)
        return facts or None

    def _repair_json(self, text: str) -> str:
        """
        Rewrite the usual model slips into strict JSON.

        Handles code fences, smart quotes, trailing commas, Python literals,
        bare keys and single-quoted strings.

        Args:
            text: Raw model output.

        Returns:
            Text that is more likely to parse with ``json.loads``.
        """
        fixed = (text or "").strip()
        if not fixed:
            return ""

        fixed = re.sub(r"^```(?:json)?\s*|\s*```$", "", fixed, flags=re.IGNORECASE)
        for smart, plain in (("“", '"'), ("”", '"'), ("‘", "'"), ("’", "'")):
            fixed = fixed.replace(smart, plain)
        fixed = re.sub(r",(\s*[}\]])", r"\1", fixed)
        for literal, replacement in (("None", "null"), ("True", "true"), ("False", "false")):
            fixed = re.sub(rf"\b{literal}\b", replacement, fixed)
        fixed = re.sub(r"([{,]\s*)([A-Za-z_][\w\-]*)(\s*:)", r'\1"\2"\3', fixed)

        if "'" in fixed and '"' not in fixed:
            fixed = fixed.replace("'", '"')
        return fixed

    def _parse_json_object(self, raw: str) -> dict[str, Any] | None:
        """Parse a JSON object from model output, repairing it if needed.

        Returns None when no object can be recovered.
        """
        if not raw:
            return None

        repaired = self._repair_json(raw)
        for candidate in (raw, repaired):
            try:
                parsed = json.loads(candidate)
            except json.JSONDecodeError:
                continue
            return parsed if isinstance(parsed, dict) else None

        # Last resort: the model answered with a Python dict literal.
        for candidate in (raw.strip(), repaired):
            try:
                parsed = ast.literal_eval(candidate)
            except (ValueError, SyntaxError):
                continue
            if isinstance(parsed, dict):
                return {str(k): _plain_value(v) for k, v in parsed.items()}
            return None
        return None


def _plain_value(value: Any) -> Any:
    """Map a Python literal onto the JSON value space."""
    if value is ...:
        return None
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    if isinstance(value, dict):
        return {str(k): _plain_value(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [_plain_value(v) for v in value]
    return str(value)


def _candidate_text(data: Any) -> str:
    """Concatenate the text parts of the first candidate of a Gemini response."""
    if not isinstance(data, dict):
        return ""
    candidates = data.get("candidates") or []
    if not candidates or not isinstance(candidates[0], dict):
        return ""
    content = candidates[0].get("content")
    if not isinstance(content, dict):
        return ""
    parts = content.get("parts")
    if not isinstance(parts, list):
        return ""
    return "".join(p.get("text", "") for p in parts if isinstance(p, dict) and not p.get("thought"))


def _extract_json_block(content: str) -> str:
    """Return the first balanced JSON object/array in ``content`` (or the content itself)."""
    content = (content or "").strip()
    start_idx = content.find("{")
    if start_idx == -1:
        start_idx = content.find("[")
    if start_idx == -1:
        return content

    open_bracket = content[start_idx]
    close_bracket = "}" if open_bracket == "{" else "]"
    depth = 0
    for i, char in enumerate(content[start_idx:], start=start_idx):
        if char == open_bracket:
            depth += 1
        elif char == close_bracket:
            depth -= 1
            if depth == 0:
                return content[start_idx : i + 1]
    return content
