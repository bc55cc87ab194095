# lensocr/backends/gemini_backend.py
from __future__ import annotations

import logging
from typing import Any, Optional, Sequence

import httpx
from google import genai
from google.genai import errors, types

from ..exceptions import ErrorKind, ExtractionError
from ..models import ChatMessage, PageImage
from .base import BaseConversationClient, BaseExtractionClient

logger = logging.getLogger("lensocr")

DEFAULT_MODEL = "gemini-3-flash-preview"

OCR_PROMPT = """ACT AS AN ADVANCED MULTIMODAL OCR ENGINE.
EXTRACT ALL CONTENT BLOCKS WITH 100% ACCURACY:
1. TEXT: Extract all text verbatim, preserving paragraph structure.
2. TABLES: Detect tables and recreate them as Markdown tables. Do not omit any cells.
3. VISUAL ELEMENTS: Identify every diagram, illustration, or photo. Provide a highly detailed, technical description of each visual element inside [VISUAL BLOCK: description...]. Include text found within diagrams.
4. LAYOUT: Maintain logical reading order.
5. OUTPUT: Return ONLY the structured Markdown. No introduction or conclusion."""

CHAT_INSTRUCTION = """You are an AI document analysis expert.
CONTEXT:
{context}

Use the provided text, tables, and visual block descriptions to answer the user's questions precisely. If info isn't there, say so."""

EMPTY_CHAT_REPLY = "I'm sorry, I couldn't generate a response."

_AUTH_STATUSES = {"UNAUTHENTICATED", "PERMISSION_DENIED"}
_RATE_STATUSES = {"RESOURCE_EXHAUSTED"}


def _detail_reasons(details: Any) -> set:
    """Collect google.rpc ErrorInfo reasons from an API error payload."""
    reasons = set()
    if not isinstance(details, dict):
        return reasons
    for item in (details.get("error") or {}).get("details") or []:
        if isinstance(item, dict) and item.get("reason"):
            reasons.add(str(item["reason"]))
    return reasons


def classify_error(exc: BaseException, action: str = "OCR Processing") -> ExtractionError:
    """
    Map a failure raised by the SDK or the transport onto an ExtractionError.
    Uses status codes and structured error payloads, never message substrings.
    """
    if isinstance(exc, ExtractionError):
        return exc

    if isinstance(exc, errors.APIError):
        status = (exc.status or "").upper()
        if (
            exc.code in (401, 403)
            or status in _AUTH_STATUSES
            or "API_KEY_INVALID" in _detail_reasons(exc.details)
        ):
            return ExtractionError(ErrorKind.INVALID_CREDENTIAL, "Invalid API Key. Authentication failed.")
        if exc.code == 429 or status in _RATE_STATUSES:
            return ExtractionError(ErrorKind.RATE_LIMITED, "Rate limit exceeded. Please wait a moment.")
        return ExtractionError(ErrorKind.SERVICE_ERROR, f"{action} Failed: {exc.message or exc}")

    if isinstance(exc, (httpx.TransportError, ConnectionError)):
        return ExtractionError(
            ErrorKind.NETWORK_UNAVAILABLE, "Network error: Could not connect to Google Gemini API."
        )

    return ExtractionError(ErrorKind.SERVICE_ERROR, f"{action} Failed: {str(exc) or type(exc).__name__}")


class _GeminiBackend:
    def __init__(self, api_key: str = "", model: str = DEFAULT_MODEL, client: Optional[Any] = None):
        self.api_key = api_key
        self.model = model or DEFAULT_MODEL
        self._client = client

    def _get_client(self):
        if self._client is None:
            if not self.api_key:
                raise ExtractionError(
                    ErrorKind.MISSING_CREDENTIAL,
                    "API Key is missing. Please ensure GEMINI_API_KEY is configured.",
                )
            self._client = genai.Client(api_key=self.api_key)
        return self._client


class GeminiExtractionClient(_GeminiBackend, BaseExtractionClient):
    """Page extraction through the Gemini multimodal API."""

    def __init__(self, api_key: str = "", model: str = DEFAULT_MODEL, temperature: float = 0.0,
                 client: Optional[Any] = None):
        super().__init__(api_key=api_key, model=model, client=client)
        self.temperature = temperature

    async def extract(self, image: PageImage) -> str:
        client = self._get_client()
        try:
            response = await client.aio.models.generate_content(
                model=self.model,
                contents=[
                    types.Part.from_bytes(data=image.data, mime_type=image.mime_type),
                    OCR_PROMPT,
                ],
                config=types.GenerateContentConfig(temperature=self.temperature),
            )
        except Exception as e:
            logger.error("Gemini OCR API error, %s", e)
            raise classify_error(e) from e

        if not response.text:
            raise ExtractionError(ErrorKind.SERVICE_ERROR, "Empty response from AI model.")
        return response.text


class GeminiConversationClient(_GeminiBackend, BaseConversationClient):
    """Question answering over the extracted document text."""

    def __init__(self, api_key: str = "", model: str = DEFAULT_MODEL, temperature: Optional[float] = None,
                 client: Optional[Any] = None):
        super().__init__(api_key=api_key, model=model, client=client)
        self.temperature = temperature

    async def respond(self, history: Sequence[ChatMessage], message: str, document_context: str) -> str:
        client = self._get_client()
        contents = [
            types.Content(
                role="user" if m.role == "user" else "model",
                parts=[types.Part.from_text(text=m.content)],
            )
            for m in history
        ]
        contents.append(types.Content(role="user", parts=[types.Part.from_text(text=message)]))

        try:
            response = await client.aio.models.generate_content(
                model=self.model,
                contents=contents,
                config=types.GenerateContentConfig(
                    system_instruction=CHAT_INSTRUCTION.format(context=document_context),
                    temperature=self.temperature,
                ),
            )
        except Exception as e:
            logger.error("Gemini chat API error, %s", e)
            raise classify_error(e, action="Chat Request") from e

        return response.text or EMPTY_CHAT_REPLY
