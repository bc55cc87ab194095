# src/lensocr/chat.py
from __future__ import annotations

import logging
import uuid
from typing import List, Tuple

from .backends.base import BaseConversationClient
from .exceptions import ChatUnavailableError
from .models import ChatMessage, RunState, RunStatus
from .utils import now_ms

logger = logging.getLogger("lensocr")


class ChatSession:
    """Conversation about one completed document. Not part of the extraction pipeline."""

    def __init__(self, client: BaseConversationClient, state: RunState):
        if state.status != RunStatus.COMPLETED:
            raise ChatUnavailableError("Conversation is available once extraction has completed")
        self.client = client
        self.document_context = state.full_text
        self._messages: List[ChatMessage] = []

    @property
    def messages(self) -> Tuple[ChatMessage, ...]:
        return tuple(self._messages)

    async def send(self, text: str) -> ChatMessage:
        if not text or not text.strip():
            raise ValueError("Message is empty")

        history = tuple(self._messages)
        self._messages.append(ChatMessage(id=uuid.uuid4().hex, role="user", content=text, timestamp=now_ms()))

        try:
            reply = await self.client.respond(history, text, self.document_context)
        except Exception:
            logger.exception("Chat error")
            raise

        answer = ChatMessage(id=uuid.uuid4().hex, role="assistant", content=reply, timestamp=now_ms())
        self._messages.append(answer)
        return answer
