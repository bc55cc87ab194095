# lensocr/backends/base.py
from typing import Sequence
from abc import ABC, abstractmethod

from ..models import ChatMessage, PageImage


class BaseExtractionClient(ABC):
    @abstractmethod
    async def extract(self, image: PageImage) -> str:
        """Return the verbatim content of one page image. Raises ExtractionError."""
        pass


class BaseConversationClient(ABC):
    @abstractmethod
    async def respond(self, history: Sequence[ChatMessage], message: str, document_context: str) -> str:
        """Answer a question about the document. Stateless per call."""
        pass
