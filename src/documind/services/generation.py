from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List

from ..models.common import RetrievedChunk
from .search import RetrievalService

logger = logging.getLogger(__name__)

NO_DOCUMENTS_MESSAGE = (
    "I don't have any documents to reference. Please upload some PDF documents first "
    "so I can help answer your questions about them."
)

SYSTEM_PROMPT = (
    "You are a helpful AI Assistant who answers the user query based on the available "
    "context from PDF File."
)


@dataclass(slots=True)
class AnswerResponse:
    message: str
    docs: List[RetrievedChunk] = field(default_factory=list)

    def as_dict(self) -> Dict[str, object]:
        return {
            "message": self.message,
            "docs": [{"text": doc.text, "metadata": doc.metadata, "score": doc.score} for doc in self.docs],
        }


class AnswerService:
    """Answers a user question from their own documents with a chat model."""

    def __init__(
        self,
        *,
        retrieval: RetrievalService,
        chat_client: Any,
        model: str,
        temperature: float = 0.2,
    ) -> None:
        self._retrieval = retrieval
        self._chat_client = chat_client
        self._model = model
        self._temperature = temperature

    def answer(self, user_id: str, query: str, *, k: int | None = None) -> AnswerResponse:
        docs = self._retrieval.retrieve(user_id, query, k=k)
        if not docs:
            logger.info("answer.no_documents", extra={"user_id": user_id})
            return AnswerResponse(message=NO_DOCUMENTS_MESSAGE, docs=[])
        context = "\n\n".join(doc.text for doc in docs)
        response = self._chat_client.chat.completions.create(
            model=self._model,
            messages=[
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": f"Context:\n{context}\n\nUser Query: {query}"},
            ],
            temperature=self._temperature,
        )
        content = (response.choices[0].message.content or "").strip()
        return AnswerResponse(message=content, docs=docs)


__all__ = ["AnswerResponse", "AnswerService", "NO_DOCUMENTS_MESSAGE"]
