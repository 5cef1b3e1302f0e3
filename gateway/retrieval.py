"""Single-store question answering over Gemini File Search stores."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from google import genai
from google.genai import types

from .config import AppConfig
from .errors import RetrievalFailure
from .llm import get_client
from .logger import LOGGER


@dataclass
class StoreAnswer:
    """A usable answer from one store.

    ``grounding_chunks`` holds one ``{"text", "title", "uri"}`` dict per
    retrieved passage, in the order the backend returned them.
    """

    store_name: str
    answer_text: str
    grounding_chunks: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def evidence_texts(self) -> List[str]:
        return [chunk["text"] for chunk in self.grounding_chunks if chunk.get("text")]


def extract_grounding_chunks(response: Any) -> List[Dict[str, Any]]:
    """Pull retrieved-context passages out of a generate_content response."""
    chunks: List[Dict[str, Any]] = []
    for candidate in getattr(response, "candidates", None) or []:
        metadata = getattr(candidate, "grounding_metadata", None)
        for chunk in getattr(metadata, "grounding_chunks", None) or []:
            context = getattr(chunk, "retrieved_context", None)
            if context is None:
                continue
            chunks.append({
                "text": getattr(context, "text", None) or "",
                "title": getattr(context, "title", None),
                "uri": getattr(context, "uri", None),
            })
    return chunks


class StoreRetriever:
    """Ask one File Search store a question with an organization's key."""

    def __init__(
        self,
        model: Optional[str] = None,
        client_factory: Callable[[str], genai.Client] = get_client,
    ) -> None:
        self.model = model or AppConfig.get().retrieval_model
        self._client_factory = client_factory

    async def query(self, credential: Optional[str], store_name: str, question: str) -> StoreAnswer:
        """Answer ``question`` from ``store_name`` only.

        Raises:
            RetrievalFailure: No credential, backend error, or empty answer.
        """
        if not credential:
            raise RetrievalFailure(store_name, "no serving credential")

        try:
            client = self._client_factory(credential)
            response = await client.aio.models.generate_content(
                model=self.model,
                contents=question,
                config=types.GenerateContentConfig(
                    tools=[
                        types.Tool(
                            file_search=types.FileSearch(file_search_store_names=[store_name]),
                        )
                    ],
                ),
            )
            answer_text = (response.text or "").strip()
        except Exception as exc:
            raise RetrievalFailure(store_name, str(exc)) from exc

        if not answer_text:
            raise RetrievalFailure(store_name, "empty answer")

        answer = StoreAnswer(
            store_name=store_name,
            answer_text=answer_text,
            grounding_chunks=extract_grounding_chunks(response),
        )
        LOGGER.info(
            "Store %s answered (%d chars, %d grounding chunks)",
            store_name,
            len(answer_text),
            len(answer.grounding_chunks),
        )
        return answer


__all__ = ["StoreAnswer", "StoreRetriever", "extract_grounding_chunks"]
