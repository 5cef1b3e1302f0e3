"""Question classification: which department stores can answer what.

One Gemini call partitions the student's question across the stores the
student can reach. The call never fails the request: every problem resolves
to a usable ``ClassificationResult``, falling back to "ask every store with
the original question" when nothing better is available.

Parsing is an ordered chain of independent stages:

1. ``parse_direct``   - the whole reply is JSON
2. ``parse_embedded`` - the first balanced ``{...}`` inside the reply is JSON
3. default            - all offered stores, no splitting, nothing unanswered
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence

from google import genai
from google.genai import types

from .config import AppConfig
from .errors import ClassificationDegraded
from .llm import get_client
from .logger import LOGGER


@dataclass(frozen=True)
class UnansweredPart:
    """A fragment of the question no store can address."""
    text: str
    reason: str = ""

    def to_dict(self) -> Dict[str, str]:
        return {"text": self.text, "reason": self.reason}


@dataclass
class ClassificationResult:
    """Partition of one question across the offered stores.

    ``stores`` keeps the classifier's order, which is also the order the
    stores are queried and merged in.
    """

    stores: List[str]
    split_questions: Dict[str, str] = field(default_factory=dict)
    unanswered: List[UnansweredPart] = field(default_factory=list)
    degraded_reason: Optional[str] = None    # None when the reply parsed cleanly

    @property
    def degraded(self) -> bool:
        return self.degraded_reason is not None

    def question_for(self, store_name: str, original: str) -> str:
        return self.split_questions.get(store_name) or original

    @classmethod
    def select_all(cls, store_names: Sequence[str], reason: str) -> "ClassificationResult":
        return cls(stores=list(store_names), degraded_reason=reason)


# =============================================================================
# Parse stages
# =============================================================================

def parse_direct(raw: str) -> Optional[Any]:
    """Stage 1: parse the reply as a JSON document."""
    text = (raw or "").strip()
    if not text:
        return None
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        return None


def extract_balanced_object(raw: str) -> Optional[str]:
    """Return the first brace-balanced ``{...}`` span, ignoring braces in strings."""
    start = (raw or "").find("{")
    if start == -1:
        return None

    depth = 0
    in_string = False
    escaped = False
    for pos in range(start, len(raw)):
        char = raw[pos]
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
            continue
        if char == '"':
            in_string = True
        elif char == "{":
            depth += 1
        elif char == "}":
            depth -= 1
            if depth == 0:
                return raw[start:pos + 1]
    return None


def parse_embedded(raw: str) -> Optional[Any]:
    """Stage 2: parse the first balanced object embedded in prose or fences."""
    candidate = extract_balanced_object(raw)
    if candidate is None:
        return None
    try:
        return json.loads(candidate)
    except json.JSONDecodeError:
        return None


PARSE_STAGES: List[tuple] = [
    ("direct", parse_direct),
    ("embedded", parse_embedded),
]


def normalize_partition(payload: Any, store_names: Sequence[str]) -> Optional[ClassificationResult]:
    """Coerce a parsed payload into a ClassificationResult.

    Returns None when the payload is not a JSON object. Store names the
    student cannot reach are dropped; duplicates keep their first position.
    """
    if not isinstance(payload, dict):
        return None

    offered = set(store_names)
    raw_stores = payload.get("stores")
    stores: List[str] = []
    for name in raw_stores if isinstance(raw_stores, list) else []:
        if isinstance(name, str) and name in offered and name not in stores:
            stores.append(name)
        elif name not in stores:
            LOGGER.debug("Classifier returned unknown store %r, ignoring", name)

    raw_split = payload.get("split_questions")
    split_questions = {
        store: text.strip()
        for store, text in (raw_split.items() if isinstance(raw_split, dict) else [])
        if store in stores and isinstance(text, str) and text.strip()
    }

    unanswered: List[UnansweredPart] = []
    raw_unanswered = payload.get("unanswered")
    for item in raw_unanswered if isinstance(raw_unanswered, list) else []:
        if isinstance(item, dict) and item.get("text"):
            unanswered.append(UnansweredPart(text=str(item["text"]), reason=str(item.get("reason") or "")))
        elif isinstance(item, str) and item.strip():
            unanswered.append(UnansweredPart(text=item.strip()))

    return ClassificationResult(stores=stores, split_questions=split_questions, unanswered=unanswered)


def interpret_response(raw: str, store_names: Sequence[str]) -> ClassificationResult:
    """Run the parse stages in order, defaulting to every offered store."""
    for stage_name, stage in PARSE_STAGES:
        payload = stage(raw)
        if payload is None:
            continue
        result = normalize_partition(payload, store_names)
        if result is not None:
            LOGGER.debug("Classifier reply parsed by %s stage", stage_name)
            return result
        LOGGER.warning("Classifier %s stage found JSON that is not an object", stage_name)

    LOGGER.warning("Classifier reply unparseable, selecting all stores: %r", (raw or "")[:200])
    return ClassificationResult.select_all(store_names, "unparseable")


# =============================================================================
# StoreClassifier
# =============================================================================

def build_system_prompt(store_names: Sequence[str]) -> str:
    stores_json = json.dumps(list(store_names))
    return f"""You are a strict classifier and splitter. INPUT:
- stores list (names only): {stores_json}
- user's question (provided as the user content)

TASK:
1) Decide which of the stores from the list can answer whole or parts of the user's question.
2) If some part belongs to a store, rewrite that part clearly and put it in split_questions under that store name.
3) If a part belongs to multiple stores, include it under all relevant store keys.
4) If a part cannot be answered by any store, include that part in "unanswered" with a short "reason".

OUTPUT REQUIREMENTS (must output only valid JSON, nothing else):
{{
  "stores": ["store1", "store2"],
  "split_questions": {{
     "store1": "rewritten part for store1",
     "store2": "rewritten part for store2"
  }},
  "unanswered": [
     {{"text": "original part text", "reason": "why no store can answer"}}
  ]
}}

"stores" must use exact names from the provided list, or be an empty array.

If NO store can answer, return:
{{
  "stores": [],
  "split_questions": {{}},
  "unanswered": [{{"text": "<full question>", "reason": "No department can answer this"}}]
}}

Do NOT return any extra text, commentary, or explanation. Return valid JSON only."""


class StoreClassifier:
    """Partition questions across stores with a single Gemini call."""

    def __init__(
        self,
        model: Optional[str] = None,
        client_factory: Callable[[str], genai.Client] = get_client,
    ) -> None:
        self.model = model or AppConfig.get().classifier_model
        self._client_factory = client_factory

    async def classify(
        self,
        credential: Optional[str],
        store_names: Sequence[str],
        question: str,
    ) -> ClassificationResult:
        """Classify a question. Never raises."""
        if not credential:
            LOGGER.info("No serving credential, asking all %d stores", len(store_names))
            return ClassificationResult.select_all(store_names, "no_credential")

        try:
            raw = await self._request_partition(credential, store_names, question)
        except ClassificationDegraded as exc:
            LOGGER.warning("Store classification failed: %s - asking all stores", exc)
            return ClassificationResult.select_all(store_names, exc.reason)

        result = interpret_response(raw, store_names)
        LOGGER.info(
            "Classifier: stores=%s split=%s unanswered=%d degraded=%s",
            result.stores,
            sorted(result.split_questions),
            len(result.unanswered),
            result.degraded_reason,
        )
        return result

    async def _request_partition(
        self,
        credential: str,
        store_names: Sequence[str],
        question: str,
    ) -> str:
        try:
            client = self._client_factory(credential)
            response = await client.aio.models.generate_content(
                model=self.model,
                contents=question,
                config=types.GenerateContentConfig(
                    system_instruction=build_system_prompt(store_names),
                    temperature=0.0,
                    response_mime_type="application/json",
                ),
            )
            return response.text or ""
        except Exception as exc:
            raise ClassificationDegraded("call_failed", str(exc)) from exc


__all__ = [
    "ClassificationResult",
    "StoreClassifier",
    "UnansweredPart",
    "build_system_prompt",
    "extract_balanced_object",
    "interpret_response",
    "normalize_partition",
    "parse_direct",
    "parse_embedded",
]
