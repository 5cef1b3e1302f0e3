"""Fixed answers, model defaults and naming rules shared across the gateway."""

from __future__ import annotations

DEFAULT_CLASSIFIER_MODEL = "gemini-2.5-flash"
DEFAULT_RETRIEVAL_MODEL = "gemini-2.5-flash"

# Canned answers returned to the student
NO_STORES_ANSWER = "No RAG stores available for your account."
NO_DEPARTMENT_ANSWER = "Sorry, none of the departments can answer this."
NOT_FOUND_ANSWER = "Sorry we didn't find any information related to this."

ASSISTANT_ROLE = "assistant"

# Provider identity used when a store's owning account cannot be resolved
UNKNOWN_PROVIDER = "unknown"

SESSION_ID_PREFIX = "session_"
SESSION_NAME_MAX_WORDS = 10
SESSION_NAME_ELLIPSIS = "..."
DEFAULT_SESSION_NAME = "New Session"

# Characters outside this class are replaced with "_" in record filenames
SAFE_KEY_PATTERN = r"[^a-zA-Z0-9@._-]"
