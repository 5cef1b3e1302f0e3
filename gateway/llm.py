"""Gemini client cache keyed by organization credential."""

from __future__ import annotations

from functools import lru_cache

from google import genai


@lru_cache(maxsize=64)
def get_client(api_key: str) -> genai.Client:
    """Return a shared ``genai.Client`` for one organization key."""
    return genai.Client(api_key=api_key)


__all__ = ["get_client"]
