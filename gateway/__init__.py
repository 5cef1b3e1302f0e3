"""
Core of the campus ask gateway.

Routes a student's question to the department knowledge stores they can
reach, merges the answers and records the exchange as chat history and
per-department audit logs. The HTTP surface lives in the ``api`` package.
"""

from __future__ import annotations

__all__ = [
    "accounts",
    "audit",
    "classifier",
    "config",
    "constants",
    "errors",
    "history",
    "jsonstore",
    "llm",
    "logger",
    "orchestrator",
    "retrieval",
    "sessions",
]
