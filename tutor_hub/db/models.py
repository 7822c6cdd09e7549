"""Shared store constants and type aliases."""

from __future__ import annotations

from typing import Literal

Role = Literal["student", "teacher", "parent", "admin"]

# Sender id of messages written by the in-app assistant.
AI_ASSISTANT_ID = "ai-assistant"
