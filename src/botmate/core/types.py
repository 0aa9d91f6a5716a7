"""Shared types and enumerations."""

from __future__ import annotations

from enum import StrEnum


class TurnState(StrEnum):
    IDLE = "idle"
    BUILDING_CONTEXT = "building_context"
    STREAMING = "streaming"
    AGGREGATING = "aggregating"
    PERSISTING = "persisting"
    COMPLETED = "completed"
    FAILED = "failed"
