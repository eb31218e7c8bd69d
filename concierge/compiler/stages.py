"""Session stage transition table.

Stages only move forward, one completed action at a time. ``reset_stage``
is the single way back to the start.
"""

from __future__ import annotations

from typing import Literal

from concierge.compiler.errors import IllegalTransition
from concierge.models.contracts import ConciergeSession, Stage

StageEvent = Literal[
    "brief_started",
    "concept_generated",
    "sketch_finalized",
    "scheduling_started",
    "deposit_requested",
    "deposit_paid",
]

# Events the booking/payment flows report once a preview is ready.
BOOKING_EVENTS: tuple[str, ...] = ("scheduling_started", "deposit_requested", "deposit_paid")

TRANSITIONS: dict[tuple[str, str], Stage] = {
    ("discovery", "brief_started"): "brief_building",
    ("discovery", "concept_generated"): "design_alignment",
    ("brief_building", "concept_generated"): "design_alignment",
    ("design_alignment", "concept_generated"): "design_alignment",
    ("design_alignment", "sketch_finalized"): "preview_ready",
    ("preview_ready", "sketch_finalized"): "preview_ready",
    ("preview_ready", "scheduling_started"): "scheduling",
    ("scheduling", "deposit_requested"): "deposit",
    ("deposit", "deposit_paid"): "confirmed",
}

INITIAL_STAGE: Stage = "discovery"


def next_stage(current: str, event: str) -> Stage:
    """Look up the target stage, raising IllegalTransition for unknown pairs."""
    try:
        return TRANSITIONS[(current, event)]
    except KeyError:
        raise IllegalTransition(
            f"cannot apply '{event}' in stage '{current}'",
            details={"stage": current, "event": event},
        ) from None


def advance(session: ConciergeSession, event: str) -> Stage:
    session.stage = next_stage(session.stage, event)
    return session.stage


def reset_stage(session: ConciergeSession) -> Stage:
    session.stage = INITIAL_STAGE
    return session.stage
