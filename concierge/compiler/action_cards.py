"""Action cards: the affordances a client sees next to the conversation."""

from __future__ import annotations

from concierge.compiler.offer_gate import references_needed
from concierge.models.contracts import ActionCard, DesignBrief, OfferDecision, OfferPolicy

GENERATE_CONCEPT = "generate_concept"
AR_TRYON = "ar_tryon"
ADD_REFERENCES = "add_references"


def refusal_reason(decision: OfferDecision) -> str:
    """Specific reason a gated action is disabled (also used server-side)."""
    if decision.missing:
        return "missing: " + ", ".join(decision.missing)
    return decision.reason


def build_action_cards(
    brief: DesignBrief,
    decision: OfferDecision,
    policy: OfferPolicy,
) -> list[ActionCard]:
    cards = [
        ActionCard(
            type="button",
            label="Generate Sleeve Concept" if brief.is_sleeve else "Generate Concept Preview",
            action_key=GENERATE_CONCEPT,
            enabled=decision.can_offer,
            reason=(
                "ready for a high-quality preview"
                if decision.can_offer
                else refusal_reason(decision)
            ),
        )
    ]

    ar_enabled = decision.can_offer and brief.placement_photo_present
    if ar_enabled:
        ar_reason = "see the design on your body"
    elif not brief.placement_photo_present:
        ar_reason = "upload a photo of the placement area to try it on"
    else:
        ar_reason = refusal_reason(decision)
    cards.append(
        ActionCard(
            type="button",
            label="AR Try-On",
            action_key=AR_TRYON,
            enabled=ar_enabled,
            reason=ar_reason,
        )
    )

    needed = references_needed(brief, policy)
    if needed:
        noun = "reference image" if needed == 1 else "reference images"
        cards.append(
            ActionCard(
                type="wizard",
                label="Add References",
                action_key=ADD_REFERENCES,
                enabled=True,
                reason=f"{needed} more {noun} needed for a quality preview",
                metadata={"needed": needed},
            )
        )
    return cards
