"""Offer policy gate — may generation be offered to this session right now?

``evaluate_offer`` is pure: everything it looks at is passed in, including
the current time, so it can be tested without a store or a clock.
"""

from __future__ import annotations

from datetime import datetime, timedelta

from concierge.compiler.readiness import (
    SINGLE_REFERENCE_SATURATION,
    SLEEVE_REFERENCE_SATURATION,
)
from concierge.models.contracts import (
    STAGE_ORDER,
    ConciergeSession,
    DesignBrief,
    IntentFlags,
    OfferDecision,
    OfferPolicy,
)

REASON_COOLDOWN = "cooldown active"
REASON_CAP = "offer cap reached"
REASON_NOT_READY = "conversation not ready for an offer"
REASON_READY = "ready for preview"

_ADVANCED_FROM = STAGE_ORDER.index("design_alignment")


def is_advanced_stage(stage: str) -> bool:
    return STAGE_ORDER.index(stage) >= _ADVANCED_FROM


def evaluate_offer(
    stage: str,
    readiness_score: float,
    intent_flags: IntentFlags,
    cooldown_until: datetime | None,
    max_offers_reached: bool,
    brief: DesignBrief,
    policy: OfferPolicy,
    now: datetime,
) -> OfferDecision:
    if cooldown_until is not None and now < cooldown_until:
        return OfferDecision(can_offer=False, reason=REASON_COOLDOWN)

    if max_offers_reached:
        return OfferDecision(can_offer=False, reason=REASON_CAP)

    if is_advanced_stage(stage):
        threshold = (
            policy.sleeve_readiness_threshold
            if brief.is_sleeve
            else policy.single_readiness_threshold
        )
    elif intent_flags.preview_request or intent_flags.doubt:
        threshold = (
            policy.sleeve_preview_request_threshold
            if brief.is_sleeve
            else policy.preview_request_threshold
        )
    else:
        return OfferDecision(can_offer=False, reason=REASON_NOT_READY)

    if readiness_score < threshold:
        return OfferDecision(
            can_offer=False,
            reason=f"readiness {readiness_score:.0%} is below the {threshold:.0%} threshold",
            missing=brief_gaps(brief, policy),
        )

    return OfferDecision(can_offer=True, reason=REASON_READY)


def evaluate_session(
    session: ConciergeSession,
    policy: OfferPolicy,
    now: datetime,
) -> OfferDecision:
    return evaluate_offer(
        stage=session.stage,
        readiness_score=session.readiness_score,
        intent_flags=session.intent_flags,
        cooldown_until=session.sketch_offer_cooldown_until,
        max_offers_reached=session.max_offers_reached,
        brief=session.design_brief,
        policy=policy,
        now=now,
    )


def references_needed(brief: DesignBrief, policy: OfferPolicy) -> int:
    return max(policy.min_references(brief) - brief.references_count, 0)


def _references_gap(needed: int) -> str:
    noun = "reference image" if needed == 1 else "reference images"
    return f"{needed} more {noun}"


def brief_gaps(brief: DesignBrief, policy: OfferPolicy) -> list[str]:
    """Human-readable list of what the brief still lacks, most important first.

    Every scored field appears once it is missing, so the list is never
    empty while the score is below 1.0.
    """
    gaps: list[str] = []
    needed = references_needed(brief, policy)

    if brief.is_sleeve:
        if not brief.sleeve_type:
            gaps.append("sleeve type")
        if needed:
            gaps.append(_references_gap(needed))
        if not brief.placement_photo_present:
            gaps.append("placement photo")
        if not brief.elements.hero:
            gaps.append("hero element")
        if not brief.sleeve_theme:
            gaps.append("sleeve theme")
        if not brief.placement_zone:
            gaps.append("placement")
        if not brief.elements.secondary:
            gaps.append("secondary element")
        if not brief.elements.fillers:
            gaps.append("filler element")
        if not needed and brief.references_count < SLEEVE_REFERENCE_SATURATION:
            gaps.append(_references_gap(SLEEVE_REFERENCE_SATURATION - brief.references_count))
    else:
        if needed:
            gaps.append(_references_gap(needed))
        if not brief.placement_zone:
            gaps.append("placement")
        if not brief.concept_summary:
            gaps.append("concept summary")
        if not (brief.size_category or brief.size_cm):
            gaps.append("size")
        if not brief.style_tags:
            gaps.append("style")
        if not needed and brief.references_count < SINGLE_REFERENCE_SATURATION:
            gaps.append(_references_gap(SINGLE_REFERENCE_SATURATION - brief.references_count))
    return gaps


def apply_decline(session: ConciergeSession, policy: OfferPolicy, now: datetime) -> None:
    """Record a declined offer: bump the count, start cooldown, maybe hit the cap.

    Once reached, the cap stays reached for the rest of the session.
    """
    session.sketch_offer_declined_count += 1
    session.sketch_offer_cooldown_until = now + timedelta(
        minutes=policy.preview_offer_cooldown_minutes
    )
    if session.sketch_offer_declined_count >= policy.max_preview_offers_per_session:
        session.max_offers_reached = True
