"""Readiness score: how complete a design brief is, in [0, 1].

Single pieces and sleeves are weighted differently; sleeves need more
references and a placement photo before they score as ready.
"""

from __future__ import annotations

from concierge.models.contracts import DesignBrief

SINGLE_REFERENCE_WEIGHT = 0.10
SLEEVE_REFERENCE_WEIGHT = 0.0375
MAX_REFERENCE_CONTRIBUTION = 0.30

# Reference counts at which the reference contribution saturates
SINGLE_REFERENCE_SATURATION = 3
SLEEVE_REFERENCE_SATURATION = 8


def readiness_score(brief: DesignBrief) -> float:
    score = _sleeve_score(brief) if brief.is_sleeve else _single_score(brief)
    # 4 dp: a complete brief scores exactly 1.0
    return round(min(score, 1.0), 4)


def _single_score(brief: DesignBrief) -> float:
    score = 0.0
    if brief.placement_zone:
        score += 0.20
    if brief.size_category or brief.size_cm:
        score += 0.15
    if brief.style_tags:
        score += 0.15
    if brief.concept_summary:
        score += 0.20
    score += min(brief.references_count * SINGLE_REFERENCE_WEIGHT, MAX_REFERENCE_CONTRIBUTION)
    return score


def _sleeve_score(brief: DesignBrief) -> float:
    score = 0.0
    if brief.sleeve_type:
        score += 0.10
    if brief.sleeve_theme:
        score += 0.10
    if brief.placement_zone:
        score += 0.05
    if brief.placement_photo_present:
        score += 0.15
    if brief.elements.hero:
        score += 0.10
    if brief.elements.secondary:
        score += 0.10
    if brief.elements.fillers:
        score += 0.10
    score += min(brief.references_count * SLEEVE_REFERENCE_WEIGHT, MAX_REFERENCE_CONTRIBUTION)
    return score
