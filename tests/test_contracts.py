"""Tests for contract model validation rules."""

import pytest
from pydantic import ValidationError

from concierge.compiler.errors import format_validation_errors
from concierge.models.contracts import (
    ActionCard,
    Attachment,
    ConceptScores,
    DesignBrief,
    ErrorResponse,
    OfferPolicy,
)


class TestDesignBrief:
    def test_aliases(self):
        brief = DesignBrief.model_validate(
            {"placement": "ribs", "elements_json": {"hero": ["moth"]}}
        )
        assert brief.placement_zone == "ribs"
        assert brief.elements.hero == ["moth"]

    def test_style_tags_deduplicated_and_trimmed(self):
        brief = DesignBrief(style_tags=[" fineline", "fineline", "", "dotwork"])
        assert brief.style_tags == ["fineline", "dotwork"]

    def test_negative_references_rejected(self):
        with pytest.raises(ValidationError):
            DesignBrief(references_count=-1)

    def test_size_cm_must_be_positive(self):
        with pytest.raises(ValidationError):
            DesignBrief(size_cm=0)


class TestOfferPolicy:
    def test_defaults(self):
        policy = OfferPolicy()
        assert policy.preview_offer_cooldown_minutes == 30
        assert policy.max_preview_offers_per_session == 3
        assert policy.min_references(DesignBrief()) == 3
        assert policy.min_references(DesignBrief(is_sleeve=True)) == 8

    def test_thresholds_bounded(self):
        with pytest.raises(ValidationError):
            OfferPolicy(single_readiness_threshold=1.5)

    def test_extra_keys_forbidden(self):
        with pytest.raises(ValidationError):
            OfferPolicy(unlimited=True)


class TestConceptScores:
    def test_passes_requires_every_axis_above_threshold(self):
        scores = ConceptScores(style_alignment=1, clarity=0.9, uniqueness=0.8, ar_fitness=0.75)
        assert scores.passes
        assert not ConceptScores(
            style_alignment=1, clarity=0.9, uniqueness=0.7, ar_fitness=0.9
        ).passes

    def test_mean(self):
        scores = ConceptScores(style_alignment=1, clarity=0.5, uniqueness=0.5, ar_fitness=0)
        assert scores.mean == 0.5


class TestMisc:
    def test_attachment_type_alias(self):
        attachment = Attachment.model_validate({"url": "u", "type": "placement_photo"})
        assert attachment.asset_type == "placement_photo"

    def test_attachment_rejects_unknown_type(self):
        with pytest.raises(ValidationError):
            Attachment.model_validate({"url": "u", "type": "selfie"})

    def test_action_card_requires_reason(self):
        with pytest.raises(ValidationError):
            ActionCard(type="button", label="x", action_key="x", enabled=True, reason="")

    def test_error_response_shape(self):
        body = ErrorResponse(error="not_found", message="gone", retryable=False).model_dump()
        assert body == {
            "error": "not_found",
            "message": "gone",
            "retryable": False,
            "details": None,
        }

    def test_format_validation_errors(self):
        with pytest.raises(ValidationError) as exc_info:
            DesignBrief(size_cm=-1, references_count=-2)
        message = format_validation_errors(exc_info.value.errors())
        assert "size_cm: " in message
        assert "references_count: " in message
        assert "; " in message
