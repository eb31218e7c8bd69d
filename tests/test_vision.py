"""Tests for the vision asset pipeline: acceptance, duplicates, fail-open, counters."""

from unittest.mock import AsyncMock

import pytest

from concierge.activities.vision import DUPLICATE_ISSUE, UNAVAILABLE_ISSUE, VisionPipeline
from concierge.compiler.errors import ProviderError
from concierge.models.contracts import Attachment, ConciergeSession, QualityReport
from concierge.providers.mock import MockProvider


@pytest.fixture
def pipeline(store, clock):
    return VisionPipeline(store, clock)


@pytest.fixture
def session():
    return ConciergeSession(workspace_id="ws", conversation_id="conv")


def _ref(url="https://cdn.example.com/ref-1.jpg"):
    return Attachment(url=url, asset_type="reference_image")


class TestIngest:
    @pytest.mark.asyncio
    async def test_accepted_reference_counts_and_extracts(self, pipeline, store, session):
        asset = await pipeline.ingest(session, _ref(), MockProvider())

        assert asset.accepted is True
        assert asset.quality_score == 0.85
        assert session.design_brief.references_count == 1
        extraction = await store.get_extraction(asset.id)
        assert extraction.status == "done"
        assert extraction.body_part == "forearm"

    @pytest.mark.asyncio
    async def test_placement_photo_sets_flag(self, pipeline, store, session):
        attachment = Attachment(url="https://cdn.example.com/arm.jpg", type="placement_photo")
        asset = await pipeline.ingest(session, attachment, MockProvider())

        assert asset.accepted is True
        assert session.design_brief.placement_photo_present is True
        assert session.design_brief.references_count == 0
        assert await store.get_extraction(asset.id) is None

    @pytest.mark.asyncio
    async def test_each_attachment_persisted_once(self, pipeline, store, session):
        await pipeline.ingest(session, _ref("u1"), MockProvider())
        await pipeline.ingest(session, _ref("u2"), MockProvider())
        assert len(await store.list_assets(session.id)) == 2


class TestRejection:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("issue", ["invalid_image", "unreachable_image", "content_rejected"])
    async def test_rejecting_issue_does_not_count(self, pipeline, session, issue):
        provider = MockProvider()
        provider.check_quality = AsyncMock(return_value=QualityReport(score=0.0, issues=[issue]))

        asset = await pipeline.ingest(session, _ref(), provider)

        assert asset.accepted is False
        assert asset.quality_issues == [issue]
        assert session.design_brief.references_count == 0

    @pytest.mark.asyncio
    async def test_advisory_issues_still_accept(self, pipeline, session):
        provider = MockProvider()
        provider.check_quality = AsyncMock(
            return_value=QualityReport(score=0.4, issues=["low_resolution", "blurry"])
        )

        asset = await pipeline.ingest(session, _ref(), provider)

        assert asset.accepted is True
        assert session.design_brief.references_count == 1

    @pytest.mark.asyncio
    async def test_duplicate_url_counted_once(self, pipeline, store, session):
        first = await pipeline.ingest(session, _ref(), MockProvider())
        second = await pipeline.ingest(session, _ref(), MockProvider())

        assert first.accepted is True
        assert second.accepted is False
        assert second.quality_issues == [DUPLICATE_ISSUE]
        assert session.design_brief.references_count == 1
        assert len(await store.list_assets(session.id)) == 2

    @pytest.mark.asyncio
    async def test_rejected_url_can_be_resubmitted(self, pipeline, session):
        """Only accepted assets block a repeat of the same URL."""
        provider = MockProvider()
        provider.check_quality = AsyncMock(
            side_effect=[
                QualityReport(score=0.0, issues=["unreachable_image"]),
                QualityReport(score=0.9, issues=[]),
            ]
        )
        await pipeline.ingest(session, _ref(), provider)
        retry = await pipeline.ingest(session, _ref(), provider)
        assert retry.accepted is True
        assert session.design_brief.references_count == 1


class TestFailOpen:
    @pytest.mark.asyncio
    async def test_scorer_outage_accepts_without_score(self, pipeline, session):
        provider = MockProvider()
        provider.check_quality = AsyncMock(
            side_effect=ProviderError("HTTP 503", code="unreachable_image")
        )

        asset = await pipeline.ingest(session, _ref(), provider)

        assert asset.accepted is True
        assert asset.quality_score is None
        assert asset.quality_issues == [UNAVAILABLE_ISSUE]
        assert session.design_brief.references_count == 1

    @pytest.mark.asyncio
    async def test_extraction_failure_recorded(self, pipeline, store, session):
        provider = MockProvider()
        provider.extract_tattoo = AsyncMock(
            side_effect=ProviderError("No tattoo region found in image", code="no_tattoo_region")
        )

        asset = await pipeline.ingest(session, _ref(), provider)

        assert asset.accepted is True
        assert session.design_brief.references_count == 1
        extraction = await store.get_extraction(asset.id)
        assert extraction.status == "failed"
        assert extraction.error == "No tattoo region found in image"

    @pytest.mark.asyncio
    async def test_unexpected_extraction_error_still_counts(self, pipeline, store, session):
        """An upload or SDK failure during extraction keeps the accepted asset counted."""
        provider = MockProvider()
        provider.extract_tattoo = AsyncMock(side_effect=RuntimeError("R2 upload failed"))

        asset = await pipeline.ingest(session, _ref(), provider)

        assert asset.accepted is True
        assert session.design_brief.references_count == 1
        extraction = await store.get_extraction(asset.id)
        assert extraction.status == "failed"
        assert extraction.error == "RuntimeError: R2 upload failed"

        # The same URL is a duplicate now, and the count does not move
        again = await pipeline.ingest(session, _ref(), provider)
        assert again.quality_issues == [DUPLICATE_ISSUE]
        assert session.design_brief.references_count == 1
