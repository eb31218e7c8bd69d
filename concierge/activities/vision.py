"""Vision asset pipeline — quality check, tattoo extraction, brief counters.

Each attachment becomes exactly one VisionAsset. Only accepted assets move
the brief's derived counters, and each does so once.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime

import structlog

from concierge.compiler.errors import ProviderError
from concierge.models.contracts import (
    Attachment,
    ConciergeSession,
    QualityReport,
    VisionAsset,
    VisionExtraction,
    utcnow,
)
from concierge.providers.base import REJECTING_ISSUES, DesignProvider
from concierge.storage.base import Store

logger = structlog.get_logger()

DUPLICATE_ISSUE = "duplicate_image"
UNAVAILABLE_ISSUE = "quality_check_unavailable"


class VisionPipeline:
    def __init__(self, store: Store, clock: Callable[[], datetime] = utcnow) -> None:
        self._store = store
        self._clock = clock

    async def ingest(
        self,
        session: ConciergeSession,
        attachment: Attachment,
        provider: DesignProvider,
    ) -> VisionAsset:
        """Check, persist and count one attachment. Mutates ``session.design_brief``."""
        asset = VisionAsset(
            session_id=session.id,
            asset_type=attachment.asset_type,
            storage_url=attachment.url,
            created_at=self._clock(),
        )

        if await self._already_accepted(session.id, attachment.url):
            asset.quality_issues = [DUPLICATE_ISSUE]
            await self._store.put_asset(asset)
            logger.info("vision_asset_duplicate", session_id=session.id, asset_id=asset.id)
            return asset

        report = await self._check_quality(session.id, attachment, provider)
        asset.quality_score = None if UNAVAILABLE_ISSUE in report.issues else report.score
        asset.quality_issues = report.issues
        asset.accepted = not REJECTING_ISSUES.intersection(report.issues)
        await self._store.put_asset(asset)

        if asset.accepted:
            brief = session.design_brief
            if asset.asset_type == "reference_image":
                brief.references_count += 1
                await self._extract(asset, provider)
            else:
                brief.placement_photo_present = True

        logger.info(
            "vision_asset_ingested",
            session_id=session.id,
            asset_id=asset.id,
            asset_type=asset.asset_type,
            accepted=asset.accepted,
            quality_score=asset.quality_score,
            issues=asset.quality_issues,
        )
        return asset

    async def _already_accepted(self, session_id: str, url: str) -> bool:
        assets = await self._store.list_assets(session_id)
        return any(a.accepted and a.storage_url == url for a in assets)

    async def _check_quality(
        self,
        session_id: str,
        attachment: Attachment,
        provider: DesignProvider,
    ) -> QualityReport:
        try:
            return await provider.check_quality(attachment.url, attachment.asset_type)
        except ProviderError as exc:
            # fail open: a scorer outage must not block the conversation
            logger.warning(
                "quality_check_unavailable",
                session_id=session_id,
                provider=provider.name,
                error=exc.message,
            )
            return QualityReport(score=0.0, issues=[UNAVAILABLE_ISSUE])

    async def _extract(self, asset: VisionAsset, provider: DesignProvider) -> VisionExtraction:
        try:
            result = await provider.extract_tattoo(asset)
        except Exception as exc:
            # The asset is already accepted and counted; extraction never fails it
            if isinstance(exc, ProviderError):
                message = exc.message
            else:
                message = f"{type(exc).__name__}: {exc}"
            extraction = VisionExtraction(
                asset_id=asset.id,
                session_id=asset.session_id,
                status="failed",
                error=message,
                created_at=self._clock(),
            )
            logger.warning(
                "vision_extraction_failed",
                session_id=asset.session_id,
                asset_id=asset.id,
                error=message,
                exc_info=not isinstance(exc, ProviderError),
            )
        else:
            extraction = VisionExtraction(
                **result.model_dump(),
                asset_id=asset.id,
                session_id=asset.session_id,
                status="done",
                created_at=self._clock(),
            )
        await self._store.put_extraction(extraction)
        return extraction
