"""Sketch finalizer and AR pack builder.

Neither falls back to the deterministic provider: a failure marks the job
failed and is retried through ``retry_job``.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime

import structlog

from concierge.compiler.errors import NotFound, PreconditionFailed
from concierge.models.contracts import (
    ARAnchor,
    ARPack,
    ConciergeSession,
    DesignBrief,
    FinalSketch,
    SketchMetadata,
    utcnow,
)
from concierge.providers.base import DesignProvider
from concierge.storage.base import Store

logger = structlog.get_logger()

# Typical finished width per size category, used when the brief has no size_cm.
SIZE_CATEGORY_CM: dict[str, float] = {
    "tiny": 4.0,
    "small": 8.0,
    "medium": 15.0,
    "large": 25.0,
    "xl": 35.0,
    "half_sleeve": 40.0,
    "full_sleeve": 60.0,
}

PLACEMENT_PHOTO_REQUIRED = "placement photo required for AR"


def recommended_size_cm(brief: DesignBrief) -> float | None:
    if brief.size_cm:
        return brief.size_cm
    if brief.size_category:
        return SIZE_CATEGORY_CM.get(brief.size_category.lower().replace(" ", "_"))
    return None


def require_placement_photo(session: ConciergeSession) -> None:
    """AR needs a photo of the placement area; checked before any job exists."""
    if not session.design_brief.placement_photo_present:
        raise PreconditionFailed(
            PLACEMENT_PHOTO_REQUIRED,
            code="placement_photo_required",
            details={"session_id": session.id},
        )


class SketchFinalizer:
    def __init__(self, store: Store, clock: Callable[[], datetime] = utcnow) -> None:
        self._store = store
        self._clock = clock

    async def finalize(
        self,
        session: ConciergeSession,
        variant_id: str,
        provider: DesignProvider,
    ) -> FinalSketch:
        variant = await self._store.get_variant(variant_id)
        if variant is None or variant.session_id != session.id:
            raise NotFound(f"Variant {variant_id} not found", details={"variant_id": variant_id})

        brief = session.design_brief
        outputs = await provider.render_sketch(variant, brief)

        # Exactly one chosen variant per session
        for sibling in await self._store.list_variants(session.id):
            chosen = sibling.id == variant.id
            if sibling.chosen != chosen:
                sibling.chosen = chosen
                await self._store.put_variant(sibling)

        sketch = FinalSketch(
            session_id=session.id,
            chosen_variant_id=variant.id,
            outputs=outputs,
            metadata=SketchMetadata(
                placement_zone=brief.placement_zone,
                recommended_size_cm=recommended_size_cm(brief),
                anchor_points=[ARAnchor(x=0.5, y=0.5, type="center")],
            ),
            created_at=self._clock(),
        )
        await self._store.put_sketch(sketch)
        logger.info(
            "sketch_finalized",
            session_id=session.id,
            sketch_id=sketch.id,
            variant_id=variant.id,
            provider=provider.name,
        )
        return sketch


class ARPackBuilder:
    def __init__(self, store: Store, clock: Callable[[], datetime] = utcnow) -> None:
        self._store = store
        self._clock = clock

    async def build(
        self,
        session: ConciergeSession,
        sketch_id: str,
        provider: DesignProvider,
    ) -> ARPack:
        require_placement_photo(session)
        sketch = await self._store.get_sketch(sketch_id)
        if sketch is None or sketch.session_id != session.id:
            raise NotFound(f"Final sketch {sketch_id} not found", details={"sketch_id": sketch_id})

        assets = await provider.build_ar_assets(sketch)
        pack = ARPack(
            session_id=session.id,
            final_sketch_id=sketch.id,
            assets=assets,
            created_at=self._clock(),
        )
        await self._store.put_ar_pack(pack)
        logger.info("ar_pack_built", session_id=session.id, pack_id=pack.id, sketch_id=sketch.id)
        return pack
