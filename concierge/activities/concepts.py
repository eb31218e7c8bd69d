"""Concept generation orchestrator.

Renders a batch of variants concurrently, one style per variant, scores
each on four axes, and ranks them. If the chosen provider produces nothing
usable, the deterministic provider renders the whole batch instead, so an
approved request never comes back empty.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from datetime import datetime

import structlog
from PIL import Image

from concierge.activities.jobs import JobRunner
from concierge.compiler.errors import ProviderError
from concierge.config import settings
from concierge.models.contracts import (
    ConceptRequest,
    ConceptScores,
    ConceptVariant,
    DesignBrief,
    Job,
    RenderedConcept,
    utcnow,
)
from concierge.providers.base import DesignProvider
from concierge.storage.base import Store
from concierge.utils.image import ar_fitness, average_hash, clarity, hamming, open_image

logger = structlog.get_logger()

# (style key, prompt description), rotated across variants
STYLE_ROTATION: tuple[tuple[str, str], ...] = (
    ("fineline", "minimalist fine line"),
    ("bold", "bold traditional"),
    ("geometric", "geometric precision"),
    ("organic", "organic flowing"),
    ("blackwork", "blackwork solid"),
    ("dotwork", "dotwork stippling"),
)

STYLE_ALIASES: dict[str, tuple[str, ...]] = {
    "fineline": ("fineline", "fine line", "fine-line", "minimalist", "minimal", "single needle"),
    "bold": ("bold", "traditional", "old school", "neo traditional", "neotraditional"),
    "geometric": ("geometric", "geometry", "mandala", "sacred geometry"),
    "organic": ("organic", "floral", "botanical", "flowing", "watercolor"),
    "blackwork": ("blackwork", "black work", "tribal", "ornamental"),
    "dotwork": ("dotwork", "dot work", "stippling", "pointillism"),
}

STYLE_MATCH_SCORE = 1.0
STYLE_OPEN_SCORE = 0.85  # brief has no style tags yet
STYLE_MISMATCH_SCORE = 0.65

# Hamming distance (of 64 bits) at which two variants count as fully distinct
UNIQUENESS_BITS = 24

PROMPT_TEMPLATE = """Create a professional tattoo design sketch:
Style: {style}
Concept: {concept}
Elements: {elements}
Placement: {placement}
Size: {size}
Color: {color}

Requirements: Clean black linework, suitable for stencil transfer, high contrast"""


def build_prompt(brief: DesignBrief, style_description: str) -> str:
    elements = brief.elements.hero + brief.elements.secondary + brief.elements.fillers
    color = brief.color_mode or "black and grey"
    if brief.accent_color:
        color = f"{color} with {brief.accent_color} accents"
    size = brief.size_category or (f"{brief.size_cm:g} cm" if brief.size_cm else "medium")
    return PROMPT_TEMPLATE.format(
        style=style_description,
        concept=brief.concept_summary or brief.sleeve_theme or "artistic tattoo design",
        elements=", ".join(elements) or "custom design",
        placement=brief.placement_zone or "arm",
        size=size,
        color=color,
    )


def style_alignment(style: str, style_tags: list[str]) -> float:
    if not style_tags:
        return STYLE_OPEN_SCORE
    aliases = STYLE_ALIASES.get(style, (style,))
    for tag in style_tags:
        tag = tag.lower()
        if any(alias in tag or tag in alias for alias in aliases):
            return STYLE_MATCH_SCORE
    return STYLE_MISMATCH_SCORE


def score_batch(
    styles: list[str],
    images: list[Image.Image],
    brief: DesignBrief,
) -> list[ConceptScores]:
    """Score every image of a batch; uniqueness is relative to its siblings."""
    hashes = [average_hash(img) for img in images]
    scores = []
    for i, (style, img) in enumerate(zip(styles, images, strict=True)):
        others = [hamming(hashes[i], h) for j, h in enumerate(hashes) if j != i]
        uniqueness = min(min(others) / UNIQUENESS_BITS, 1.0) if others else 1.0
        scores.append(
            ConceptScores(
                style_alignment=style_alignment(style, brief.style_tags),
                clarity=round(clarity(img), 4),
                uniqueness=round(uniqueness, 4),
                ar_fitness=round(ar_fitness(img), 4),
            )
        )
    return scores


class ConceptOrchestrator:
    def __init__(
        self,
        store: Store,
        jobs: JobRunner,
        fallback: DesignProvider,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._store = store
        self._jobs = jobs
        self._fallback = fallback
        self._clock = clock

    def requests_for(self, session_id: str, brief: DesignBrief) -> list[ConceptRequest]:
        requests = []
        for i in range(settings.concept_variant_count):
            style, description = STYLE_ROTATION[i % len(STYLE_ROTATION)]
            requests.append(
                ConceptRequest(
                    session_id=session_id,
                    index=i,
                    style=style,
                    prompt=build_prompt(brief, description),
                )
            )
        return requests

    async def generate(
        self,
        job: Job,
        brief: DesignBrief,
        provider: DesignProvider,
    ) -> list[ConceptVariant]:
        requests = self.requests_for(job.session_id, brief)
        usable = await self._render(job, requests, provider)

        if not usable and provider is not self._fallback:
            logger.warning(
                "concept_generation_fallback",
                job_id=job.id,
                session_id=job.session_id,
                provider=provider.name,
                fallback=self._fallback.name,
            )
            await self._jobs.record_error(
                job,
                "provider_fallback",
                f"{provider.name} produced no usable variants; "
                f"fell back to {self._fallback.name}",
            )
            usable = await self._render(job, requests, self._fallback)

        if not usable:
            raise ProviderError("No concept variants could be rendered", code="no_variants")

        variants = self._build_variants(job, brief, usable)
        for variant in variants:
            await self._store.put_variant(variant)
        logger.info(
            "concepts_generated",
            job_id=job.id,
            session_id=job.session_id,
            count=len(variants),
            passing=sum(1 for v in variants if v.verdict == "pass"),
        )
        return variants

    async def _render(
        self,
        job: Job,
        requests: list[ConceptRequest],
        provider: DesignProvider,
    ) -> list[tuple[ConceptRequest, RenderedConcept, Image.Image]]:
        results = await asyncio.gather(
            *(provider.render_concept(r) for r in requests), return_exceptions=True
        )
        usable = []
        for request, result in zip(requests, results, strict=True):
            label = f"variant {request.index}"
            if isinstance(result, ProviderError):
                await self._jobs.record_error(job, result.code, f"{label}: {result.message}")
                continue
            if isinstance(result, BaseException):
                if not isinstance(result, Exception):
                    raise result
                await self._jobs.record_error(
                    job, "provider_error", f"{label}: {type(result).__name__}: {result}"
                )
                continue
            try:
                image = open_image(result.image_png)
            except (OSError, SyntaxError, ValueError) as exc:
                await self._jobs.record_error(job, "unusable_image", f"{label}: {exc}")
                continue
            usable.append((request, result, image))
        return usable

    def _build_variants(
        self,
        job: Job,
        brief: DesignBrief,
        usable: list[tuple[ConceptRequest, RenderedConcept, Image.Image]],
    ) -> list[ConceptVariant]:
        scores = score_batch([r.style for r, _, _ in usable], [img for _, _, img in usable], brief)
        order = sorted(range(len(usable)), key=lambda i: (-scores[i].mean, usable[i][0].index))
        ranks = {i: rank for rank, i in enumerate(order, start=1)}

        now = self._clock()
        return [
            ConceptVariant(
                session_id=job.session_id,
                job_id=job.id,
                idx=request.index,
                style=request.style,
                image_url=rendered.image_url,
                scores=scores[i],
                verdict="pass" if scores[i].passes else "fail",
                rank=ranks[i],
                provider=rendered.provider,
                model=rendered.model,
                created_at=now,
            )
            for i, (request, rendered, _) in enumerate(usable)
        ]
