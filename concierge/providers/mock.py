"""Deterministic provider for tests, offline mode, and concept fallback.

Output is reproducible for a given session and variant index. Concept
images are real drawings (black motifs on white paper) so they go through
the same scoring path as live renders.
"""

from __future__ import annotations

import random

from PIL import Image, ImageDraw

from concierge.models.contracts import (
    ARAnchor,
    ARPackAssets,
    AssetType,
    ConceptRequest,
    ConceptVariant,
    DesignBrief,
    ExtractionResult,
    FinalSketch,
    QualityReport,
    RenderedConcept,
    SketchOutputs,
    VisionAsset,
)
from concierge.providers.base import DesignProvider
from concierge.utils.image import png_bytes

CANVAS_SIZE = 512
# Motifs stay inside this margin so the border remains clean paper.
MOTIF_MARGIN = int(CANVAS_SIZE * 0.14)
MIN_SHAPE = 40

DEFAULT_AR_OVERLAY = "https://placeholder.co/800x800?text=AR+Overlay"
DEFAULT_ANCHORS = [ARAnchor(x=0.5, y=0.5, type="center")]
DEFAULT_SHADER_PARAMS = {"opacity": 0.85, "blend_mode": "multiply"}


def _box(rng: random.Random) -> tuple[int, int, int, int]:
    lo, hi = MOTIF_MARGIN, CANVAS_SIZE - MOTIF_MARGIN
    x0 = rng.randint(lo, hi - MIN_SHAPE)
    y0 = rng.randint(lo, hi - MIN_SHAPE)
    return x0, y0, rng.randint(x0 + MIN_SHAPE, hi), rng.randint(y0 + MIN_SHAPE, hi)


def _point(rng: random.Random) -> tuple[int, int]:
    lo, hi = MOTIF_MARGIN, CANVAS_SIZE - MOTIF_MARGIN
    return rng.randint(lo, hi), rng.randint(lo, hi)


def draw_motif(style: str, seed: str) -> Image.Image:
    """Draw a black-on-white motif whose stroke vocabulary follows ``style``."""
    rng = random.Random(seed)
    img = Image.new("L", (CANVAS_SIZE, CANVAS_SIZE), 255)
    draw = ImageDraw.Draw(img)

    if style == "fineline":
        for _ in range(14):
            draw.line([_point(rng), _point(rng)], fill=0, width=3)
    elif style == "bold":
        for _ in range(4):
            draw.ellipse(_box(rng), outline=0, width=14)
    elif style == "geometric":
        for _ in range(5):
            draw.polygon([_point(rng) for _ in range(rng.randint(3, 6))], outline=0, width=6)
    elif style == "organic":
        for _ in range(7):
            start = rng.randint(0, 359)
            draw.arc(_box(rng), start, start + rng.randint(90, 300), fill=0, width=8)
    elif style == "blackwork":
        for _ in range(4):
            draw.polygon([_point(rng) for _ in range(rng.randint(3, 5))], fill=0)
    else:  # dotwork
        for _ in range(260):
            x, y = _point(rng)
            r = rng.randint(2, 5)
            draw.ellipse((x - r, y - r, x + r, y + r), fill=0)
    return img


class MockProvider(DesignProvider):
    name = "mock"
    model = "mock-v1"

    async def check_quality(self, url: str, asset_type: AssetType) -> QualityReport:
        return QualityReport(score=0.85, issues=[])

    async def extract_tattoo(self, asset: VisionAsset) -> ExtractionResult:
        return ExtractionResult(
            body_part="forearm",
            quality_score=0.82,
            tattoo_cutout_url="https://placeholder.co/400x400?text=Cutout",
            tattoo_mask_url="https://placeholder.co/400x400?text=Mask",
            tattoo_unwarped_url="https://placeholder.co/400x400?text=Unwarped",
        )

    async def render_concept(self, request: ConceptRequest) -> RenderedConcept:
        image = draw_motif(request.style, f"{request.session_id}:{request.index}:{request.style}")
        return RenderedConcept(
            image_url=f"https://placeholder.co/800x800?text=Concept+{request.index + 1}",
            image_png=png_bytes(image),
            provider=self.name,
            model=self.model,
        )

    async def render_sketch(self, variant: ConceptVariant, brief: DesignBrief) -> SketchOutputs:
        return SketchOutputs(
            lineart_url="https://placeholder.co/1200x1200?text=Lineart",
            overlay_url="https://placeholder.co/1200x1200?text=Overlay",
            svg_url="https://placeholder.co/1200x1200?text=SVG",
        )

    async def build_ar_assets(self, sketch: FinalSketch) -> ARPackAssets:
        return ARPackAssets(
            overlay_url=sketch.outputs.overlay_url or DEFAULT_AR_OVERLAY,
            anchors=list(DEFAULT_ANCHORS),
            shader_params=dict(DEFAULT_SHADER_PARAMS),
        )
