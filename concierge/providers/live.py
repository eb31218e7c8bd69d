"""Live provider — real image checks, Gemini concept renders, Pillow sketches.

Quality check:
1. Download (httpx) and decode (Pillow); unreachable or corrupt images are rejected
2. Resolution: shortest side >= settings.min_image_resolution
3. Blur: Laplacian variance >= settings.blur_threshold
4. Content: Claude classification, only when basic checks pass and a key is set

Concepts are rendered by Gemini; sketches and AR overlays are derived from
the chosen concept with Pillow. Artifacts go to R2 (or data URLs).
"""

from __future__ import annotations

import asyncio
import base64

import anthropic
import structlog
from google.genai import errors as genai_errors
from PIL import Image

from concierge.compiler.errors import ProviderError
from concierge.config import settings
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
from concierge.utils import gemini, r2
from concierge.utils.http import ImageFetchError, load_image
from concierge.utils.image import (
    laplacian_variance,
    png_bytes,
    shortest_side,
    to_lineart,
    to_overlay,
    to_svg,
)

logger = structlog.get_logger()

CLASSIFY_MAX_SIDE = 1024
INK_CUTOFF = 96
BODY_PARTS = (
    "forearm",
    "upper_arm",
    "shoulder",
    "chest",
    "back",
    "ribs",
    "thigh",
    "calf",
    "ankle",
    "wrist",
    "hand",
    "neck",
)

CONTENT_PROMPTS: dict[str, str] = {
    "reference_image": (
        "Is this image a tattoo, a tattoo design, or artwork that could serve as a tattoo "
        "reference? Reply with exactly YES or NO, then a brief reason."
    ),
    "placement_photo": (
        "Does this photo clearly show an area of a human body where a tattoo could be "
        "placed? Reply with exactly YES or NO, then a brief reason."
    ),
}

SYSTEM_PROMPT = "You are a professional tattoo sketch artist."


_anthropic_client: anthropic.Anthropic | None = None


def _get_anthropic_client() -> anthropic.Anthropic:
    """Lazy singleton for Anthropic client — reuses connection pool across calls."""
    global _anthropic_client
    if _anthropic_client is None:
        _anthropic_client = anthropic.Anthropic(api_key=settings.anthropic_api_key)
    return _anthropic_client


def _classification_png(img: Image.Image) -> str:
    small = img.convert("RGB")
    small.thumbnail((CLASSIFY_MAX_SIDE, CLASSIFY_MAX_SIDE))
    return base64.b64encode(png_bytes(small)).decode()


def _ask_claude(img: Image.Image, prompt: str, max_tokens: int = 100) -> str | None:
    """One-shot image question. Returns the text answer, or None when unusable."""
    client = _get_anthropic_client()
    response = client.messages.create(
        model=settings.vision_model,
        max_tokens=max_tokens,
        messages=[
            {
                "role": "user",
                "content": [
                    {
                        "type": "image",
                        "source": {
                            "type": "base64",
                            "media_type": "image/png",
                            "data": _classification_png(img),
                        },
                    },
                    {"type": "text", "text": prompt},
                ],
            }
        ],
    )
    if not response.content or not hasattr(response.content[0], "text"):
        logger.error(
            "vision_classification_unexpected_response",
            content_length=len(response.content) if response.content else 0,
        )
        return None
    return response.content[0].text.strip()


def _ink_mask(img: Image.Image) -> Image.Image:
    return img.convert("L").point(lambda p: 255 if p < INK_CUTOFF else 0)


class LiveProvider(DesignProvider):
    name = "gemini"

    def __init__(self) -> None:
        self.model = settings.gemini_model
        self._gemini = None

    def _gemini_client(self):
        if not settings.google_ai_api_key:
            raise ProviderError(
                "Gemini is not configured (GOOGLE_AI_API_KEY missing)",
                code="provider_unavailable",
            )
        if self._gemini is None:
            self._gemini = gemini.get_client()
        return self._gemini

    # --- Vision ---

    async def check_quality(self, url: str, asset_type: AssetType) -> QualityReport:
        try:
            img = await load_image(url)
        except ImageFetchError as exc:
            if exc.retryable:
                raise
            logger.info("quality_check_rejected", code=exc.code, error=exc.message)
            return QualityReport(score=0.0, issues=[exc.code])

        issues: list[str] = []
        shortest = shortest_side(img)
        if shortest < settings.min_image_resolution:
            issues.append("low_resolution")
        variance = await asyncio.to_thread(laplacian_variance, img)
        if variance < settings.blur_threshold:
            issues.append("blurry")

        resolution = min(shortest / (2 * settings.min_image_resolution), 1.0)
        sharpness = min(variance / (3 * settings.blur_threshold), 1.0)
        score = round(0.5 * resolution + 0.5 * sharpness, 4)

        if not issues:
            if settings.anthropic_api_key:
                if not await self._content_ok(img, asset_type):
                    issues.append("content_rejected")
            else:
                logger.warning(
                    "quality_check_content_skipped",
                    reason="anthropic_api_key not configured",
                )

        logger.info(
            "quality_check",
            asset_type=asset_type,
            score=score,
            issues=issues,
            blur_variance=round(variance, 1),
        )
        return QualityReport(score=score, issues=issues)

    async def _content_ok(self, img: Image.Image, asset_type: AssetType) -> bool:
        try:
            answer = await asyncio.to_thread(_ask_claude, img, CONTENT_PROMPTS[asset_type])
        except anthropic.APIError as exc:
            logger.warning("quality_check_content_unavailable", error=str(exc))
            return True  # fail open
        if answer is None:
            return True
        return not answer.upper().startswith("NO")

    async def extract_tattoo(self, asset: VisionAsset) -> ExtractionResult:
        img = await load_image(asset.storage_url)
        rgba = img.convert("RGBA")
        mask = _ink_mask(rgba)
        bbox = mask.getbbox()
        if bbox is None:
            raise ProviderError("No tattoo region found in image", code="no_tattoo_region")

        cutout = rgba.crop(bbox)
        cutout.putalpha(mask.crop(bbox))
        region = mask.crop(bbox)
        hist = region.histogram()
        coverage = hist[255] / max(sum(hist), 1)
        sharpness = min(laplacian_variance(cutout) / (3 * settings.blur_threshold), 1.0)
        quality = round(0.5 * sharpness + 0.5 * min(coverage * 4, 1.0), 4)

        prefix = f"sessions/{asset.session_id}/extractions/{asset.id}"
        cutout_url, mask_url = await asyncio.gather(
            asyncio.to_thread(r2.store_png, f"{prefix}_cutout.png", png_bytes(cutout)),
            asyncio.to_thread(r2.store_png, f"{prefix}_mask.png", png_bytes(region)),
        )

        return ExtractionResult(
            body_part=await self._guess_body_part(img),
            quality_score=quality,
            tattoo_cutout_url=cutout_url,
            tattoo_mask_url=mask_url,
        )

    async def _guess_body_part(self, img: Image.Image) -> str | None:
        if not settings.anthropic_api_key:
            return None
        prompt = (
            "Which body part is the tattoo in this photo on? Answer with exactly one of: "
            + ", ".join(BODY_PARTS)
            + ", or unknown."
        )
        try:
            answer = await asyncio.to_thread(_ask_claude, img, prompt, 20)
        except anthropic.APIError as exc:
            logger.warning("body_part_guess_failed", error=str(exc))
            return None
        if answer is None:
            return None
        guess = answer.lower().split()[0].strip(".,") if answer.split() else ""
        return guess if guess in BODY_PARTS else None

    # --- Generation ---

    async def render_concept(self, request: ConceptRequest) -> RenderedConcept:
        client = self._gemini_client()
        try:
            # Run sync Gemini call in thread pool with timeout to prevent hanging
            async with asyncio.timeout(settings.provider_timeout_seconds):
                response = await asyncio.to_thread(
                    client.models.generate_content,
                    model=self.model,
                    contents=[f"{SYSTEM_PROMPT}\n\n{request.prompt}"],
                    config=gemini.IMAGE_CONFIG,
                )
        except TimeoutError as exc:
            raise ProviderError(
                f"Gemini timed out after {settings.provider_timeout_seconds:.0f}s",
                code="provider_timeout",
            ) from exc
        except genai_errors.APIError as exc:
            raise ProviderError(f"Gemini error: {exc}", code="provider_api_error") from exc

        try:
            image = gemini.extract_image(response)
        except OSError as exc:
            raise ProviderError("Gemini returned a corrupt image", code="empty_response") from exc
        if image is None:
            raise ProviderError(
                f"Gemini returned no image for variant {request.index}",
                code="empty_response",
                details={"text": gemini.extract_text(response)[:300]},
            )

        data = png_bytes(image.convert("RGB"))
        key = f"sessions/{request.session_id}/concepts/variant_{request.index}.png"
        url = await asyncio.to_thread(r2.store_png, key, data)
        return RenderedConcept(image_url=url, image_png=data, provider=self.name, model=self.model)

    async def render_sketch(self, variant: ConceptVariant, brief: DesignBrief) -> SketchOutputs:
        img = await load_image(variant.image_url)
        prefix = f"sessions/{variant.session_id}/sketches/{variant.id}"

        lineart = png_bytes(to_lineart(img))
        overlay = png_bytes(to_overlay(img))
        svg = to_svg(img)
        return SketchOutputs(
            lineart_url=await asyncio.to_thread(r2.store_png, f"{prefix}_lineart.png", lineart),
            overlay_url=await asyncio.to_thread(r2.store_png, f"{prefix}_overlay.png", overlay),
            svg_url=await asyncio.to_thread(
                r2.store_png, f"{prefix}.svg", svg, "image/svg+xml"
            ),
        )

    async def build_ar_assets(self, sketch: FinalSketch) -> ARPackAssets:
        source = sketch.outputs.lineart_url or sketch.outputs.overlay_url
        if not source:
            raise ProviderError("Final sketch has no line art to build an overlay from")
        img = await load_image(source)
        w, h = img.size
        bbox = _ink_mask(img.convert("RGBA")).getbbox() or (0, 0, w, h)
        left, top, right, bottom = bbox

        anchors = [
            ARAnchor(
                x=round((left + right) / 2 / w, 4),
                y=round((top + bottom) / 2 / h, 4),
                type="center",
            ),
            ARAnchor(x=round(left / w, 4), y=round(top / h, 4), type="top_left"),
            ARAnchor(x=round(right / w, 4), y=round(bottom / h, 4), type="bottom_right"),
        ]
        return ARPackAssets(
            overlay_url=sketch.outputs.overlay_url or source,
            anchors=anchors,
            shader_params={
                "opacity": sketch.metadata.opacity_default,
                "blend_mode": "multiply",
                "rotation_degrees": sketch.metadata.rotation_degrees,
            },
        )
