"""Provider capability interface.

Every provider-calling step (quality check, extraction, concept rendering,
sketch and AR outputs) goes through a ``DesignProvider``. The deterministic
and live implementations return the same schemas and differ only in how
realistic the content is. The provider is chosen once per action from the
workspace's ``DESIGN_COMPILER_MOCK_MODE`` flag.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from concierge.models.contracts import (
    ARPackAssets,
    AssetType,
    ConceptRequest,
    ConceptVariant,
    DesignBrief,
    ExtractionResult,
    FeatureFlag,
    FinalSketch,
    QualityReport,
    RenderedConcept,
    SketchOutputs,
    VisionAsset,
)

MOCK_MODE_FLAG = "DESIGN_COMPILER_MOCK_MODE"

# Quality issues that reject an asset outright.
REJECTING_ISSUES = frozenset({"invalid_image", "unreachable_image", "content_rejected"})


class DesignProvider(ABC):
    name: str
    model: str

    @abstractmethod
    async def check_quality(self, url: str, asset_type: AssetType) -> QualityReport:
        """Score an uploaded image in [0, 1] and list issue codes."""

    @abstractmethod
    async def extract_tattoo(self, asset: VisionAsset) -> ExtractionResult:
        """Locate the tattoo region on a reference photo."""

    @abstractmethod
    async def render_concept(self, request: ConceptRequest) -> RenderedConcept:
        """Render one concept variant. Raises ProviderError on failure."""

    @abstractmethod
    async def render_sketch(self, variant: ConceptVariant, brief: DesignBrief) -> SketchOutputs:
        """Produce stencil line art, overlay and SVG for the chosen variant."""

    @abstractmethod
    async def build_ar_assets(self, sketch: FinalSketch) -> ARPackAssets:
        """Produce the overlay, anchors and shader parameters for AR try-on."""


def mock_mode_enabled(flags: list[FeatureFlag], default: bool) -> bool:
    for flag in flags:
        if flag.key == MOCK_MODE_FLAG:
            return flag.enabled
    return default


def select_provider(
    flags: list[FeatureFlag],
    *,
    mock: DesignProvider,
    live: DesignProvider,
    default_mock: bool,
) -> DesignProvider:
    return mock if mock_mode_enabled(flags, default_mock) else live
