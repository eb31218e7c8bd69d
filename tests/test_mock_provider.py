"""Tests for the deterministic provider and provider selection."""

import pytest

from concierge.models.contracts import (
    ConceptRequest,
    FeatureFlag,
    FinalSketch,
    SketchMetadata,
    SketchOutputs,
)
from concierge.providers.base import MOCK_MODE_FLAG, mock_mode_enabled, select_provider
from concierge.providers.live import LiveProvider
from concierge.providers.mock import DEFAULT_AR_OVERLAY, MockProvider, draw_motif
from concierge.utils.image import ar_fitness, open_image


class TestDrawMotif:
    @pytest.mark.parametrize(
        "style", ["fineline", "bold", "geometric", "organic", "blackwork", "dotwork"]
    )
    def test_motif_leaves_clean_border(self, style):
        """Motifs stay inside the margin, so the AR frame is blank paper."""
        img = draw_motif(style, f"seed-{style}")
        assert img.size == (512, 512)
        assert ar_fitness(img) == 1.0

    def test_same_seed_same_drawing(self):
        assert draw_motif("organic", "a").tobytes() == draw_motif("organic", "a").tobytes()

    def test_different_seed_different_drawing(self):
        assert draw_motif("organic", "a").tobytes() != draw_motif("organic", "b").tobytes()


class TestMockProvider:
    @pytest.mark.asyncio
    async def test_render_concept_returns_png(self):
        request = ConceptRequest(session_id="s1", index=2, style="bold", prompt="p")
        rendered = await MockProvider().render_concept(request)
        assert rendered.image_url.endswith("Concept+3")
        assert open_image(rendered.image_png).size == (512, 512)
        assert rendered.provider == "mock"

    @pytest.mark.asyncio
    async def test_ar_assets_use_sketch_overlay(self):
        sketch = FinalSketch(
            session_id="s1",
            chosen_variant_id="v1",
            outputs=SketchOutputs(overlay_url="https://cdn.example.com/overlay.png"),
            metadata=SketchMetadata(),
        )
        assets = await MockProvider().build_ar_assets(sketch)
        assert assets.overlay_url == "https://cdn.example.com/overlay.png"
        assert assets.anchors[0].type == "center"
        assert assets.shader_params == {"opacity": 0.85, "blend_mode": "multiply"}

    @pytest.mark.asyncio
    async def test_ar_assets_default_overlay(self):
        sketch = FinalSketch(session_id="s1", chosen_variant_id="v1", outputs=SketchOutputs())
        assets = await MockProvider().build_ar_assets(sketch)
        assert assets.overlay_url == DEFAULT_AR_OVERLAY


class TestSelection:
    def _flag(self, enabled, key=MOCK_MODE_FLAG):
        return FeatureFlag(workspace_id="ws", key=key, enabled=enabled)

    def test_default_when_flag_absent(self):
        assert mock_mode_enabled([], default=True) is True
        assert mock_mode_enabled([self._flag(False, key="OTHER")], default=False) is False

    def test_flag_overrides_default(self):
        assert mock_mode_enabled([self._flag(False)], default=True) is False
        assert mock_mode_enabled([self._flag(True)], default=False) is True

    def test_select_provider(self):
        mock, live = MockProvider(), LiveProvider()
        flags = [self._flag(True)]
        assert select_provider(flags, mock=mock, live=live, default_mock=False) is mock
        assert select_provider([], mock=mock, live=live, default_mock=False) is live
