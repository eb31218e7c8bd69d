"""Design Brief Compiler contract models.

Every entity the compiler persists or returns is defined here. The action
dispatch surface serializes these with ``model_dump(mode="json")``.
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from typing import Any, Literal

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator


def new_id() -> str:
    return str(uuid.uuid4())


def utcnow() -> datetime:
    return datetime.now(UTC)


# === Enumerations ===

Stage = Literal[
    "discovery",
    "brief_building",
    "design_alignment",
    "preview_ready",
    "scheduling",
    "deposit",
    "confirmed",
]

STAGE_ORDER: tuple[str, ...] = (
    "discovery",
    "brief_building",
    "design_alignment",
    "preview_ready",
    "scheduling",
    "deposit",
    "confirmed",
)

AssetType = Literal["reference_image", "placement_photo"]
JobType = Literal["concept", "sketch", "ar_pack"]
JobStatus = Literal["queued", "running", "done", "failed"]


# === Design Brief ===


class ElementBuckets(BaseModel):
    hero: list[str] = []
    secondary: list[str] = []
    fillers: list[str] = []


class DesignBrief(BaseModel):
    """Structured tattoo project description, filled in incrementally."""

    placement_zone: str | None = Field(
        default=None, validation_alias=AliasChoices("placement_zone", "placement")
    )
    size_category: str | None = None
    size_cm: float | None = Field(default=None, gt=0)
    style_tags: list[str] = []
    color_mode: str | None = None
    accent_color: str | None = None
    concept_summary: str | None = None
    is_sleeve: bool = False
    sleeve_type: str | None = None
    sleeve_theme: str | None = None
    elements: ElementBuckets = Field(
        default_factory=ElementBuckets,
        validation_alias=AliasChoices("elements", "elements_json"),
    )
    references_count: int = Field(default=0, ge=0)
    placement_photo_present: bool = False
    existing_tattoos_present: bool = False
    timeline_preference: str | None = None
    budget_range: str | None = None

    @field_validator("style_tags")
    @classmethod
    def _dedupe_style_tags(cls, tags: list[str]) -> list[str]:
        seen: list[str] = []
        for tag in tags:
            tag = tag.strip()
            if tag and tag not in seen:
                seen.append(tag)
        return seen


# Fields only the vision pipeline may change.
DERIVED_BRIEF_FIELDS = frozenset({"references_count", "placement_photo_present"})


class IntentFlags(BaseModel):
    preview_request: bool = False
    doubt: bool = False
    urgency: bool = False
    comparison: bool = False

    def merged(self, other: IntentFlags) -> IntentFlags:
        """OR-merge: a flag that is already true stays true."""
        return IntentFlags(
            preview_request=self.preview_request or other.preview_request,
            doubt=self.doubt or other.doubt,
            urgency=self.urgency or other.urgency,
            comparison=self.comparison or other.comparison,
        )


# === Session ===


class ConciergeSession(BaseModel):
    id: str = Field(default_factory=new_id)
    workspace_id: str
    conversation_id: str
    artist_id: str | None = None
    stage: Stage = "discovery"
    design_brief: DesignBrief = Field(default_factory=DesignBrief)
    readiness_score: float = Field(default=0.0, ge=0, le=1)
    intent_flags: IntentFlags = Field(default_factory=IntentFlags)
    sketch_offer_declined_count: int = 0
    sketch_offer_cooldown_until: datetime | None = None
    max_offers_reached: bool = False
    message_count: int = 0
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class Attachment(BaseModel):
    url: str = Field(min_length=1)
    asset_type: AssetType = Field(validation_alias=AliasChoices("asset_type", "type"))


class ConciergeMessage(BaseModel):
    id: str = Field(default_factory=new_id)
    session_id: str
    role: Literal["user", "assistant"] = "user"
    content: str
    attachments: list[Attachment] = []
    intent_detected: IntentFlags = Field(default_factory=IntentFlags)
    created_at: datetime = Field(default_factory=utcnow)


class ActionLogEntry(BaseModel):
    id: str = Field(default_factory=new_id)
    session_id: str
    action_key: str
    payload: dict[str, Any] = {}
    created_at: datetime = Field(default_factory=utcnow)


# === Vision ===


class QualityReport(BaseModel):
    score: float = Field(ge=0, le=1)
    issues: list[str] = []


class ExtractionResult(BaseModel):
    body_part: str | None = None
    quality_score: float | None = Field(default=None, ge=0, le=1)
    tattoo_cutout_url: str | None = None
    tattoo_mask_url: str | None = None
    tattoo_unwarped_url: str | None = None


class VisionAsset(BaseModel):
    id: str = Field(default_factory=new_id)
    session_id: str
    asset_type: AssetType
    storage_url: str
    quality_score: float | None = Field(default=None, ge=0, le=1)
    quality_issues: list[str] = []
    accepted: bool = False
    created_at: datetime = Field(default_factory=utcnow)


class VisionExtraction(ExtractionResult):
    id: str = Field(default_factory=new_id)
    asset_id: str
    session_id: str
    status: Literal["done", "failed"]
    error: str | None = None
    created_at: datetime = Field(default_factory=utcnow)


# === Offer policy & feature flags ===


class OfferPolicy(BaseModel):
    model_config = ConfigDict(extra="forbid")

    preset: str | None = None
    preview_offer_cooldown_minutes: int = Field(default=30, ge=0)
    max_preview_offers_per_session: int = Field(default=3, ge=1)
    sleeve_requires_min_references: int = Field(default=8, ge=0)
    single_requires_min_references: int = Field(default=3, ge=0)
    single_readiness_threshold: float = Field(default=0.75, ge=0, le=1)
    sleeve_readiness_threshold: float = Field(default=0.85, ge=0, le=1)
    preview_request_threshold: float = Field(default=0.55, ge=0, le=1)
    sleeve_preview_request_threshold: float = Field(default=0.70, ge=0, le=1)

    def min_references(self, brief: DesignBrief) -> int:
        if brief.is_sleeve:
            return self.sleeve_requires_min_references
        return self.single_requires_min_references


class FeatureFlag(BaseModel):
    workspace_id: str
    key: str = Field(min_length=1)
    enabled: bool
    config: dict[str, Any] = {}
    updated_at: datetime = Field(default_factory=utcnow)


class OfferDecision(BaseModel):
    can_offer: bool
    reason: str
    missing: list[str] = []


class ActionCard(BaseModel):
    type: Literal["button", "wizard", "chooser"]
    label: str
    action_key: str
    enabled: bool
    reason: str = Field(min_length=1)
    metadata: dict[str, Any] = {}


# === Generation artifacts ===


class ConceptScores(BaseModel):
    style_alignment: float = Field(ge=0, le=1)
    clarity: float = Field(ge=0, le=1)
    uniqueness: float = Field(ge=0, le=1)
    ar_fitness: float = Field(ge=0, le=1)

    @property
    def passes(self) -> bool:
        return all(
            s > 0.7 for s in (self.style_alignment, self.clarity, self.uniqueness, self.ar_fitness)
        )

    @property
    def mean(self) -> float:
        return (self.style_alignment + self.clarity + self.uniqueness + self.ar_fitness) / 4


class ConceptRequest(BaseModel):
    session_id: str
    index: int = Field(ge=0)
    style: str
    prompt: str


class RenderedConcept(BaseModel):
    """Raw provider output for one concept variant (PNG bytes + reference)."""

    image_url: str
    image_png: bytes
    provider: str
    model: str


class ConceptVariant(BaseModel):
    id: str = Field(default_factory=new_id)
    session_id: str
    job_id: str
    idx: int
    style: str
    image_url: str
    scores: ConceptScores
    verdict: Literal["pass", "fail"]
    rank: int = Field(ge=1)
    provider: str
    model: str
    chosen: bool = False
    created_at: datetime = Field(default_factory=utcnow)


class SketchOutputs(BaseModel):
    lineart_url: str | None = None
    overlay_url: str | None = None
    svg_url: str | None = None


class ARAnchor(BaseModel):
    x: float = Field(ge=0, le=1)
    y: float = Field(ge=0, le=1)
    type: str


class SketchMetadata(BaseModel):
    placement_zone: str | None = None
    recommended_size_cm: float | None = None
    rotation_degrees: float = 0
    anchor_points: list[ARAnchor] = []
    opacity_default: float = Field(default=0.85, ge=0, le=1)


class FinalSketch(BaseModel):
    id: str = Field(default_factory=new_id)
    session_id: str
    chosen_variant_id: str
    outputs: SketchOutputs
    metadata: SketchMetadata = Field(default_factory=SketchMetadata)
    created_at: datetime = Field(default_factory=utcnow)


class ARPackAssets(BaseModel):
    overlay_url: str | None = None
    anchors: list[ARAnchor] = []
    shader_params: dict[str, Any] = {}


class ARPack(BaseModel):
    id: str = Field(default_factory=new_id)
    session_id: str
    final_sketch_id: str
    status: Literal["done"] = "done"
    assets: ARPackAssets
    created_at: datetime = Field(default_factory=utcnow)


# === Jobs ===


class Job(BaseModel):
    id: str = Field(default_factory=new_id)
    session_id: str
    job_type: JobType
    status: JobStatus = "queued"
    retry_count: int = Field(default=0, ge=0)
    max_retries: int = Field(default=3, ge=0)
    inputs: dict[str, Any] = {}
    outputs: dict[str, Any] = {}
    error_code: str | None = None
    error_message: str | None = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class JobError(BaseModel):
    id: str = Field(default_factory=new_id)
    job_id: str
    session_id: str
    job_type: JobType
    attempt: int
    code: str
    message: str
    created_at: datetime = Field(default_factory=utcnow)


# === Action results ===


class SessionView(BaseModel):
    session: ConciergeSession
    decision: OfferDecision
    actions: list[ActionCard]


class BriefUpdateResult(SessionView):
    readiness: float


class MessageResult(SessionView):
    message: ConciergeMessage
    intent: IntentFlags
    readiness: float
    assets: list[VisionAsset]
    vision_processed: int


class ConceptResult(BaseModel):
    job_id: str
    variants: list[ConceptVariant]
    session: ConciergeSession
    job: Job


class SketchResult(BaseModel):
    sketch_id: str
    outputs: SketchOutputs
    session: ConciergeSession
    job: Job
    sketch: FinalSketch


class ARPackResult(BaseModel):
    pack_id: str
    assets: ARPackAssets
    session: ConciergeSession
    job: Job
    ar_pack: ARPack


class DeclineResult(BaseModel):
    session: ConciergeSession
    declined_count: int
    cooldown_until: datetime | None
    max_offers_reached: bool


class RetryResult(BaseModel):
    job: Job
    retry_count: int
    variants: list[ConceptVariant] = []
    sketch: FinalSketch | None = None
    ar_pack: ARPack | None = None


# === Error envelope ===


class ErrorResponse(BaseModel):
    error: str
    message: str
    retryable: bool
    details: dict[str, Any] | None = None
