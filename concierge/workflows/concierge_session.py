"""DesignCompiler — one service instance per process, one lock per session.

Owns every session state transition. Each mutating action runs under the
session's asyncio.Lock, so a session has a single writer while different
sessions proceed independently. Providers are chosen once per action from
the workspace's mock-mode flag and passed down to the pipeline steps.
"""

from __future__ import annotations

import asyncio
import weakref
from collections.abc import Callable
from datetime import datetime
from typing import Any

import structlog
from pydantic import ValidationError

from concierge.activities.concepts import ConceptOrchestrator
from concierge.activities.jobs import JobRunner
from concierge.activities.sketch import ARPackBuilder, SketchFinalizer, require_placement_photo
from concierge.activities.vision import VisionPipeline
from concierge.compiler.action_cards import build_action_cards, refusal_reason
from concierge.compiler.errors import (
    InvalidRequest,
    NotFound,
    OfferRefused,
    PreconditionFailed,
    format_validation_errors,
)
from concierge.compiler.intent import IntentClassifier, KeywordIntentClassifier
from concierge.compiler.offer_gate import apply_decline, evaluate_session
from concierge.compiler.readiness import readiness_score
from concierge.compiler.stages import BOOKING_EVENTS, advance, next_stage, reset_stage
from concierge.config import settings
from concierge.models.contracts import (
    DERIVED_BRIEF_FIELDS,
    ActionCard,
    ActionLogEntry,
    ARPack,
    ARPackResult,
    Attachment,
    BriefUpdateResult,
    ConceptResult,
    ConceptVariant,
    ConciergeMessage,
    ConciergeSession,
    DeclineResult,
    DesignBrief,
    FeatureFlag,
    FinalSketch,
    Job,
    JobError,
    MessageResult,
    OfferDecision,
    OfferPolicy,
    RetryResult,
    SessionView,
    SketchResult,
    utcnow,
)
from concierge.providers.base import DesignProvider, select_provider
from concierge.providers.live import LiveProvider
from concierge.providers.mock import MockProvider
from concierge.storage.base import Store

logger = structlog.get_logger()

# Studio presets override cooldown, offer cap and minimum references.
POLICY_PRESETS: dict[str, dict[str, int]] = {
    "conservative": {
        "preview_offer_cooldown_minutes": 30,
        "max_preview_offers_per_session": 2,
        "sleeve_requires_min_references": 10,
        "single_requires_min_references": 4,
    },
    "balanced": {
        "preview_offer_cooldown_minutes": 15,
        "max_preview_offers_per_session": 3,
        "sleeve_requires_min_references": 8,
        "single_requires_min_references": 3,
    },
    "aggressive": {
        "preview_offer_cooldown_minutes": 10,
        "max_preview_offers_per_session": 5,
        "sleeve_requires_min_references": 6,
        "single_requires_min_references": 2,
    },
}

# Input aliases accepted by update_brief alongside the field names
_BRIEF_ALIASES = {"placement": "placement_zone", "elements_json": "elements"}
_ELEMENT_BUCKETS = ("hero", "secondary", "fillers")


class DesignCompiler:
    def __init__(
        self,
        store: Store,
        *,
        mock_provider: DesignProvider | None = None,
        live_provider: DesignProvider | None = None,
        classifier: IntentClassifier | None = None,
        clock: Callable[[], datetime] = utcnow,
        default_mock: bool | None = None,
    ) -> None:
        self.store = store
        self._mock = mock_provider or MockProvider()
        self._live = live_provider or LiveProvider()
        self._classifier = classifier or KeywordIntentClassifier()
        self._clock = clock
        self._default_mock = settings.use_mock_providers if default_mock is None else default_mock
        # Entries disappear once no coroutine holds or awaits the lock
        self._locks: weakref.WeakValueDictionary[str, asyncio.Lock] = (
            weakref.WeakValueDictionary()
        )

        self.jobs = JobRunner(store, clock)
        self.vision = VisionPipeline(store, clock)
        self.concepts = ConceptOrchestrator(store, self.jobs, self._mock, clock)
        self.sketches = SketchFinalizer(store, clock)
        self.ar_packs = ARPackBuilder(store, clock)

    # --- Internals ---

    def _lock(self, key: str) -> asyncio.Lock:
        return self._locks.setdefault(key, asyncio.Lock())

    async def _load(self, session_id: str) -> ConciergeSession:
        session = await self.store.get_session(session_id)
        if session is None:
            raise NotFound(f"Session {session_id} not found", details={"session_id": session_id})
        return session

    async def _save(self, session: ConciergeSession) -> None:
        session.readiness_score = readiness_score(session.design_brief)
        session.updated_at = self._clock()
        await self.store.put_session(session)

    async def _log_action(self, session_id: str, action_key: str, **payload: Any) -> None:
        await self.store.add_action_log(
            ActionLogEntry(
                session_id=session_id,
                action_key=action_key,
                payload=payload,
                created_at=self._clock(),
            )
        )

    async def policy_for(self, workspace_id: str) -> OfferPolicy:
        """Workspace policy; the defaults are persisted on first use."""
        policy = await self.store.get_policy(workspace_id)
        if policy is None:
            policy = OfferPolicy()
            await self.store.put_policy(workspace_id, policy)
        return policy

    async def provider_for(self, workspace_id: str) -> DesignProvider:
        provider = select_provider(
            await self.store.list_flags(workspace_id),
            mock=self._mock,
            live=self._live,
            default_mock=self._default_mock,
        )
        logger.debug("provider_selected", workspace_id=workspace_id, provider=provider.name)
        return provider

    async def _decide(self, session: ConciergeSession) -> tuple[OfferDecision, OfferPolicy]:
        policy = await self.policy_for(session.workspace_id)
        return evaluate_session(session, policy, self._clock()), policy

    async def _view(self, session: ConciergeSession) -> SessionView:
        decision, policy = await self._decide(session)
        return SessionView(
            session=session,
            decision=decision,
            actions=build_action_cards(session.design_brief, decision, policy),
        )

    def _start_brief(self, session: ConciergeSession) -> None:
        if session.stage == "discovery":
            advance(session, "brief_started")

    async def _require_variant(self, session: ConciergeSession, variant_id: str) -> ConceptVariant:
        variant = await self.store.get_variant(variant_id)
        if variant is None or variant.session_id != session.id:
            raise NotFound(f"Variant {variant_id} not found", details={"variant_id": variant_id})
        return variant

    async def _require_offer(self, session: ConciergeSession) -> None:
        """Server-side re-check of the offer gate before spending on generation."""
        decision, _ = await self._decide(session)
        if not decision.can_offer:
            logger.info(
                "concept_generation_refused",
                session_id=session.id,
                reason=decision.reason,
                missing=decision.missing,
            )
            raise OfferRefused(
                refusal_reason(decision),
                details={"reason": decision.reason, "missing": decision.missing},
            )

    async def _require_sketch(self, session: ConciergeSession, sketch_id: str) -> None:
        sketch = await self.store.get_sketch(sketch_id)
        if sketch is None or sketch.session_id != session.id:
            raise NotFound(f"Final sketch {sketch_id} not found", details={"sketch_id": sketch_id})

    # --- Sessions ---

    async def create_session(
        self,
        workspace_id: str,
        conversation_id: str,
        artist_id: str | None = None,
    ) -> SessionView:
        now = self._clock()
        session = ConciergeSession(
            workspace_id=workspace_id,
            conversation_id=conversation_id,
            artist_id=artist_id,
            created_at=now,
            updated_at=now,
        )
        await self.policy_for(workspace_id)
        await self._save(session)
        logger.info(
            "session_created",
            session_id=session.id,
            workspace_id=workspace_id,
            conversation_id=conversation_id,
        )
        return await self._view(session)

    async def get_session(self, session_id: str) -> SessionView:
        return await self._view(await self._load(session_id))

    async def reset_session(self, session_id: str) -> SessionView:
        """Back to discovery. Brief, intent flags, decline counters and offer cap are kept."""
        async with self._lock(session_id):
            session = await self._load(session_id)
            previous = session.stage
            reset_stage(session)
            await self._save(session)
            await self._log_action(session_id, "reset_session", previous_stage=previous)
            logger.info("session_reset", session_id=session_id, previous_stage=previous)
            return await self._view(session)

    # --- Brief & conversation ---

    async def update_brief(self, session_id: str, updates: dict[str, Any]) -> BriefUpdateResult:
        if not updates:
            raise InvalidRequest("updates must contain at least one brief field")
        derived = sorted(DERIVED_BRIEF_FIELDS.intersection(updates))
        if derived:
            raise InvalidRequest(
                "references_count and placement_photo_present are derived from uploaded images",
                details={"fields": derived},
            )
        known = DesignBrief.model_fields.keys() | _BRIEF_ALIASES.keys()
        unknown = sorted(key for key in updates if key not in known)
        if unknown:
            raise InvalidRequest(
                f"Unknown brief fields: {', '.join(unknown)}", details={"fields": unknown}
            )

        async with self._lock(session_id):
            session = await self._load(session_id)
            merged = session.design_brief.model_dump()
            for key, value in updates.items():
                key = _BRIEF_ALIASES.get(key, key)
                if key == "elements" and isinstance(value, dict):
                    merged["elements"] = {
                        **merged["elements"],
                        **{b: v for b, v in value.items() if b in _ELEMENT_BUCKETS},
                    }
                else:
                    merged[key] = value
            try:
                session.design_brief = DesignBrief.model_validate(merged)
            except ValidationError as exc:
                raise InvalidRequest(format_validation_errors(exc.errors())) from exc

            self._start_brief(session)
            await self._save(session)
            logger.info(
                "brief_updated",
                session_id=session_id,
                fields=sorted(updates),
                readiness=session.readiness_score,
            )
            view = await self._view(session)
            return BriefUpdateResult(**dict(view), readiness=session.readiness_score)

    async def process_message(
        self,
        session_id: str,
        message: str,
        attachments: list[Attachment] | None = None,
    ) -> MessageResult:
        attachments = attachments or []
        if not message.strip() and not attachments:
            raise InvalidRequest("message or attachments required")

        async with self._lock(session_id):
            session = await self._load(session_id)
            intent = self._classifier.classify(message)
            session.intent_flags = session.intent_flags.merged(intent)

            assets = []
            if attachments:
                provider = await self.provider_for(session.workspace_id)
                # Sequential so a repeated URL within one message is caught as a duplicate
                for attachment in attachments:
                    assets.append(await self.vision.ingest(session, attachment, provider))

            session.message_count += 1
            self._start_brief(session)
            stored = ConciergeMessage(
                session_id=session.id,
                content=message,
                attachments=attachments,
                intent_detected=intent,
                created_at=self._clock(),
            )
            await self.store.add_message(stored)
            await self._save(session)

            logger.info(
                "message_processed",
                session_id=session_id,
                intent=intent.model_dump(),
                attachments=len(attachments),
                accepted=sum(1 for a in assets if a.accepted),
                readiness=session.readiness_score,
            )
            view = await self._view(session)
            return MessageResult(
                **dict(view),
                message=stored,
                intent=intent,
                readiness=session.readiness_score,
                assets=assets,
                vision_processed=len(assets),
            )

    async def get_actions(self, session_id: str) -> list[ActionCard]:
        view = await self._view(await self._load(session_id))
        return view.actions

    async def can_offer_sketch(self, session_id: str) -> OfferDecision:
        decision, _ = await self._decide(await self._load(session_id))
        return decision

    async def decline_sketch_offer(self, session_id: str) -> DeclineResult:
        async with self._lock(session_id):
            session = await self._load(session_id)
            policy = await self.policy_for(session.workspace_id)
            apply_decline(session, policy, self._clock())
            await self._save(session)
            await self._log_action(
                session_id,
                "decline_sketch_offer",
                declined_count=session.sketch_offer_declined_count,
            )
            logger.info(
                "sketch_offer_declined",
                session_id=session_id,
                declined_count=session.sketch_offer_declined_count,
                max_offers_reached=session.max_offers_reached,
            )
            return DeclineResult(
                session=session,
                declined_count=session.sketch_offer_declined_count,
                cooldown_until=session.sketch_offer_cooldown_until,
                max_offers_reached=session.max_offers_reached,
            )

    async def record_booking_event(self, session_id: str, event: str) -> SessionView:
        if event not in BOOKING_EVENTS:
            raise InvalidRequest(
                f"Unknown booking event '{event}'",
                details={"allowed": list(BOOKING_EVENTS)},
            )
        async with self._lock(session_id):
            session = await self._load(session_id)
            previous = session.stage
            advance(session, event)
            await self._save(session)
            await self._log_action(session_id, event, previous_stage=previous, stage=session.stage)
            logger.info(
                "booking_event_recorded",
                session_id=session_id,
                booking_event=event,
                stage=session.stage,
            )
            return await self._view(session)

    # --- Generation ---

    async def generate_concept(self, session_id: str) -> ConceptResult:
        async with self._lock(session_id):
            session = await self._load(session_id)
            await self._require_offer(session)
            next_stage(session.stage, "concept_generated")

            provider = await self.provider_for(session.workspace_id)
            job = await self.jobs.create(
                session.id,
                "concept",
                {"brief": session.design_brief.model_dump(mode="json"), "provider": provider.name},
            )
            variants = await self._execute_concept(session, job, provider)
            await self._log_action(session_id, "generate_concept", job_id=job.id)
            return ConceptResult(job_id=job.id, variants=variants, session=session, job=job)

    async def _execute_concept(
        self,
        session: ConciergeSession,
        job: Job,
        provider: DesignProvider,
    ) -> list[ConceptVariant]:
        variants: list[ConceptVariant] = []

        async def work(job: Job) -> dict[str, Any]:
            variants.extend(await self.concepts.generate(job, session.design_brief, provider))
            return {
                "variant_ids": [v.id for v in variants],
                "providers": sorted({v.provider for v in variants}),
            }

        await self.jobs.run(job, work)
        advance(session, "concept_generated")
        await self._save(session)
        return variants

    async def list_variants(self, session_id: str) -> list[ConceptVariant]:
        await self._load(session_id)
        return await self.store.list_variants(session_id)

    async def finalize_sketch(self, session_id: str, variant_id: str) -> SketchResult:
        async with self._lock(session_id):
            session = await self._load(session_id)
            next_stage(session.stage, "sketch_finalized")
            await self._require_variant(session, variant_id)

            provider = await self.provider_for(session.workspace_id)
            job = await self.jobs.create(session.id, "sketch", {"variant_id": variant_id})
            sketch = await self._execute_sketch(session, job, provider)
            await self._log_action(
                session_id, "finalize_sketch", sketch_id=sketch.id, job_id=job.id
            )
            return SketchResult(
                sketch_id=sketch.id,
                outputs=sketch.outputs,
                session=session,
                job=job,
                sketch=sketch,
            )

    async def _execute_sketch(
        self,
        session: ConciergeSession,
        job: Job,
        provider: DesignProvider,
    ) -> FinalSketch:
        result: dict[str, Any] = {}

        async def work(job: Job) -> dict[str, Any]:
            sketch = await self.sketches.finalize(session, job.inputs["variant_id"], provider)
            result["sketch"] = sketch
            return {"sketch_id": sketch.id, **sketch.outputs.model_dump()}

        await self.jobs.run(job, work)
        advance(session, "sketch_finalized")
        await self._save(session)
        return result["sketch"]

    async def build_ar_pack(self, session_id: str, sketch_id: str) -> ARPackResult:
        async with self._lock(session_id):
            session = await self._load(session_id)
            require_placement_photo(session)
            await self._require_sketch(session, sketch_id)

            provider = await self.provider_for(session.workspace_id)
            job = await self.jobs.create(session.id, "ar_pack", {"sketch_id": sketch_id})
            pack = await self._execute_ar_pack(session, job, provider)
            await self._log_action(session_id, "build_ar_pack", pack_id=pack.id, job_id=job.id)
            return ARPackResult(
                pack_id=pack.id, assets=pack.assets, session=session, job=job, ar_pack=pack
            )

    async def _execute_ar_pack(
        self,
        session: ConciergeSession,
        job: Job,
        provider: DesignProvider,
    ) -> ARPack:
        result: dict[str, Any] = {}

        async def work(job: Job) -> dict[str, Any]:
            pack = await self.ar_packs.build(session, job.inputs["sketch_id"], provider)
            result["pack"] = pack
            return {"pack_id": pack.id, **pack.assets.model_dump(mode="json")}

        await self.jobs.run(job, work)
        return result["pack"]

    # --- Workspace configuration ---

    async def set_feature_flag(
        self,
        workspace_id: str,
        key: str,
        enabled: bool,
        config: dict[str, Any] | None = None,
    ) -> FeatureFlag:
        flag = FeatureFlag(
            workspace_id=workspace_id,
            key=key,
            enabled=enabled,
            config=config or {},
            updated_at=self._clock(),
        )
        await self.store.put_flag(flag)
        logger.info("feature_flag_set", workspace_id=workspace_id, key=key, enabled=enabled)
        return flag

    async def get_feature_flags(self, workspace_id: str) -> list[FeatureFlag]:
        return await self.store.list_flags(workspace_id)

    async def update_offer_policy(
        self,
        workspace_id: str,
        policy: dict[str, Any] | None = None,
        preset: str | None = None,
    ) -> OfferPolicy:
        if policy is None and preset is None:
            raise InvalidRequest("policy or preset required")
        if preset is not None and preset not in POLICY_PRESETS:
            raise InvalidRequest(
                f"Unknown policy preset '{preset}'",
                details={"allowed": sorted(POLICY_PRESETS)},
            )

        async with self._lock(f"workspace:{workspace_id}"):
            merged = (await self.policy_for(workspace_id)).model_dump()
            if preset is not None:
                merged.update(POLICY_PRESETS[preset], preset=preset)
            if policy:
                if preset is None:
                    # Hand-tuned values no longer match any preset
                    merged["preset"] = None
                merged.update(policy)
            try:
                updated = OfferPolicy.model_validate(merged)
            except ValidationError as exc:
                raise InvalidRequest(format_validation_errors(exc.errors())) from exc
            await self.store.put_policy(workspace_id, updated)
            logger.info("offer_policy_updated", workspace_id=workspace_id, preset=updated.preset)
            return updated

    async def get_offer_policy(self, workspace_id: str) -> OfferPolicy:
        return await self.policy_for(workspace_id)

    # --- Jobs ---

    async def get_job_errors(self, session_id: str, limit: int = 20) -> list[JobError]:
        await self._load(session_id)
        return await self.store.list_job_errors(session_id, limit)

    async def retry_job(self, job_id: str) -> RetryResult:
        job = await self.store.get_job(job_id)
        if job is None:
            raise NotFound(f"Job {job_id} not found", details={"job_id": job_id})

        async with self._lock(job.session_id):
            job = await self.store.get_job(job_id)
            if job.status != "failed":
                raise PreconditionFailed(
                    f"Only failed jobs can be retried (job is {job.status})",
                    code="job_not_failed",
                    details={"job_id": job_id, "status": job.status},
                )
            if job.retry_count >= job.max_retries:
                raise PreconditionFailed(
                    "Max retries exceeded",
                    code="max_retries_exceeded",
                    details={"job_id": job_id, "max_retries": job.max_retries},
                )

            session = await self._load(job.session_id)
            if job.job_type == "concept":
                await self._require_offer(session)
                next_stage(session.stage, "concept_generated")
            elif job.job_type == "sketch":
                next_stage(session.stage, "sketch_finalized")
            else:
                require_placement_photo(session)

            job.status = "queued"
            job.retry_count += 1
            job.error_code = None
            job.error_message = None
            job.updated_at = self._clock()
            await self.store.put_job(job)
            await self._log_action(
                job.session_id, "retry_job", job_id=job.id, retry_count=job.retry_count
            )
            logger.info(
                "job_retry",
                job_id=job.id,
                job_type=job.job_type,
                session_id=job.session_id,
                retry_count=job.retry_count,
            )

            provider = await self.provider_for(session.workspace_id)
            result = RetryResult(job=job, retry_count=job.retry_count)
            if job.job_type == "concept":
                result.variants = await self._execute_concept(session, job, provider)
            elif job.job_type == "sketch":
                result.sketch = await self._execute_sketch(session, job, provider)
            else:
                result.ar_pack = await self._execute_ar_pack(session, job, provider)
            result.job = job
            return result
