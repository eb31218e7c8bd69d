"""Storage protocol for the compiler.

The compiler never talks to a database directly; it is handed a Store.
``InMemoryStore`` is the per-process default, ``SqlStore`` persists to any
SQLAlchemy database through its asyncio engine. Every method is a
coroutine.
"""

from __future__ import annotations

from typing import Protocol

from concierge.models.contracts import (
    ActionLogEntry,
    ARPack,
    ConceptVariant,
    ConciergeMessage,
    ConciergeSession,
    FeatureFlag,
    FinalSketch,
    Job,
    JobError,
    OfferPolicy,
    VisionAsset,
    VisionExtraction,
)


class Store(Protocol):
    # Sessions
    async def put_session(self, session: ConciergeSession) -> None: ...
    async def get_session(self, session_id: str) -> ConciergeSession | None: ...

    # Workspace configuration
    async def get_policy(self, workspace_id: str) -> OfferPolicy | None: ...
    async def put_policy(self, workspace_id: str, policy: OfferPolicy) -> None: ...
    async def list_flags(self, workspace_id: str) -> list[FeatureFlag]: ...
    async def put_flag(self, flag: FeatureFlag) -> None: ...

    # Vision
    async def put_asset(self, asset: VisionAsset) -> None: ...
    async def list_assets(self, session_id: str) -> list[VisionAsset]: ...
    async def put_extraction(self, extraction: VisionExtraction) -> None: ...
    async def get_extraction(self, asset_id: str) -> VisionExtraction | None: ...

    # Conversation + audit
    async def add_message(self, message: ConciergeMessage) -> None: ...
    async def list_messages(self, session_id: str) -> list[ConciergeMessage]: ...
    async def add_action_log(self, entry: ActionLogEntry) -> None: ...
    async def list_action_log(self, session_id: str) -> list[ActionLogEntry]: ...

    # Generation artifacts
    async def put_variant(self, variant: ConceptVariant) -> None: ...
    async def get_variant(self, variant_id: str) -> ConceptVariant | None: ...
    async def list_variants(self, session_id: str) -> list[ConceptVariant]: ...
    async def put_sketch(self, sketch: FinalSketch) -> None: ...
    async def get_sketch(self, sketch_id: str) -> FinalSketch | None: ...
    async def put_ar_pack(self, pack: ARPack) -> None: ...
    async def list_ar_packs(self, session_id: str) -> list[ARPack]: ...

    # Jobs
    async def put_job(self, job: Job) -> None: ...
    async def get_job(self, job_id: str) -> Job | None: ...
    async def add_job_error(self, error: JobError) -> None: ...
    async def list_job_errors(self, session_id: str, limit: int = 20) -> list[JobError]: ...
