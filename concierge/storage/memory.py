"""In-memory store — the default per-process registry.

Each instance is isolated, so tests can run many stores side by side.
Models are copied on the way in and out; callers never share references
with the store.
"""

from __future__ import annotations

from typing import TypeVar

from pydantic import BaseModel

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

M = TypeVar("M", bound=BaseModel)


class InMemoryStore:
    def __init__(self) -> None:
        self._sessions: dict[str, ConciergeSession] = {}
        self._policies: dict[str, OfferPolicy] = {}
        self._flags: dict[tuple[str, str], FeatureFlag] = {}
        self._assets: dict[str, VisionAsset] = {}
        self._extractions: dict[str, VisionExtraction] = {}  # keyed by asset_id
        self._messages: list[ConciergeMessage] = []
        self._action_log: list[ActionLogEntry] = []
        self._variants: dict[str, ConceptVariant] = {}
        self._sketches: dict[str, FinalSketch] = {}
        self._ar_packs: dict[str, ARPack] = {}
        self._jobs: dict[str, Job] = {}
        self._job_errors: list[JobError] = []

    @staticmethod
    def _copy(model: M | None) -> M | None:
        return model.model_copy(deep=True) if model is not None else None

    # --- Sessions ---

    async def put_session(self, session: ConciergeSession) -> None:
        self._sessions[session.id] = session.model_copy(deep=True)

    async def get_session(self, session_id: str) -> ConciergeSession | None:
        return self._copy(self._sessions.get(session_id))

    # --- Workspace configuration ---

    async def get_policy(self, workspace_id: str) -> OfferPolicy | None:
        return self._copy(self._policies.get(workspace_id))

    async def put_policy(self, workspace_id: str, policy: OfferPolicy) -> None:
        self._policies[workspace_id] = policy.model_copy(deep=True)

    async def list_flags(self, workspace_id: str) -> list[FeatureFlag]:
        flags = [f.model_copy() for (ws, _), f in self._flags.items() if ws == workspace_id]
        return sorted(flags, key=lambda f: f.key)

    async def put_flag(self, flag: FeatureFlag) -> None:
        self._flags[(flag.workspace_id, flag.key)] = flag.model_copy(deep=True)

    # --- Vision ---

    async def put_asset(self, asset: VisionAsset) -> None:
        self._assets[asset.id] = asset.model_copy(deep=True)

    async def list_assets(self, session_id: str) -> list[VisionAsset]:
        return [a.model_copy() for a in self._assets.values() if a.session_id == session_id]

    async def put_extraction(self, extraction: VisionExtraction) -> None:
        self._extractions[extraction.asset_id] = extraction.model_copy(deep=True)

    async def get_extraction(self, asset_id: str) -> VisionExtraction | None:
        return self._copy(self._extractions.get(asset_id))

    # --- Conversation + audit ---

    async def add_message(self, message: ConciergeMessage) -> None:
        self._messages.append(message.model_copy(deep=True))

    async def list_messages(self, session_id: str) -> list[ConciergeMessage]:
        return [m.model_copy() for m in self._messages if m.session_id == session_id]

    async def add_action_log(self, entry: ActionLogEntry) -> None:
        self._action_log.append(entry.model_copy(deep=True))

    async def list_action_log(self, session_id: str) -> list[ActionLogEntry]:
        return [e.model_copy() for e in self._action_log if e.session_id == session_id]

    # --- Generation artifacts ---

    async def put_variant(self, variant: ConceptVariant) -> None:
        self._variants[variant.id] = variant.model_copy(deep=True)

    async def get_variant(self, variant_id: str) -> ConceptVariant | None:
        return self._copy(self._variants.get(variant_id))

    async def list_variants(self, session_id: str) -> list[ConceptVariant]:
        return [v.model_copy() for v in self._variants.values() if v.session_id == session_id]

    async def put_sketch(self, sketch: FinalSketch) -> None:
        self._sketches[sketch.id] = sketch.model_copy(deep=True)

    async def get_sketch(self, sketch_id: str) -> FinalSketch | None:
        return self._copy(self._sketches.get(sketch_id))

    async def put_ar_pack(self, pack: ARPack) -> None:
        self._ar_packs[pack.id] = pack.model_copy(deep=True)

    async def list_ar_packs(self, session_id: str) -> list[ARPack]:
        return [p.model_copy() for p in self._ar_packs.values() if p.session_id == session_id]

    # --- Jobs ---

    async def put_job(self, job: Job) -> None:
        self._jobs[job.id] = job.model_copy(deep=True)

    async def get_job(self, job_id: str) -> Job | None:
        return self._copy(self._jobs.get(job_id))

    async def add_job_error(self, error: JobError) -> None:
        self._job_errors.append(error.model_copy())

    async def list_job_errors(self, session_id: str, limit: int = 20) -> list[JobError]:
        errors = [e for e in self._job_errors if e.session_id == session_id]
        return [e.model_copy() for e in reversed(errors)][:limit]
