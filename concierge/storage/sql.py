"""SQLAlchemy-backed store on the asyncio engine.

Plain ``postgresql://`` and ``sqlite://`` URLs are switched to the asyncpg
and aiosqlite drivers. Tables are created by ``init()`` on start-up; there
is no migration step.
"""

from __future__ import annotations

from typing import Any, TypeVar

import structlog
from pydantic import BaseModel
from sqlalchemy import select, text
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

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
from concierge.models.db import (
    ActionLogRow,
    ARPackRow,
    Base,
    ConceptVariantRow,
    FeatureFlagRow,
    FinalSketchRow,
    JobErrorRow,
    JobRow,
    MessageRow,
    OfferPolicyRow,
    SessionRow,
    VisionAssetRow,
    VisionExtractionRow,
)

logger = structlog.get_logger()

M = TypeVar("M", bound=BaseModel)


def _dump(model: BaseModel) -> dict[str, Any]:
    return model.model_dump(mode="json")


def async_database_url(url: str) -> str:
    """Pick the asyncio driver for plain PostgreSQL and SQLite URLs."""
    if url.startswith("postgresql://"):
        return url.replace("postgresql://", "postgresql+asyncpg://", 1)
    if url.startswith("sqlite://"):
        return url.replace("sqlite://", "sqlite+aiosqlite://", 1)
    return url


class SqlStore:
    def __init__(self, database_url: str, *, echo: bool = False) -> None:
        url = async_database_url(database_url)
        kwargs: dict[str, Any] = {"echo": echo}
        if "sqlite" in url:
            if url.endswith("://") or ":memory:" in url:
                # One shared connection, or every checkout sees an empty database
                kwargs["poolclass"] = StaticPool
        else:
            kwargs["pool_pre_ping"] = True
        self._engine = create_async_engine(url, **kwargs)
        self._sessions = async_sessionmaker(
            bind=self._engine, class_=AsyncSession, expire_on_commit=False
        )

    async def init(self) -> None:
        """Create all tables. Called on startup."""
        async with self._engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("sql_store_ready", dialect=self.dialect)

    async def close(self) -> None:
        await self._engine.dispose()

    async def ping(self) -> None:
        """Round-trip ``SELECT 1``; raises on connection failure."""
        async with self._engine.connect() as conn:
            await conn.execute(text("SELECT 1"))

    @property
    def dialect(self) -> str:
        return self._engine.dialect.name

    # --- helpers ---

    async def _upsert(self, row_cls: type[Base], where: dict[str, Any], **values: Any) -> None:
        async with self._sessions.begin() as db:
            result = await db.execute(select(row_cls).filter_by(**where))
            row = result.scalar_one_or_none()
            if row is None:
                db.add(row_cls(**where, **values))
            else:
                for name, value in values.items():
                    setattr(row, name, value)

    async def _insert(self, row: Base) -> None:
        async with self._sessions.begin() as db:
            db.add(row)

    async def _get(self, row_cls: type[Base], model: type[M], **where: Any) -> M | None:
        async with self._sessions() as db:
            result = await db.execute(select(row_cls).filter_by(**where))
            row = result.scalar_one_or_none()
            return model.model_validate(row.payload) if row is not None else None

    async def _list(self, row_cls: Any, model: type[M], order_by: Any, **where: Any) -> list[M]:
        async with self._sessions() as db:
            result = await db.execute(select(row_cls).filter_by(**where).order_by(order_by))
            return [model.model_validate(row.payload) for row in result.scalars()]

    # --- Sessions ---

    async def put_session(self, session: ConciergeSession) -> None:
        await self._upsert(
            SessionRow,
            {"id": session.id},
            workspace_id=session.workspace_id,
            conversation_id=session.conversation_id,
            stage=session.stage,
            payload=_dump(session),
        )

    async def get_session(self, session_id: str) -> ConciergeSession | None:
        return await self._get(SessionRow, ConciergeSession, id=session_id)

    # --- Workspace configuration ---

    async def get_policy(self, workspace_id: str) -> OfferPolicy | None:
        return await self._get(OfferPolicyRow, OfferPolicy, workspace_id=workspace_id)

    async def put_policy(self, workspace_id: str, policy: OfferPolicy) -> None:
        await self._upsert(OfferPolicyRow, {"workspace_id": workspace_id}, payload=_dump(policy))

    async def list_flags(self, workspace_id: str) -> list[FeatureFlag]:
        return await self._list(
            FeatureFlagRow, FeatureFlag, FeatureFlagRow.key, workspace_id=workspace_id
        )

    async def put_flag(self, flag: FeatureFlag) -> None:
        await self._upsert(
            FeatureFlagRow,
            {"workspace_id": flag.workspace_id, "key": flag.key},
            enabled=flag.enabled,
            payload=_dump(flag),
        )

    # --- Vision ---

    async def put_asset(self, asset: VisionAsset) -> None:
        await self._upsert(
            VisionAssetRow,
            {"id": asset.id},
            session_id=asset.session_id,
            asset_type=asset.asset_type,
            payload=_dump(asset),
        )

    async def list_assets(self, session_id: str) -> list[VisionAsset]:
        return await self._list(
            VisionAssetRow, VisionAsset, VisionAssetRow.seq, session_id=session_id
        )

    async def put_extraction(self, extraction: VisionExtraction) -> None:
        await self._upsert(
            VisionExtractionRow,
            {"asset_id": extraction.asset_id},
            session_id=extraction.session_id,
            status=extraction.status,
            payload=_dump(extraction),
        )

    async def get_extraction(self, asset_id: str) -> VisionExtraction | None:
        return await self._get(VisionExtractionRow, VisionExtraction, asset_id=asset_id)

    # --- Conversation + audit ---

    async def add_message(self, message: ConciergeMessage) -> None:
        await self._insert(
            MessageRow(id=message.id, session_id=message.session_id, payload=_dump(message))
        )

    async def list_messages(self, session_id: str) -> list[ConciergeMessage]:
        return await self._list(
            MessageRow, ConciergeMessage, MessageRow.seq, session_id=session_id
        )

    async def add_action_log(self, entry: ActionLogEntry) -> None:
        await self._insert(
            ActionLogRow(
                id=entry.id,
                session_id=entry.session_id,
                action_key=entry.action_key,
                payload=_dump(entry),
            )
        )

    async def list_action_log(self, session_id: str) -> list[ActionLogEntry]:
        return await self._list(
            ActionLogRow, ActionLogEntry, ActionLogRow.seq, session_id=session_id
        )

    # --- Generation artifacts ---

    async def put_variant(self, variant: ConceptVariant) -> None:
        await self._upsert(
            ConceptVariantRow,
            {"id": variant.id},
            session_id=variant.session_id,
            chosen=variant.chosen,
            payload=_dump(variant),
        )

    async def get_variant(self, variant_id: str) -> ConceptVariant | None:
        return await self._get(ConceptVariantRow, ConceptVariant, id=variant_id)

    async def list_variants(self, session_id: str) -> list[ConceptVariant]:
        return await self._list(
            ConceptVariantRow, ConceptVariant, ConceptVariantRow.seq, session_id=session_id
        )

    async def put_sketch(self, sketch: FinalSketch) -> None:
        await self._upsert(
            FinalSketchRow,
            {"id": sketch.id},
            session_id=sketch.session_id,
            chosen_variant_id=sketch.chosen_variant_id,
            payload=_dump(sketch),
        )

    async def get_sketch(self, sketch_id: str) -> FinalSketch | None:
        return await self._get(FinalSketchRow, FinalSketch, id=sketch_id)

    async def put_ar_pack(self, pack: ARPack) -> None:
        await self._upsert(
            ARPackRow,
            {"id": pack.id},
            session_id=pack.session_id,
            final_sketch_id=pack.final_sketch_id,
            payload=_dump(pack),
        )

    async def list_ar_packs(self, session_id: str) -> list[ARPack]:
        return await self._list(
            ARPackRow, ARPack, ARPackRow.seq, session_id=session_id
        )

    # --- Jobs ---

    async def put_job(self, job: Job) -> None:
        await self._upsert(
            JobRow,
            {"id": job.id},
            session_id=job.session_id,
            job_type=job.job_type,
            status=job.status,
            payload=_dump(job),
        )

    async def get_job(self, job_id: str) -> Job | None:
        return await self._get(JobRow, Job, id=job_id)

    async def add_job_error(self, error: JobError) -> None:
        await self._insert(
            JobErrorRow(
                id=error.id,
                job_id=error.job_id,
                session_id=error.session_id,
                code=error.code,
                payload=_dump(error),
            )
        )

    async def list_job_errors(self, session_id: str, limit: int = 20) -> list[JobError]:
        async with self._sessions() as db:
            result = await db.execute(
                select(JobErrorRow)
                .filter_by(session_id=session_id)
                .order_by(JobErrorRow.seq.desc())
                .limit(limit)
            )
            return [JobError.model_validate(row.payload) for row in result.scalars()]
