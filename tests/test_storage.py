"""Store contract tests, run against the in-memory and SQLAlchemy stores.

The SQL store runs on aiosqlite with an in-process database; Postgres-only column
types fall back to plain JSON there.
"""

from datetime import UTC, datetime

import pytest

from concierge.models.contracts import (
    ActionLogEntry,
    ARPack,
    ARPackAssets,
    ConceptScores,
    ConceptVariant,
    ConciergeMessage,
    ConciergeSession,
    FeatureFlag,
    FinalSketch,
    Job,
    JobError,
    OfferPolicy,
    SketchOutputs,
    VisionAsset,
    VisionExtraction,
)
from concierge.storage.memory import InMemoryStore
from concierge.storage.sql import SqlStore, async_database_url

NOW = datetime(2026, 3, 2, 15, 0, tzinfo=UTC)


@pytest.fixture(params=["memory", "sqlite"])
async def any_store(request):
    if request.param == "memory":
        yield InMemoryStore()
        return
    store = SqlStore("sqlite://")
    await store.init()
    yield store
    await store.close()


def _variant(session_id, idx, **overrides):
    fields = {
        "session_id": session_id,
        "job_id": "job-1",
        "idx": idx,
        "style": "fineline",
        "image_url": f"https://example.com/{idx}.png",
        "scores": ConceptScores(style_alignment=1, clarity=0.9, uniqueness=0.8, ar_fitness=0.95),
        "verdict": "pass",
        "rank": idx + 1,
        "provider": "mock",
        "model": "mock-v1",
    }
    fields.update(overrides)
    return ConceptVariant(**fields)


class TestSessions:
    @pytest.mark.asyncio
    async def test_round_trip(self, any_store):
        session = ConciergeSession(workspace_id="ws", conversation_id="conv", created_at=NOW)
        session.design_brief.style_tags = ["blackwork"]
        await any_store.put_session(session)

        loaded = await any_store.get_session(session.id)
        assert loaded == session

    @pytest.mark.asyncio
    async def test_missing_returns_none(self, any_store):
        assert await any_store.get_session("nope") is None

    @pytest.mark.asyncio
    async def test_put_overwrites(self, any_store):
        session = ConciergeSession(workspace_id="ws", conversation_id="conv")
        await any_store.put_session(session)
        session.stage = "brief_building"
        await any_store.put_session(session)
        assert (await any_store.get_session(session.id)).stage == "brief_building"

    @pytest.mark.asyncio
    async def test_returned_copy_is_detached(self, any_store):
        session = ConciergeSession(workspace_id="ws", conversation_id="conv")
        await any_store.put_session(session)
        loaded = await any_store.get_session(session.id)
        loaded.message_count = 99
        assert (await any_store.get_session(session.id)).message_count == 0


class TestWorkspaceConfig:
    @pytest.mark.asyncio
    async def test_policy_round_trip(self, any_store):
        assert await any_store.get_policy("ws") is None
        policy = OfferPolicy(preset="balanced", preview_offer_cooldown_minutes=15)
        await any_store.put_policy("ws", policy)
        assert await any_store.get_policy("ws") == policy

    @pytest.mark.asyncio
    async def test_flags_are_scoped_and_upserted(self, any_store):
        await any_store.put_flag(FeatureFlag(workspace_id="ws", key="b", enabled=True))
        await any_store.put_flag(FeatureFlag(workspace_id="ws", key="a", enabled=True))
        await any_store.put_flag(FeatureFlag(workspace_id="ws", key="a", enabled=False))
        await any_store.put_flag(FeatureFlag(workspace_id="other", key="a", enabled=True))

        flags = await any_store.list_flags("ws")
        assert [(f.key, f.enabled) for f in flags] == [("a", False), ("b", True)]


class TestVision:
    @pytest.mark.asyncio
    async def test_assets_listed_in_insertion_order(self, any_store):
        first = VisionAsset(session_id="s1", asset_type="reference_image", storage_url="u1")
        second = VisionAsset(session_id="s1", asset_type="placement_photo", storage_url="u2")
        await any_store.put_asset(first)
        await any_store.put_asset(second)
        other = VisionAsset(session_id="s2", asset_type="reference_image", storage_url="x")
        await any_store.put_asset(other)

        assert [a.id for a in await any_store.list_assets("s1")] == [first.id, second.id]

    @pytest.mark.asyncio
    async def test_extraction_keyed_by_asset(self, any_store):
        extraction = VisionExtraction(
            asset_id="a1", session_id="s1", status="done", body_part="forearm"
        )
        await any_store.put_extraction(extraction)
        assert (await any_store.get_extraction("a1")).body_part == "forearm"
        assert await any_store.get_extraction("a2") is None


class TestConversationAndAudit:
    @pytest.mark.asyncio
    async def test_messages_in_order(self, any_store):
        for text in ("one", "two"):
            await any_store.add_message(ConciergeMessage(session_id="s1", content=text))
        assert [m.content for m in await any_store.list_messages("s1")] == ["one", "two"]

    @pytest.mark.asyncio
    async def test_action_log(self, any_store):
        await any_store.add_action_log(
            ActionLogEntry(session_id="s1", action_key="decline_sketch_offer", payload={"n": 1})
        )
        entries = await any_store.list_action_log("s1")
        assert len(entries) == 1
        assert entries[0].payload == {"n": 1}


class TestArtifacts:
    @pytest.mark.asyncio
    async def test_variants(self, any_store):
        v0, v1 = _variant("s1", 0), _variant("s1", 1)
        await any_store.put_variant(v0)
        await any_store.put_variant(v1)
        v1.chosen = True
        await any_store.put_variant(v1)

        assert [v.idx for v in await any_store.list_variants("s1")] == [0, 1]
        assert (await any_store.get_variant(v1.id)).chosen is True

    @pytest.mark.asyncio
    async def test_sketch_and_ar_pack(self, any_store):
        sketch = FinalSketch(
            session_id="s1",
            chosen_variant_id="v1",
            outputs=SketchOutputs(lineart_url="l", overlay_url="o", svg_url="s"),
        )
        await any_store.put_sketch(sketch)
        pack = ARPack(
            session_id="s1",
            final_sketch_id=sketch.id,
            assets=ARPackAssets(overlay_url="o", shader_params={"opacity": 0.85}),
        )
        await any_store.put_ar_pack(pack)

        assert await any_store.get_sketch(sketch.id) == sketch
        assert await any_store.list_ar_packs("s1") == [pack]


class TestJobs:
    @pytest.mark.asyncio
    async def test_job_round_trip(self, any_store):
        job = Job(session_id="s1", job_type="concept", inputs={"provider": "mock"})
        await any_store.put_job(job)
        job.status = "failed"
        await any_store.put_job(job)
        assert (await any_store.get_job(job.id)).status == "failed"

    @pytest.mark.asyncio
    async def test_job_errors_newest_first_and_limited(self, any_store):
        for attempt in range(1, 4):
            await any_store.add_job_error(
                JobError(
                    job_id="j1",
                    session_id="s1",
                    job_type="concept",
                    attempt=attempt,
                    code="provider_timeout",
                    message=f"attempt {attempt}",
                )
            )
        errors = await any_store.list_job_errors("s1", limit=2)
        assert [e.attempt for e in errors] == [3, 2]
        assert await any_store.list_job_errors("s2") == []


class TestSqlStore:
    @pytest.mark.asyncio
    async def test_ping_and_dialect(self):
        store = SqlStore("sqlite://")
        await store.init()
        try:
            await store.ping()
            assert store.dialect == "sqlite"
        finally:
            await store.close()

    @pytest.mark.parametrize(
        "url, expected",
        [
            ("postgresql://u:p@db:5432/studio", "postgresql+asyncpg://u:p@db:5432/studio"),
            ("sqlite:///tmp/studio.db", "sqlite+aiosqlite:///tmp/studio.db"),
            ("sqlite://", "sqlite+aiosqlite://"),
            ("postgresql+asyncpg://db/studio", "postgresql+asyncpg://db/studio"),
        ],
    )
    def test_async_driver_selected(self, url, expected):
        assert async_database_url(url) == expected
