"""
Tests for the concept synthesis orchestrator.

Tests for mixer/orchestrator.py
"""

import itertools

import pytest

from conftest import tick
from mixer.errors import PrimaryGenerationError, ValidationError
from mixer.models import NEON_THEME, ConceptRecord, Enrichment, Lead
from mixer.orchestrator import (
    ConceptOrchestrator,
    EnrichmentCompletion,
    RunFailure,
    RunState,
)


async def _go_live(orch, gw, payloads, seed, index=-1):
    task = orch.start_run(*payloads)
    await tick()
    gw.resolve("concept", seed, index=index)
    return await task


class TestRunValidation:
    """Run requests missing a payload are rejected synchronously."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("missing", [0, 1, 2])
    async def test_missing_payload_rejected(self, fake_gateway, payloads, missing):
        orch = ConceptOrchestrator(fake_gateway)
        args = list(payloads)
        args[missing] = None

        with pytest.raises(ValidationError):
            orch.start_run(*args)

        assert orch.state is RunState.IDLE
        assert orch.run_id == 0
        assert fake_gateway.calls == {}

    @pytest.mark.asyncio
    async def test_rejection_keeps_live_run(self, fake_gateway, payloads, sample_seed):
        orch = ConceptOrchestrator(fake_gateway)
        record = await _go_live(orch, fake_gateway, payloads, sample_seed)

        with pytest.raises(ValidationError):
            orch.start_run(payloads[0], None, payloads[2])

        assert orch.state is RunState.LIVE
        assert orch.records.value is record


class TestPrimary:
    """Primary generation outcomes."""

    @pytest.mark.asyncio
    async def test_primary_publishes_before_dispatch(self, fake_gateway, payloads, sample_seed):
        orch = ConceptOrchestrator(fake_gateway)
        seen = []

        def on_record(record):
            if record is not None:
                dispatched = sum(len(fake_gateway.calls[k]) for k in ("illustration", "leads", "mood_board"))
                seen.append((record, dispatched))

        orch.records.subscribe(on_record)
        record = await _go_live(orch, fake_gateway, payloads, sample_seed)

        assert seen == [(record, 0)]
        assert record.illustration is None
        assert record.shopping_leads is None
        assert record.mood_board is None
        assert orch.themes.value == record.theme
        assert orch.state is RunState.LIVE
        assert orch.pending == frozenset(Enrichment)

    @pytest.mark.asyncio
    async def test_theme_published_after_record_and_before_dispatch(
        self, fake_gateway, payloads, sample_seed
    ):
        orch = ConceptOrchestrator(fake_gateway)
        events = []

        def dispatched():
            return sum(len(fake_gateway.calls[k]) for k in ("illustration", "leads", "mood_board"))

        def on_record(record):
            if record is not None:
                events.append(("record", dispatched()))

        def on_theme(theme):
            if theme != NEON_THEME:
                events.append(("theme", dispatched()))

        orch.records.subscribe(on_record, replay=False)
        orch.themes.subscribe(on_theme, replay=False)
        record = await _go_live(orch, fake_gateway, payloads, sample_seed)

        assert events == [("record", 0), ("theme", 0)]
        assert orch.themes.value == record.theme
        assert dispatched() == 3

    @pytest.mark.asyncio
    async def test_enrichments_dispatched_with_record_fields(self, fake_gateway, payloads, sample_seed):
        orch = ConceptOrchestrator(fake_gateway)
        record = await _go_live(orch, fake_gateway, payloads, sample_seed)

        assert fake_gateway.calls["illustration"][0][0] == (record.visual_prompt,)
        assert fake_gateway.calls["leads"][0][0] == ("Liquid Relic", ["chrome", "organic"])
        assert fake_gateway.calls["mood_board"][0][0] == ("Mercury Vault",)

    @pytest.mark.asyncio
    async def test_primary_failure_publishes_error_not_record(self, fake_gateway, payloads):
        orch = ConceptOrchestrator(fake_gateway)
        records = []
        orch.records.subscribe(records.append, replay=False)

        task = orch.start_run(*payloads)
        await tick()
        fake_gateway.fail("concept", PrimaryGenerationError("bad shape"))
        result = await task

        assert result is None
        assert records == []
        assert orch.state is RunState.FAILED
        assert orch.errors.value == RunFailure(run_id=1, message="bad shape")
        assert "illustration" not in fake_gateway.calls

    @pytest.mark.asyncio
    async def test_unexpected_primary_exception_is_terminal(self, fake_gateway, payloads):
        orch = ConceptOrchestrator(fake_gateway)
        task = orch.start_run(*payloads)
        await tick()
        fake_gateway.fail("concept", RuntimeError("boom"))

        assert await task is None
        assert orch.state is RunState.FAILED
        assert orch.errors.value.message == "boom"

    @pytest.mark.asyncio
    async def test_new_run_clears_previous_error(self, fake_gateway, payloads, sample_seed):
        orch = ConceptOrchestrator(fake_gateway)
        task = orch.start_run(*payloads)
        await tick()
        fake_gateway.fail("concept", PrimaryGenerationError("nope"))
        await task

        await _go_live(orch, fake_gateway, payloads, sample_seed)
        assert orch.errors.value is None
        assert orch.state is RunState.LIVE


class TestEnrichmentMerge:
    """Merging enrichment completions into the live record."""

    @pytest.mark.asyncio
    async def test_illustration_scenario(self, fake_gateway, payloads, sample_seed):
        orch = ConceptOrchestrator(fake_gateway)
        first = await _go_live(orch, fake_gateway, payloads, sample_seed)

        fake_gateway.resolve("illustration", b"image-x")
        await tick()

        current = orch.records.value
        assert current.illustration == b"image-x"
        assert current.shopping_leads is None
        assert current.mood_board is None
        # older snapshot untouched
        assert first.illustration is None
        assert orch.pending == {Enrichment.LEADS, Enrichment.MOOD_BOARD}

    @pytest.mark.asyncio
    async def test_merge_order_is_irrelevant(self, fake_gateway, payloads, sample_seed):
        values = {
            "illustration": b"img",
            "leads": [Lead(title="A", url="a"), Lead(title="B", url="b")],
            "mood_board": [b"t", b"a", b"p"],
        }
        finals = []
        for order in itertools.permutations(values):
            gw = type(fake_gateway)()
            orch = ConceptOrchestrator(gw)
            await _go_live(orch, gw, payloads, sample_seed)
            for kind in order:
                gw.resolve(kind, values[kind])
                await tick()
            assert orch.state is RunState.SETTLED
            finals.append(orch.records.value)

        assert all(f == finals[0] for f in finals)
        assert finals[0].shopping_leads == (Lead(title="A", url="a"), Lead(title="B", url="b"))

    @pytest.mark.asyncio
    async def test_leads_failure_settles_as_empty(self, fake_gateway, payloads, sample_seed):
        orch = ConceptOrchestrator(fake_gateway)
        await _go_live(orch, fake_gateway, payloads, sample_seed)

        fake_gateway.resolve("leads", [])
        await tick()

        assert orch.records.value.shopping_leads == ()

    @pytest.mark.asyncio
    async def test_raising_enrichment_degrades_to_empty(self, fake_gateway, payloads, sample_seed):
        orch = ConceptOrchestrator(fake_gateway)
        await _go_live(orch, fake_gateway, payloads, sample_seed)

        fake_gateway.fail("leads", RuntimeError("search down"))
        await tick()

        assert orch.records.value.shopping_leads == ()
        assert orch.state is RunState.LIVE

    @pytest.mark.asyncio
    async def test_leads_deduplicated_first_seen_wins(self, fake_gateway, payloads, sample_seed):
        orch = ConceptOrchestrator(fake_gateway)
        await _go_live(orch, fake_gateway, payloads, sample_seed)

        fake_gateway.resolve("leads", [
            Lead(title="first", url="a"),
            Lead(title="second", url="b"),
            Lead(title="third", url="a"),
        ])
        await tick()

        leads = orch.records.value.shopping_leads
        assert [lead.url for lead in leads] == ["a", "b"]
        assert leads[0].title == "first"

    @pytest.mark.asyncio
    async def test_absent_illustration_and_empty_board_leave_fields_unset(
        self, fake_gateway, payloads, sample_seed
    ):
        orch = ConceptOrchestrator(fake_gateway)
        live = await _go_live(orch, fake_gateway, payloads, sample_seed)
        published = []
        orch.records.subscribe(published.append, replay=False)

        fake_gateway.resolve("illustration", None)
        fake_gateway.resolve("mood_board", [])
        await tick()

        assert published == []
        assert orch.records.value is live
        assert orch.pending == {Enrichment.LEADS}

        fake_gateway.resolve("leads", [])
        await tick()
        assert orch.state is RunState.SETTLED
        assert orch.records.value.illustration is None
        assert orch.records.value.mood_board is None

    @pytest.mark.asyncio
    async def test_duplicate_delivery_is_idempotent(self, fake_gateway, payloads, sample_seed):
        orch = ConceptOrchestrator(fake_gateway)
        await _go_live(orch, fake_gateway, payloads, sample_seed)

        first = EnrichmentCompletion(run_id=1, kind=Enrichment.ILLUSTRATION, value=b"one")
        second = EnrichmentCompletion(run_id=1, kind=Enrichment.ILLUSTRATION, value=b"two")

        assert orch.apply_completion(first) is True
        snapshot = orch.records.value
        count = orch.records.publish_count
        assert orch.apply_completion(first) is False
        assert orch.apply_completion(second) is False

        assert orch.records.value is snapshot
        assert orch.records.value.illustration == b"one"
        assert orch.records.publish_count == count

    @pytest.mark.asyncio
    async def test_wait_settled_returns_final_record(self, fake_gateway, payloads, sample_seed):
        orch = ConceptOrchestrator(fake_gateway)
        await _go_live(orch, fake_gateway, payloads, sample_seed)

        fake_gateway.resolve("mood_board", [b"t"])
        fake_gateway.resolve("illustration", b"img")
        fake_gateway.resolve("leads", [Lead(url="u")])
        final = await orch.wait_settled()

        assert orch.state is RunState.SETTLED
        assert final.mood_board == (b"t",)
        assert final.illustration == b"img"
        assert final.shopping_leads == (Lead(url="u"),)


class TestSupersede:
    """Starting a new run isolates it from the previous one."""

    @pytest.mark.asyncio
    async def test_stale_enrichments_dropped(self, fake_gateway, payloads, sample_seed):
        orch = ConceptOrchestrator(fake_gateway)
        await _go_live(orch, fake_gateway, payloads, sample_seed, index=0)

        seed_b = sample_seed.model_copy(update={"concept_name": "Second Skin"})
        record_b = await _go_live(orch, fake_gateway, payloads, seed_b, index=1)
        published = []
        orch.records.subscribe(published.append, replay=False)

        # run A's enrichments land late
        fake_gateway.resolve("illustration", b"stale", index=0)
        fake_gateway.resolve("leads", [Lead(url="stale")], index=0)
        fake_gateway.resolve("mood_board", [b"stale"], index=0)
        await tick()

        assert published == []
        assert orch.records.value is record_b
        assert record_b.name == "Second Skin"
        assert orch.pending == frozenset(Enrichment)

    @pytest.mark.asyncio
    async def test_supersede_while_primary_pending(self, fake_gateway, payloads, sample_seed):
        orch = ConceptOrchestrator(fake_gateway)
        task_a = orch.start_run(*payloads)
        await tick()
        task_b = orch.start_run(*payloads)
        await tick()

        seed_b = sample_seed.model_copy(update={"concept_name": "Run B"})
        fake_gateway.resolve("concept", seed_b, index=1)
        record_b = await task_b
        fake_gateway.resolve("concept", sample_seed, index=0)

        assert await task_a is None
        assert orch.records.value is record_b
        assert len(fake_gateway.calls["illustration"]) == 1

    @pytest.mark.asyncio
    async def test_stale_primary_failure_ignored(self, fake_gateway, payloads, sample_seed):
        orch = ConceptOrchestrator(fake_gateway)
        task_a = orch.start_run(*payloads)
        await tick()
        record_b = await _go_live(orch, fake_gateway, payloads, sample_seed, index=1)

        fake_gateway.fail("concept", PrimaryGenerationError("late"), index=0)
        await task_a

        assert orch.state is RunState.LIVE
        assert orch.errors.value is None
        assert orch.records.value is record_b

    @pytest.mark.asyncio
    async def test_supersede_clears_active_slot_and_theme(self, fake_gateway, payloads, sample_seed):
        orch = ConceptOrchestrator(fake_gateway)
        await _go_live(orch, fake_gateway, payloads, sample_seed)
        assert orch.themes.value != NEON_THEME

        orch.start_run(*payloads)

        assert orch.state is RunState.PRIMARY_PENDING
        assert orch.records.value is None
        assert orch.themes.value == NEON_THEME
        assert orch.pending == frozenset()

    @pytest.mark.asyncio
    async def test_snapshot(self, fake_gateway, payloads, sample_seed):
        orch = ConceptOrchestrator(fake_gateway)
        record = await _go_live(orch, fake_gateway, payloads, sample_seed)

        snap = orch.snapshot()
        assert snap.run_id == 1
        assert snap.state is RunState.LIVE
        assert snap.record is record
        assert snap.theme == record.theme
        assert snap.error is None


class TestDirected:
    """Directed generation requests."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("directive", ["", "   "])
    async def test_empty_directive_rejected(self, fake_gateway, payloads, directive):
        orch = ConceptOrchestrator(fake_gateway)
        with pytest.raises(ValidationError):
            orch.start_directed(directive, payloads[0])

    @pytest.mark.asyncio
    async def test_missing_reference_rejected(self, fake_gateway):
        orch = ConceptOrchestrator(fake_gateway)
        with pytest.raises(ValidationError):
            orch.start_directed("liquid chrome armor", None)

    @pytest.mark.asyncio
    async def test_too_many_extras_rejected(self, fake_gateway, payloads):
        orch = ConceptOrchestrator(fake_gateway)
        with pytest.raises(ValidationError):
            orch.start_directed("armor", payloads[0], [payloads[1], payloads[2], payloads[0]])

    @pytest.mark.asyncio
    async def test_directed_passes_references(self, fake_gateway, payloads):
        orch = ConceptOrchestrator(fake_gateway)
        task = orch.start_directed("  liquid chrome armor ", payloads[0], [None, payloads[2]])
        await tick()
        fake_gateway.resolve("directed", b"vision")

        assert await task == b"vision"
        args = fake_gateway.calls["directed"][0][0]
        assert args == ("liquid chrome armor", [payloads[0], payloads[2]])
        assert orch.state is RunState.IDLE

    @pytest.mark.asyncio
    async def test_directed_accepts_coroutine_gateway(self, payloads):
        class AsyncGateway:
            async def synthesize_directed(self, directive, references):
                return f"{directive}:{len(references)}".encode()

        orch = ConceptOrchestrator(AsyncGateway())
        task = orch.start_directed("armor", payloads[0], [payloads[1]])

        assert await task == b"armor:2"


class TestRecordMerge:
    """Write-once merge helpers on ConceptRecord."""

    def test_merge_returns_self_when_already_set(self, sample_seed):
        record = ConceptRecord.from_seed(sample_seed).with_illustration(b"a")
        assert record.with_illustration(b"b") is record
        assert record.merge(Enrichment.ILLUSTRATION, b"b").illustration == b"a"

    def test_design_tags_keep_order_and_duplicates(self, sample_seed):
        seed = sample_seed.model_copy(update={"design_dna_tags": ["chrome", "organic", "chrome"]})
        record = ConceptRecord.from_seed(seed)
        assert record.design_tags == ("chrome", "organic", "chrome")
