"""End-to-end tests for the analysis pipeline with a scripted inference step."""

import asyncio
import sqlite3
from datetime import date

import pytest
import pytest_asyncio

from align_engine.core.analysis_manager import AnalysisManager
from align_engine.models import ChatMessage, RunState

DAY = date(2026, 3, 10)


class ScriptedInfer:
    """Stands in for the LLM: returns queued payloads and records calls."""

    def __init__(self, *payloads):
        self.payloads = list(payloads)
        self.calls = []

    async def __call__(self, text, previous):
        self.calls.append((text, dict(previous)))
        payload = self.payloads.pop(0) if self.payloads else {}
        if isinstance(payload, Exception):
            raise payload
        return payload


@pytest.fixture
def infer():
    return ScriptedInfer()


@pytest_asyncio.fixture
async def manager(tmp_path, infer):
    m = AnalysisManager(data_dir=tmp_path, infer=infer)
    await m.initialize()
    yield m
    await m.close()


async def _seed(manager, message_id="m1", role="user", content="Ran for 30 minutes",
                timestamp="2026-03-10T09:00:00+00:00"):
    await manager.sqlite.save_message(
        ChatMessage(id=message_id, role=role, content=content, timestamp=timestamp)
    )


@pytest.mark.asyncio
async def test_first_message_scores_from_empty_history(manager, infer):
    infer.payloads = [{"training": 30}]
    await _seed(manager)

    result = await manager.process_message("m1")

    assert result.state == RunState.DONE
    assert result.day == DAY
    assert result.resolved["training"] == 30.0
    assert result.resolved["sleep"] == 0.0
    assert set(result.resolved) == set(manager.registry.ids)

    snap = result.snapshot
    assert snap.scores["training"] == pytest.approx(1 / 7)
    assert snap.scores["boost_energy"] == pytest.approx(1 / 28)
    assert snap.display_score == 1
    # improve_finances and nurture_home tie at 0; fixed order decides
    assert snap.priority == "improve_finances"

    stored = await manager.sqlite.get_snapshot(DAY)
    assert stored.display_score == 1
    assert stored.scores["training"] == pytest.approx(1 / 7)
    msg = await manager.sqlite.get_message("m1")
    assert msg.processed is True


@pytest.mark.asyncio
async def test_transitions_in_order(manager, infer):
    infer.payloads = [{"sleep": 420}]
    await _seed(manager)

    result = await manager.process_message("m1")

    assert result.transitions == [
        RunState.FETCHING_CONTEXT,
        RunState.RESOLVING_VALUES,
        RunState.PERSISTING_RAW,
        RunState.SCORING,
        RunState.PERSISTING_SCORES,
        RunState.DONE,
    ]


@pytest.mark.asyncio
async def test_missing_values_decay_from_last_known(manager, infer):
    await manager.sqlite.save_raw_values(date(2026, 3, 7), {"nurture_home": 100.0})
    infer.payloads = [{"sleep": 420}]
    await _seed(manager)

    result = await manager.process_message("m1")

    assert result.resolved["nurture_home"] == pytest.approx(72.9)
    assert result.resolved["sleep"] == 420.0
    assert infer.calls[0][1] == {"nurture_home": 100.0}

    _, today = await manager.sqlite.get_latest_raw_values()
    assert today["nurture_home"] == pytest.approx(72.9)


@pytest.mark.asyncio
async def test_window_includes_past_days(manager, infer):
    await manager.sqlite.save_raw_values(date(2026, 3, 9), {"nurture_home": 60.0})
    infer.payloads = [{"nurture_home": 60}]
    await _seed(manager)

    result = await manager.process_message("m1")

    # two days at target out of seven
    assert result.snapshot.scores["nurture_home"] == pytest.approx(2 / 7)


@pytest.mark.asyncio
async def test_inference_failure_decays_everything(manager, infer):
    await manager.sqlite.save_raw_values(date(2026, 3, 9), {"sleep": 400.0})
    infer.payloads = [ConnectionError("LLM unreachable")]
    await _seed(manager)

    result = await manager.process_message("m1")

    assert result.state == RunState.DONE
    assert result.inferred == {}
    assert result.resolved["sleep"] == pytest.approx(360.0)


@pytest.mark.asyncio
async def test_same_day_rerun_is_idempotent(manager, infer):
    infer.payloads = [{"training": 30, "sleep": 420}, {"training": 30, "sleep": 420}]
    await _seed(manager, message_id="m1", timestamp="2026-03-10T09:00:00+00:00")
    await _seed(manager, message_id="m2", timestamp="2026-03-10T18:00:00+00:00")

    first = await manager.process_message("m1")
    second = await manager.process_message("m2")

    assert second.state == RunState.DONE
    assert second.day == first.day == DAY
    assert second.resolved == first.resolved
    assert second.snapshot.scores == first.snapshot.scores
    assert second.snapshot.display_score == first.snapshot.display_score


@pytest.mark.asyncio
async def test_processed_message_is_not_rerun(manager, infer):
    infer.payloads = [{"training": 30}, {"training": 0}]
    await _seed(manager)

    first = await manager.process_message("m1")
    second = await manager.process_message("m1")

    assert second.state == RunState.DONE
    assert second.skipped is True
    assert second.snapshot is None
    assert len(infer.calls) == 1

    stored = await manager.sqlite.get_snapshot(DAY)
    assert stored.scores["training"] == pytest.approx(1 / 7)
    assert stored.scores == first.snapshot.scores


@pytest.mark.asyncio
async def test_pending_runs_follow_utc_time_across_offsets(manager, infer):
    # 23:00 at UTC-5 is 04:00Z on the 11th, before the other two
    await _seed(manager, message_id="early", content="early", timestamp="2026-03-11T01:00:00+00:00")
    await _seed(manager, message_id="first", content="first", timestamp="2026-03-10T23:00:00-05:00")
    await _seed(manager, message_id="late", content="late", timestamp="2026-03-11T06:00:00Z")

    results = await manager.process_pending()

    assert [r.message_id for r in results] == ["first", "early", "late"]
    assert all(r.state == RunState.DONE for r in results)


@pytest.mark.asyncio
async def test_score_write_failure_leaves_no_snapshot(manager, infer, monkeypatch):
    infer.payloads = [{"training": 30}]
    await _seed(manager)

    async def broken_save(snap):
        raise sqlite3.OperationalError("disk I/O error")

    monkeypatch.setattr(manager.sqlite, "save_snapshot", broken_save)

    result = await manager.process_message("m1")

    assert result.state == RunState.FAILED
    assert RunState.PERSISTING_SCORES in result.transitions
    assert result.error.startswith("OperationalError")
    assert result.snapshot is None
    assert await manager.sqlite.get_snapshot(DAY) is None
    msg = await manager.sqlite.get_message("m1")
    assert msg.processed is False


@pytest.mark.asyncio
async def test_missing_message_fails_without_raising(manager, infer):
    result = await manager.process_message("ghost")

    assert result.state == RunState.FAILED
    assert result.error == "message not found"
    assert infer.calls == []


@pytest.mark.asyncio
async def test_assistant_message_skipped(manager, infer):
    await _seed(manager, message_id="a1", role="assistant", content="Nice run!")

    result = await manager.process_message("a1")

    assert result.state == RunState.DONE
    assert result.skipped is True
    assert infer.calls == []
    assert await manager.sqlite.get_latest_raw_values() is None
    msg = await manager.sqlite.get_message("a1")
    assert msg.processed is True


@pytest.mark.asyncio
async def test_process_pending_oldest_first(manager, infer):
    await _seed(manager, message_id="later", content="second", timestamp="2026-03-11T09:00:00+00:00")
    await _seed(manager, message_id="earlier", content="first", timestamp="2026-03-10T09:00:00+00:00")

    results = await manager.process_pending()

    assert [r.message_id for r in results] == ["earlier", "later"]
    assert [call[0] for call in infer.calls] == ["first", "second"]
    assert await manager.sqlite.list_unprocessed_message_ids() == []


@pytest.mark.asyncio
async def test_status_before_any_run(manager):
    status = await manager.get_status()

    assert status.day is None
    assert status.display_score == 0
    assert status.priority == "boost_energy"
    assert status.recommendation == manager.registry.recommendation("boost_energy")


@pytest.mark.asyncio
async def test_status_after_run(manager, infer):
    infer.payloads = [{"training": 30}]
    await _seed(manager)
    await manager.process_message("m1")

    status = await manager.get_status()

    assert status.day == DAY
    assert status.display_score == 1
    assert status.priority == "improve_finances"
    assert status.recommendation == manager.registry.recommendation("improve_finances")
    assert status.scores["training"] == pytest.approx(1 / 7)


@pytest.mark.asyncio
async def test_run_is_logged(manager, infer):
    infer.payloads = [{"training": 30}]
    await _seed(manager)
    await manager.process_message("m1")
    await manager.process_message("ghost")

    entries = manager.run_log.for_message("m1")
    assert len(entries) == 1
    assert entries[0].state == "done"
    assert entries[0].display_score == 1
    assert manager.run_log.for_message("ghost")[0].state == "failed"


@pytest.mark.asyncio
async def test_message_day_follows_configured_timezone(tmp_path, infer):
    m = AnalysisManager(data_dir=tmp_path, infer=infer, config={"timezone": "Asia/Tokyo"})
    await m.initialize()
    try:
        await _seed(m, timestamp="2026-03-10T23:30:00+00:00")
        result = await m.process_message("m1")
        assert result.day == date(2026, 3, 11)
    finally:
        await m.close()


@pytest.mark.asyncio
async def test_requires_initialize(tmp_path, infer):
    m = AnalysisManager(data_dir=tmp_path, infer=infer)
    with pytest.raises(RuntimeError):
        await m.process_message("m1")


@pytest.mark.asyncio
async def test_cancel_before_writes_leaves_nothing(tmp_path):
    started = asyncio.Event()
    gate = asyncio.Event()

    async def slow_infer(text, previous):
        started.set()
        await gate.wait()
        return {"training": 30}

    m = AnalysisManager(data_dir=tmp_path, infer=slow_infer)
    await m.initialize()
    try:
        await _seed(m)
        task = asyncio.create_task(m.process_message("m1"))
        await started.wait()
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert await m.sqlite.get_latest_raw_values() is None
        assert await m.sqlite.get_snapshot(DAY) is None
        msg = await m.sqlite.get_message("m1")
        assert msg.processed is False
    finally:
        await m.close()


@pytest.mark.asyncio
async def test_cancel_during_writes_completes_run(manager, infer, monkeypatch):
    infer.payloads = [{"training": 30}]
    await _seed(manager)

    writing = asyncio.Event()
    gate = asyncio.Event()
    original = manager.sqlite.save_raw_values

    async def slow_save(day, values):
        writing.set()
        await gate.wait()
        await original(day, values)

    monkeypatch.setattr(manager.sqlite, "save_raw_values", slow_save)

    task = asyncio.create_task(manager.process_message("m1"))
    await writing.wait()
    task.cancel()
    gate.set()
    with pytest.raises(asyncio.CancelledError):
        await task

    snap = await manager.sqlite.get_snapshot(DAY)
    assert snap is not None
    assert snap.scores["training"] == pytest.approx(1 / 7)
    msg = await manager.sqlite.get_message("m1")
    assert msg.processed is True
