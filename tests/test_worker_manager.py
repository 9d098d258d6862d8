"""Tests for conductor.workers.manager — the WorkerManager façade."""

from __future__ import annotations

import asyncio

import pytest

from conductor.config import WorkerConfig
from conductor.events import EventBus
from conductor.workers.manager import UnknownProfileError, WorkerManager
from conductor.workers.spawn import SpawnError
from conductor.workflows.engine import WorkflowEngine
from conductor.workflows.models import WorkflowDefinition, WorkflowStepDefinition

from conftest import FakeTransport, make_profile


# ---------------------------------------------------------------------------
# Spawn / reuse
# ---------------------------------------------------------------------------


class TestSpawn:
    @pytest.mark.asyncio
    async def test_spawn_by_id(self, manager, transport):
        instance = await manager.spawn_by_id("coder")
        assert instance.status == "ready"
        assert manager.get_worker("coder") is instance
        assert len(transport.calls) == 1

    @pytest.mark.asyncio
    async def test_unknown_profile(self, manager):
        with pytest.raises(UnknownProfileError):
            await manager.spawn_by_id("ghost")

    @pytest.mark.asyncio
    async def test_disabled_profile(self, transport, worker_config):
        mgr = WorkerManager(
            transport,
            profiles=[make_profile("off", enabled=False)],
            config=worker_config,
        )
        with pytest.raises(SpawnError, match="disabled"):
            await mgr.spawn_by_id("off")
        assert transport.calls == []

    @pytest.mark.asyncio
    async def test_sequential_spawn_reuses_instance(self, manager, transport):
        first = await manager.spawn_by_id("coder")
        second = await manager.spawn_by_id("coder")
        assert first is second
        assert len(transport.calls) == 1

    @pytest.mark.asyncio
    async def test_concurrent_spawn_starts_one_server(self, transport, worker_config, profiles):
        transport.delay = 0.05
        mgr = WorkerManager(transport, profiles=profiles, config=worker_config)

        results = await asyncio.gather(*(mgr.spawn_by_id("coder") for _ in range(5)))

        assert len(transport.calls) == 1
        assert all(r is results[0] for r in results)
        assert len({(r.server_url, r.session_id) for r in results}) == 1
        assert mgr._in_flight == {}

    @pytest.mark.asyncio
    async def test_ensure_worker(self, manager, transport):
        instance = await manager.ensure_worker("reviewer")
        assert await manager.ensure_worker("reviewer") is instance
        assert len(transport.calls) == 1

    @pytest.mark.asyncio
    async def test_start_honours_auto_spawn(self, transport, profiles, tmp_path):
        config = WorkerConfig(
            CONDUCTOR_DIRECTORY=str(tmp_path),
            CONDUCTOR_AUTO_SPAWN=True,
            CONDUCTOR_SPAWN="coder, ghost",
        )
        mgr = WorkerManager(transport, profiles=profiles, config=config)
        started = await mgr.start()
        assert [w.id for w in started] == ["coder"]

    @pytest.mark.asyncio
    async def test_start_noop_without_auto_spawn(self, manager, transport):
        assert await manager.start() == []
        assert transport.calls == []


# ---------------------------------------------------------------------------
# Stop
# ---------------------------------------------------------------------------


class TestStop:
    @pytest.mark.asyncio
    async def test_stop_worker(self, manager, transport):
        instance = await manager.spawn_by_id("coder")
        assert await manager.stop_worker("coder") is True
        assert instance.status == "stopped"
        assert manager.get_worker("coder") is None
        assert transport.servers[0].closed == 1
        assert await manager.stop_worker("coder") is False

    @pytest.mark.asyncio
    async def test_stop_cleans_up_even_if_shutdown_fails(self, manager):
        instance = await manager.spawn_by_id("coder")

        async def broken_shutdown():
            raise RuntimeError("already dead")

        instance.shutdown = broken_shutdown
        with pytest.raises(RuntimeError):
            await manager.stop_worker("coder")
        assert manager.get_worker("coder") is None

    @pytest.mark.asyncio
    async def test_stop_all(self, manager):
        await manager.spawn_by_id("coder")
        await manager.spawn_by_id("reviewer")
        await manager.stop_all()
        assert manager.list_workers() == []

    @pytest.mark.asyncio
    async def test_respawn_after_stop(self, manager, transport):
        await manager.spawn_by_id("coder")
        await manager.stop_worker("coder")
        await manager.spawn_by_id("coder")
        assert len(transport.calls) == 2

    @pytest.mark.asyncio
    async def test_stop_during_spawn_closes_late_server(self, manager, transport):
        transport.delay = 0.05
        pending = asyncio.create_task(manager.spawn_by_id("coder"))
        await asyncio.sleep(0.01)

        assert await manager.stop_worker("coder") is True
        with pytest.raises(SpawnError, match="stopped during startup"):
            await pending
        assert manager.get_worker("coder") is None
        assert transport.servers[0].closed == 1

        transport.delay = 0.0
        fresh = await manager.spawn_by_id("coder")
        assert fresh.status == "ready"
        assert manager.get_worker("coder") is fresh


# ---------------------------------------------------------------------------
# Send
# ---------------------------------------------------------------------------


class TestSend:
    @pytest.mark.asyncio
    async def test_send_roundtrip(self, manager, transport):
        await manager.spawn_by_id("coder")
        transport.clients[0].reply_text = "patched"
        result = await manager.send("coder", "fix the bug")
        assert result.success is True
        assert result.response == "patched"

    @pytest.mark.asyncio
    async def test_send_unknown(self, manager):
        result = await manager.send("ghost", "hi")
        assert result.success is False
        assert "not found" in result.error

    @pytest.mark.asyncio
    async def test_timeout_then_stop(self, manager, transport):
        await manager.spawn_by_id("w1")
        never = asyncio.Event()

        async def hang(sid, parts):
            await never.wait()

        transport.clients[0].responder = hang

        result = await manager.send("w1", "slow task", timeout=0.05)
        assert result.success is False
        assert "timeout" in result.error

        assert await manager.stop_worker("w1") is True
        assert manager.get_worker("w1") is None
        assert await manager.stop_worker("w1") is False


# ---------------------------------------------------------------------------
# Workflows
# ---------------------------------------------------------------------------


class TestRunWorkflow:
    @pytest.fixture()
    def engine(self) -> WorkflowEngine:
        eng = WorkflowEngine()
        eng.register(
            WorkflowDefinition(
                id="one",
                name="One",
                steps=[WorkflowStepDefinition(id="s", title="S", worker_id="coder", prompt="{task}")],
            )
        )
        return eng

    @pytest.mark.asyncio
    async def test_failed_worker_is_respawned(self, manager, transport, engine):
        await manager.spawn_by_id("coder")
        manager.registry.update_status("coder", "error", "boom")

        result = await manager.run_workflow(engine, "one", "t", auto_spawn=True)

        assert [s.status for s in result.steps] == ["success"]
        assert len(transport.calls) == 2
        assert transport.servers[0].closed == 1
        assert manager.get_worker("coder").status == "ready"

    @pytest.mark.asyncio
    async def test_failed_worker_kept_without_auto_spawn(self, manager, transport, engine):
        await manager.spawn_by_id("coder")
        manager.registry.update_status("coder", "error", "boom")

        result = await manager.run_workflow(engine, "one", "t", auto_spawn=False)

        assert [s.status for s in result.steps] == ["error"]
        assert len(transport.calls) == 1


# ---------------------------------------------------------------------------
# Async jobs
# ---------------------------------------------------------------------------


class TestSendAsync:
    @pytest.mark.asyncio
    async def test_job_succeeds(self, manager, transport):
        await manager.spawn_by_id("coder")
        transport.clients[0].reply_text = "async answer"
        job = manager.send_async("coder", "background work", requested_by="lead")
        assert job.status == "running"
        finished = await manager.jobs.wait(job.id, timeout=1.0)
        assert finished.status == "succeeded"
        assert finished.response_text == "async answer"
        sent = transport.clients[0].task_prompts[0]["parts"][0]["text"]
        assert f'<orchestrator-job id="{job.id}">' in sent

    @pytest.mark.asyncio
    async def test_job_fails(self, manager):
        job = manager.send_async("ghost", "nobody home")
        finished = await manager.jobs.wait(job.id, timeout=1.0)
        assert finished.status == "failed"
        assert "not found" in finished.error

    @pytest.mark.asyncio
    async def test_close_cancels_background_jobs(self, manager, transport):
        await manager.spawn_by_id("coder")
        never = asyncio.Event()

        async def hang(sid, parts):
            await never.wait()

        transport.clients[0].responder = hang
        job = manager.send_async("coder", "forever", timeout=10.0)
        await asyncio.sleep(0.01)
        await manager.close()
        assert manager.jobs.get(job.id).status == "canceled"
        assert manager.list_workers() == []


# ---------------------------------------------------------------------------
# Events
# ---------------------------------------------------------------------------


class TestEventForwarding:
    @pytest.mark.asyncio
    async def test_lifecycle_events_reach_bus(self, transport, worker_config, profiles):
        bus = EventBus()
        await bus.start()
        seen: list[str] = []
        bus.subscribe("worker.*", lambda e: seen.append(e.event_type))
        mgr = WorkerManager(transport, profiles=profiles, config=worker_config, event_bus=bus)
        try:
            await mgr.spawn_by_id("coder")
            await mgr.spawn_by_id("coder")
            await mgr.stop_worker("coder")
            await bus.drain()
        finally:
            await mgr.close()
            await bus.stop()

        assert "worker.spawned" in seen
        assert "worker.ready" in seen
        assert "worker.reused" in seen
        assert "worker.stopped" in seen
        assert seen.index("worker.spawned") < seen.index("worker.ready")


class TestSummary:
    @pytest.mark.asyncio
    async def test_summary_lists_workers(self, manager):
        await manager.spawn_by_id("coder")
        assert "- coder (Coder)" in manager.get_summary()

    def test_list_profiles(self, manager):
        assert {p.id for p in manager.list_profiles()} == {"coder", "reviewer", "explorer", "w1"}
        assert manager.get_profile("coder").name == "Coder"
