"""
Tests for the outbox task runner.
"""

import pytest

from ekoink.models import BackgroundTask
from ekoink.services.tasks import TaskRunner


@pytest.fixture
def runner(app, db):
    return TaskRunner(app.state.db)


class TestTaskRunner:
    @pytest.mark.asyncio
    async def test_success_is_recorded(self, runner, db):
        seen = []

        async def handler(session, payload):
            seen.append(payload)

        runner.register("ping", handler)
        task = runner.enqueue(db, "ping", {"value": 1})
        assert task.status == "queued"

        assert await runner.run(task.id) == "succeeded"

        assert seen == [{"value": 1}]
        db.expire_all()
        stored = db.get(BackgroundTask, task.id)
        assert stored.status == "succeeded"
        assert stored.attempts == 1
        assert stored.last_error is None

    @pytest.mark.asyncio
    async def test_failure_is_recorded_not_raised(self, runner, db):
        async def handler(session, payload):
            raise ValueError("mail service rejected the card")

        runner.register("explode", handler)
        task = runner.enqueue(db, "explode", {})

        assert await runner.run(task.id) == "failed"

        db.expire_all()
        stored = db.get(BackgroundTask, task.id)
        assert stored.status == "failed"
        assert stored.last_error == "ValueError: mail service rejected the card"

    @pytest.mark.asyncio
    async def test_unknown_kind_fails(self, runner, db):
        task = runner.enqueue(db, "mystery", {})

        assert await runner.run(task.id) == "failed"

        db.expire_all()
        assert "No handler registered for task kind 'mystery'" in db.get(BackgroundTask, task.id).last_error

    @pytest.mark.asyncio
    async def test_succeeded_task_does_not_run_twice(self, runner, db):
        calls = []

        async def handler(session, payload):
            calls.append(1)

        runner.register("once", handler)
        task = runner.enqueue(db, "once", {})

        await runner.run(task.id)
        await runner.run(task.id)

        assert calls == [1]

    @pytest.mark.asyncio
    async def test_missing_task(self, runner):
        assert await runner.run("does-not-exist") is None

    @pytest.mark.asyncio
    async def test_retry_failed_respects_attempts(self, runner, db):
        outcomes = [RuntimeError("first"), None]

        async def flaky(session, payload):
            outcome = outcomes.pop(0)
            if outcome:
                raise outcome

        async def always_fails(session, payload):
            raise RuntimeError("still broken")

        runner.register("flaky", flaky)
        runner.register("broken", always_fails)
        flaky_task = runner.enqueue(db, "flaky", {})
        broken_task = runner.enqueue(db, "broken", {})
        await runner.run(flaky_task.id)
        await runner.run(broken_task.id)

        retried = await runner.retry_failed(max_attempts=2)

        assert set(retried) == {flaky_task.id, broken_task.id}
        db.expire_all()
        assert db.get(BackgroundTask, flaky_task.id).status == "succeeded"
        broken = db.get(BackgroundTask, broken_task.id)
        assert broken.status == "failed"
        assert broken.attempts == 2

        # Out of attempts
        assert await runner.retry_failed(max_attempts=2) == []
