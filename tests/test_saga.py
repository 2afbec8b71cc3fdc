"""Unit tests for the saga runner."""

import pytest

from tenant_stack.errors import CompensationError
from tenant_stack.services.saga import Saga, SagaStep


class Recorder:
    """Collects action names in the order they ran."""

    def __init__(self):
        self.calls = []

    def action(self, name, error=None):
        async def run():
            self.calls.append(name)
            if error is not None:
                raise error
        return run


@pytest.fixture
def recorder():
    return Recorder()


@pytest.mark.unit
class TestSagaRun:

    @pytest.mark.asyncio
    async def test_runs_steps_in_order(self, recorder):
        saga = Saga("test", [
            SagaStep("one", recorder.action("one")),
            SagaStep("two", recorder.action("two")),
        ])

        await saga.run()

        assert recorder.calls == ["one", "two"]
        assert saga.failed_step is None

    @pytest.mark.asyncio
    async def test_first_failure_aborts_remaining_steps(self, recorder):
        saga = Saga("test", [
            SagaStep("one", recorder.action("one")),
            SagaStep("two", recorder.action("two", RuntimeError("boom"))),
            SagaStep("three", recorder.action("three")),
        ])

        with pytest.raises(RuntimeError, match="boom"):
            await saga.run()

        assert recorder.calls == ["one", "two"]
        assert saga.failed_step == "two"
        assert [step.name for step in saga.attempted] == ["one", "two"]


@pytest.mark.unit
class TestSagaCompensate:

    @pytest.mark.asyncio
    async def test_compensates_attempted_steps_newest_first(self, recorder):
        saga = Saga("test", [
            SagaStep("one", recorder.action("one"), compensation=recorder.action("undo-one")),
            SagaStep("two", recorder.action("two", RuntimeError()), compensation=recorder.action("undo-two")),
            SagaStep("three", recorder.action("three"), compensation=recorder.action("undo-three")),
        ])
        with pytest.raises(RuntimeError):
            await saga.run()

        errors = await saga.compensate()

        assert errors == []
        # The failing step is compensated too; the unattempted one is not
        assert recorder.calls == ["one", "two", "undo-two", "undo-one"]

    @pytest.mark.asyncio
    async def test_compensation_runs_only_once(self, recorder):
        saga = Saga("test", [
            SagaStep("one", recorder.action("one", RuntimeError()), compensation=recorder.action("undo-one")),
        ])
        with pytest.raises(RuntimeError):
            await saga.run()

        await saga.compensate()
        await saga.compensate()

        assert recorder.calls.count("undo-one") == 1

    @pytest.mark.asyncio
    async def test_compensation_failures_are_returned_not_raised(self, recorder):
        saga = Saga("test", [
            SagaStep("one", recorder.action("one"), compensation=recorder.action("undo-one")),
            SagaStep("two", recorder.action("two"),
                     compensation=recorder.action("undo-two", RuntimeError("still there"))),
        ])
        await saga.run()

        errors = await saga.compensate()

        assert recorder.calls == ["one", "two", "undo-two", "undo-one"]
        assert len(errors) == 1
        assert isinstance(errors[0], CompensationError)
        assert "still there" in str(errors[0])
