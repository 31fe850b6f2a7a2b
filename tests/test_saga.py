import asyncio

import pytest

from app.services.saga import Saga


class RecordingSession:
    """Stands in for AsyncSession; the saga only commits and rolls back"""

    def __init__(self):
        self.events = []

    async def commit(self):
        self.events.append("commit")

    async def rollback(self):
        self.events.append("rollback")


def test_compensations_run_newest_first_and_error_propagates():
    db = RecordingSession()
    undone = []

    async def action(name):
        db.events.append(f"do {name}")
        return name

    async def undo(result):
        undone.append(result)

    async def scenario():
        async with Saga(db, "test") as saga:
            await saga.step(lambda: action("debit"), undo)
            await saga.step(lambda: action("payment"), undo)
            raise RuntimeError("provider down")

    with pytest.raises(RuntimeError, match="provider down"):
        asyncio.run(scenario())

    assert undone == ["payment", "debit"]
    assert db.events == [
        "do debit", "commit",
        "do payment", "commit",
        "rollback",
        "commit",
        "commit",
    ]


def test_failed_compensation_does_not_stop_the_others():
    db = RecordingSession()
    undone = []

    async def ok():
        return "ok"

    async def broken(result):
        raise ValueError("cannot undo")

    async def undo(result):
        undone.append(result)

    async def scenario():
        async with Saga(db, "test") as saga:
            await saga.step(ok, undo)
            await saga.step(ok, broken)
            raise RuntimeError("fail")

    with pytest.raises(RuntimeError):
        asyncio.run(scenario())

    assert undone == ["ok"]


def test_successful_saga_runs_no_compensation():
    db = RecordingSession()
    undone = []

    async def ok():
        return 1

    async def undo(result):
        undone.append(result)

    async def scenario():
        async with Saga(db, "test") as saga:
            return await saga.step(ok, undo)

    assert asyncio.run(scenario()) == 1
    assert undone == []
