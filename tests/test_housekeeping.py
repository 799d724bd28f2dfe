try:
    from . import _bootstrap  # noqa: F401
except Exception:  # pragma: no cover - fallback for direct execution
    import _bootstrap  # type: ignore # noqa: F401

import asyncio

import pytest

from authbridge.services.housekeeping import Housekeeping

pytestmark = pytest.mark.anyio


async def test_runs_sync_and_async_tasks() -> None:
    calls: list[str] = []

    async def purge_devices() -> int:
        calls.append("major")
        return 3

    housekeeping = Housekeeping()
    housekeeping.register_minor_task(lambda: calls.append("minor"))
    housekeeping.register_major_task(purge_devices)

    await housekeeping.run_minor()
    await housekeeping.run_major()

    assert calls == ["minor", "major"]


async def test_failing_task_does_not_stop_the_others() -> None:
    calls: list[str] = []

    def broken() -> None:
        raise RuntimeError("boom")

    housekeeping = Housekeeping()
    housekeeping.register_minor_task(broken)
    housekeeping.register_minor_task(lambda: calls.append("after"))

    await housekeeping.run_minor()

    assert calls == ["after"]


async def test_registering_twice_runs_once() -> None:
    calls: list[int] = []

    def task() -> None:
        calls.append(1)

    housekeeping = Housekeeping()
    housekeeping.register_minor_task(task)
    housekeeping.register_minor_task(task)

    await housekeeping.run_minor()

    assert calls == [1]


async def test_start_schedules_until_stopped() -> None:
    minor_runs: list[int] = []
    housekeeping = Housekeeping(minor_interval=0.01, major_interval=3600)
    housekeeping.register_minor_task(lambda: minor_runs.append(1))

    housekeeping.start()
    assert housekeeping.running
    await asyncio.sleep(0.1)
    await housekeeping.stop()

    assert not housekeeping.running
    assert minor_runs
    settled = len(minor_runs)
    await asyncio.sleep(0.05)
    assert len(minor_runs) == settled
