from __future__ import annotations

import asyncio

import pytest

from vocabulary_federation.core.errors import ErrorKind, FederationError
from vocabulary_federation.core.repeat import Repeater


def _sequence_function(values, done: asyncio.Event, holder: dict):
    calls = []

    def function():
        value = values[len(calls)]
        calls.append(value)
        if len(calls) == len(values):
            holder["repeater"].stop()
            done.set()
        if isinstance(value, BaseException):
            raise value
        return value

    return function, calls


@pytest.mark.asyncio
async def test_repeater_reports_only_changed_results():
    notifications = []
    done = asyncio.Event()
    holder: dict = {}
    function, calls = _sequence_function([1, 1, 2, 2, 3], done, holder)

    holder["repeater"] = Repeater(function, lambda *args: notifications.append(args), interval=0)
    await asyncio.wait_for(done.wait(), timeout=1)
    await asyncio.sleep(0.01)

    assert calls == [1, 1, 2, 2, 3]
    assert notifications == [(None, 1, None), (None, 2, 1), (None, 3, 2)]
    assert holder["repeater"].is_paused
    assert holder["repeater"].last_result == 3


@pytest.mark.asyncio
async def test_repeater_reports_errors_and_recovery():
    notifications = []
    done = asyncio.Event()
    holder: dict = {}
    failure = RuntimeError("backend down")
    function, _ = _sequence_function([1, failure, 1], done, holder)

    holder["repeater"] = Repeater(function, lambda *args: notifications.append(args), interval=0)
    await asyncio.wait_for(done.wait(), timeout=1)
    await asyncio.sleep(0.01)

    assert notifications == [(None, 1, None), (failure, None, None), (None, 1, 1)]
    assert not holder["repeater"].has_errored


@pytest.mark.asyncio
async def test_repeater_awaits_coroutine_functions():
    notifications = []
    done = asyncio.Event()

    async def function():
        return {"version": "1.0"}

    def callback(*args):
        notifications.append(args)
        repeater.stop()
        done.set()

    repeater = Repeater(function, callback, interval=0)
    await asyncio.wait_for(done.wait(), timeout=1)

    assert notifications == [(None, {"version": "1.0"}, None)]


@pytest.mark.asyncio
async def test_repeater_waits_one_interval_without_immediate_call():
    calls = []

    repeater = Repeater(lambda: calls.append(1), lambda *args: None, interval=0.05, call_immediately=False)
    await asyncio.sleep(0.01)
    assert calls == []

    await asyncio.sleep(0.1)
    repeater.stop()
    assert calls


@pytest.mark.asyncio
async def test_repeater_stop_and_start():
    calls = []
    repeater = Repeater(lambda: calls.append(1), lambda *args: None, interval=0.01)
    await asyncio.sleep(0.05)
    repeater.stop()
    await asyncio.sleep(0.02)
    count = len(calls)
    await asyncio.sleep(0.05)
    assert len(calls) == count
    assert repeater.is_paused

    repeater.start()
    await asyncio.sleep(0.02)
    repeater.stop()
    assert len(calls) > count


def test_repeater_rejects_non_callables():
    with pytest.raises(FederationError) as excinfo:
        Repeater("not callable", lambda *args: None)
    assert excinfo.value.kind is ErrorKind.VALIDATION

    with pytest.raises(FederationError):
        Repeater(lambda: None, None)
