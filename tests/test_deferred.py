"""Tests for detached post-processing tasks."""

import asyncio
import logging

import pytest

from grounded_chat.chat.deferred import DeferredTaskRunner


@pytest.mark.asyncio
async def test_runs_submitted_work():
    runner = DeferredTaskRunner()
    done = []

    async def work():
        await asyncio.sleep(0)
        done.append(True)

    runner.submit(work, description="write session")
    assert runner.pending == 1
    await runner.drain()
    assert done == [True]
    assert runner.pending == 0


@pytest.mark.asyncio
async def test_failures_are_logged_not_raised(caplog):
    runner = DeferredTaskRunner()

    async def broken():
        raise RuntimeError("database is locked")

    with caplog.at_level(logging.ERROR):
        task = runner.submit(broken, description="record gap")
        await runner.drain()

    assert task.exception() is None
    assert "record gap failed" in caplog.text


@pytest.mark.asyncio
async def test_drain_timeout_leaves_task_running():
    runner = DeferredTaskRunner()
    release = asyncio.Event()
    runner.submit(release.wait, description="slow")

    await runner.drain(timeout=0.01)
    assert runner.pending == 1

    release.set()
    await runner.drain()
    assert runner.pending == 0
