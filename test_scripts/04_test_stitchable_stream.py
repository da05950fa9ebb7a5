#!/usr/bin/env python3
"""
Test: Stitchable Stream
Purpose: Verify sequential multiplexing, forks and cancellation

Tests:
- Items from several sources come out in attach order
- Sources attached while reading are picked up
- A failing source becomes one error part
- Attaching after finish() or cancel raises
- Every fork sees every item exactly once
- Sources are pulled only as fast as forks read
- A fork created mid-stream starts at the read position
- Closing the last fork cancels the stream and its sources
"""

import asyncio
import sys

from fixtures import (
    async_items, collect, run_tests,
    assert_equal, assert_true, assert_false, assert_raises
)

from agent_swarm.core.errors import StreamClosedError
from agent_swarm.core.stitchable_stream import StitchableStream
from agent_swarm.models.schemas import StreamPartType


async def test_sources_in_attach_order():
    """Test concatenation preserves source and item order"""
    stream = StitchableStream()
    stream.attach(async_items(1, 2, 3))
    stream.attach(async_items())
    stream.attach(async_items(4, 5))
    stream.finish()

    assert_equal(await collect(stream), [1, 2, 3, 4, 5])


async def test_late_attach():
    """Test the reader waits for sources attached later"""
    stream = StitchableStream()

    async def producer():
        for batch in (["a", "b"], ["c"]):
            await asyncio.sleep(0.01)
            stream.attach(async_items(*batch))
        await asyncio.sleep(0.01)
        stream.finish()

    task = asyncio.create_task(producer())
    items = await asyncio.wait_for(collect(stream), timeout=2)
    await task

    assert_equal(items, ["a", "b", "c"])


async def test_failing_source_becomes_error_part():
    """Test a source exception is emitted once and the next source continues"""
    boom = RuntimeError("source broke")
    stream = StitchableStream()
    stream.attach(async_items("before", fail_with=boom))
    stream.attach(async_items("after"))
    stream.finish()

    items = await collect(stream)

    assert_equal(items[0], "before")
    assert_equal(items[1], {"type": StreamPartType.ERROR, "error": boom})
    assert_equal(items[2], "after")
    assert_equal(len(items), 3)


async def test_attach_after_close():
    """Test attaching to a finished or cancelled stream raises"""
    finished = StitchableStream()
    finished.finish()
    assert_raises(StreamClosedError, finished.attach, async_items(1))

    cancelled = StitchableStream()
    await cancelled.aclose()
    assert_true(cancelled.is_cancelled)
    assert_raises(StreamClosedError, cancelled.attach, async_items(1))


async def test_forks_see_every_item():
    """Test independent forks each receive the full sequence"""
    stream = StitchableStream()
    first = stream.fork()
    second = stream.fork()
    stream.attach(async_items(*range(10)))
    stream.attach(async_items(10, 11))
    stream.finish()

    # Interleave reads so the buffer is shared
    head = [await first.__anext__() for _ in range(4)]
    from_second = await collect(second)
    rest = await collect(first)

    assert_equal(head + rest, list(range(12)))
    assert_equal(from_second, list(range(12)))


async def test_pulls_only_on_demand():
    """Test sources are read no faster than the forks drain them"""
    pulled = []

    async def counting_source():
        for n in range(10):
            pulled.append(n)
            yield n

    stream = StitchableStream()
    first = stream.fork()
    second = stream.fork()
    stream.attach(counting_source())
    stream.finish()

    assert_equal(pulled, [], "Nothing pulled before a read")
    assert_equal([await first.__anext__() for _ in range(2)], [0, 1])
    assert_equal(len(pulled), 2, "One pull per item read")

    assert_equal(await second.__anext__(), 0)
    assert_equal(len(pulled), 2, "Buffered items are served without pulling")

    await first.aclose()
    await second.aclose()


async def test_late_fork_starts_at_read_position():
    """Test a fork created after reads sees only later items"""
    stream = StitchableStream()
    early = stream.fork()
    stream.attach(async_items(*range(6)))
    stream.finish()

    assert_equal([await early.__anext__() for _ in range(3)], [0, 1, 2])

    late = stream.fork()
    assert_equal(await collect(late), [3, 4, 5])
    assert_equal(await collect(early), [3, 4, 5])


async def test_direct_read_with_forks_is_rejected():
    """Test reading the stream directly once forks exist fails"""
    stream = StitchableStream()
    stream.fork()
    stream.attach(async_items(1))
    stream.finish()

    try:
        await stream.__anext__()
        raise AssertionError("Expected RuntimeError")
    except RuntimeError:
        pass


async def test_closing_last_fork_cancels():
    """Test cancel propagates to sources and the on_cancel hook"""
    cancelled = []
    closed = []

    async def endless():
        try:
            n = 0
            while True:
                yield n
                n += 1
        finally:
            closed.append(True)

    stream = StitchableStream(on_cancel=lambda: cancelled.append(True))
    first = stream.fork()
    second = stream.fork()
    stream.attach(endless())

    assert_equal(await first.__anext__(), 0)
    await first.aclose()
    assert_false(stream.is_cancelled, "Another fork is still reading")

    assert_equal(await second.__anext__(), 0)
    await second.aclose()

    assert_true(stream.is_cancelled, "Last fork closed")
    assert_equal(cancelled, [True], "on_cancel ran once")
    assert_equal(closed, [True], "Active source was closed")
    await stream.aclose()
    assert_equal(cancelled, [True], "aclose() is idempotent")


async def test_drained_forks_do_not_cancel():
    """Test forks that reach the end don't trigger cancellation"""
    cancelled = []
    stream = StitchableStream(on_cancel=lambda: cancelled.append(True))
    fork = stream.fork()
    stream.attach(async_items("x"))
    stream.finish()

    assert_equal(await collect(fork), ["x"])
    assert_false(stream.is_cancelled)
    assert_equal(cancelled, [])


async def main():
    """Run all stitchable stream tests"""
    return await run_tests("Stitchable Stream Tests", [
        ("Sources in attach order", test_sources_in_attach_order),
        ("Late attach", test_late_attach),
        ("Failing source becomes error part", test_failing_source_becomes_error_part),
        ("Attach after close", test_attach_after_close),
        ("Forks see every item", test_forks_see_every_item),
        ("Pulls only on demand", test_pulls_only_on_demand),
        ("Late fork starts at read position", test_late_fork_starts_at_read_position),
        ("Direct read with forks rejected", test_direct_read_with_forks_is_rejected),
        ("Closing last fork cancels", test_closing_last_fork_cancels),
        ("Drained forks don't cancel", test_drained_forks_do_not_cancel),
    ])


if __name__ == "__main__":
    exit_code = asyncio.run(main())
    sys.exit(exit_code)
