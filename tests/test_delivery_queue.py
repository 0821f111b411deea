import pytest

from walletwatch.alerts.queue import DeliveryQueue
from walletwatch.errors import PermanentError, ThrottleError
from walletwatch.models import AlertState

from tests.conftest import AlwaysThrottleSink, FakeClock, FakeSink


def make_queue(sink, clock=None, **kwargs):
    reports = []
    queue = DeliveryQueue(
        sink,
        clock=clock or FakeClock(),
        on_permanent_failure=lambda alert, reason: reports.append((alert, reason)),
        **kwargs,
    )
    return queue, reports


async def drive(queue, clock, ticks=20, step=5.0):
    for _ in range(ticks):
        await queue.tick()
        clock.advance(step)


@pytest.mark.asyncio
async def test_always_throttled_alert_is_retried_then_dropped_once():
    clock = FakeClock()
    sink = AlwaysThrottleSink(retry_after=2)
    queue, reports = make_queue(sink, clock, max_retries=3)

    queue.enqueue("chat", "hello")
    await drive(queue, clock)

    assert len(sink.calls) == 4  # first attempt + 3 retries
    assert queue.stats.retried == 3
    assert queue.stats.dropped == 1
    assert len(reports) == 1
    alert, reason = reports[0]
    assert alert.attempt_count == 3
    assert alert.state == AlertState.DROPPED
    assert queue.pending == 0


@pytest.mark.asyncio
async def test_successful_alert_is_delivered_exactly_once():
    clock = FakeClock()
    sink = FakeSink()
    queue, reports = make_queue(sink, clock)

    queue.enqueue("chat", "hello")
    await drive(queue, clock)

    assert sink.sent == ["hello"]
    assert queue.stats.delivered == 1
    assert reports == []


@pytest.mark.asyncio
async def test_tick_is_noop_while_throttled():
    clock = FakeClock()
    sink = FakeSink(outcomes=[ThrottleError(10)])
    queue, _ = make_queue(sink, clock)

    queue.enqueue("chat", "a")
    assert await queue.tick() == 1
    assert queue.throttled_until == clock.now + 10

    clock.advance(9)
    assert await queue.tick() == 0
    assert sink.sent == []

    clock.advance(2)
    assert await queue.tick() == 1
    assert sink.sent == ["a"]


@pytest.mark.asyncio
async def test_missing_retry_hint_uses_default_backoff():
    clock = FakeClock()
    sink = FakeSink(outcomes=[ThrottleError(None)])
    queue, _ = make_queue(sink, clock, default_retry_after=2.0)

    queue.enqueue("chat", "a")
    await queue.tick()

    assert queue.throttled_until == clock.now + 2.0


@pytest.mark.asyncio
async def test_requeued_alert_goes_out_first():
    clock = FakeClock()
    sink = FakeSink(outcomes=[ThrottleError(1)])
    queue, _ = make_queue(sink, clock, batch_size=1)

    queue.enqueue("chat", "a")
    queue.enqueue("chat", "b")
    await queue.tick()
    queue.enqueue("chat", "c")

    await drive(queue, clock, ticks=5, step=2.0)

    assert sink.sent == ["a", "b", "c"]


@pytest.mark.asyncio
async def test_batch_size_limits_each_tick():
    clock = FakeClock()
    sink = FakeSink()
    queue, _ = make_queue(sink, clock, batch_size=5)

    for i in range(7):
        queue.enqueue("chat", f"m{i}")

    assert await queue.tick() == 5
    assert await queue.tick() == 2
    assert sink.sent == [f"m{i}" for i in range(7)]


@pytest.mark.asyncio
async def test_permanent_error_is_not_retried():
    clock = FakeClock()
    sink = FakeSink(outcomes=[PermanentError("chat not found")])
    queue, reports = make_queue(sink, clock)

    queue.enqueue("chat", "a")
    await drive(queue, clock)

    assert len(sink.calls) == 1
    assert queue.stats.dropped == 1
    assert reports[0][1] == "chat not found"


@pytest.mark.asyncio
async def test_full_queue_rejects_and_reports():
    queue, reports = make_queue(FakeSink(), capacity=2)

    assert queue.enqueue("chat", "a")
    assert queue.enqueue("chat", "b")
    assert not queue.enqueue("chat", "c")

    assert queue.pending == 2
    assert len(reports) == 1


@pytest.mark.asyncio
async def test_delayed_alert_waits():
    clock = FakeClock()
    sink = FakeSink()
    queue, _ = make_queue(sink, clock)

    queue.enqueue("chat", "later", delay=3)
    assert await queue.tick() == 0
    clock.advance(3)
    assert await queue.tick() == 1


@pytest.mark.asyncio
async def test_send_now_bypasses_throttle():
    clock = FakeClock()
    sink = FakeSink(outcomes=[ThrottleError(60)])
    queue, _ = make_queue(sink, clock)

    queue.enqueue("chat", "queued")
    await queue.tick()
    assert queue.is_throttled()

    assert await queue.send_now("chat", "urgent") is True
    assert sink.sent == ["urgent"]


@pytest.mark.asyncio
async def test_send_now_reports_failure():
    queue, _ = make_queue(FakeSink(outcomes=[PermanentError("nope")]))
    assert await queue.send_now("chat", "urgent") is False


@pytest.mark.asyncio
async def test_start_and_stop_drain_pending_alerts():
    sink = FakeSink()
    queue = DeliveryQueue(sink, interval=0.01)

    queue.start()
    for i in range(3):
        queue.enqueue("chat", f"m{i}")
    await queue.stop(drain_timeout=1.0)

    assert sorted(sink.sent) == ["m0", "m1", "m2"]
    assert queue.pending == 0


@pytest.mark.asyncio
async def test_stop_reports_undeliverable_alerts():
    clock = FakeClock()
    sink = FakeSink(outcomes=[ThrottleError(600)])
    queue, reports = make_queue(sink, clock, interval=0.01)

    queue.enqueue("chat", "stuck")
    await queue.tick()
    await queue.stop(drain_timeout=0.05)

    assert queue.pending == 0
    assert [reason for _, reason in reports] == ["undelivered at shutdown"]
