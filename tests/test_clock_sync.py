import threading
from unittest.mock import MagicMock

import pytest

from okx_gateway.clock_sync import ClockSync, format_timestamp
from okx_gateway.errors import DecodeError, TransportError


class FakeClock:
    def __init__(self, now: float = 1_700_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


def test_sync_computes_offset():
    """Offset is server minus local, in milliseconds."""
    clock = FakeClock(1_700_000_000.0)
    fetch = MagicMock(return_value="1700000001500")
    sync = ClockSync(fetch, clock=clock)

    sync.sync()

    assert sync.offset_ms == 1500
    assert sync.last_sync_at == clock.now
    fetch.assert_called_once()


def test_sync_within_cooldown_fetches_once():
    clock = FakeClock()
    fetch = MagicMock(return_value="1700000000000")
    sync = ClockSync(fetch, cooldown_seconds=300, clock=clock)

    sync.sync()
    clock.now += 299
    sync.sync()
    clock.now += 1  # exactly at the cooldown boundary
    sync.sync()

    assert fetch.call_count == 1


def test_sync_after_cooldown_fetches_again():
    clock = FakeClock()
    fetch = MagicMock(side_effect=["1700000000000", "1700000301000"])
    sync = ClockSync(fetch, cooldown_seconds=300, clock=clock)

    sync.sync()
    clock.now += 301
    sync.sync()

    assert fetch.call_count == 2
    assert sync.offset_ms == 0


def test_failed_sync_keeps_previous_offset():
    clock = FakeClock()
    fetch = MagicMock(side_effect=["1700000000250", TransportError("Request failed: boom")])
    sync = ClockSync(fetch, cooldown_seconds=300, clock=clock)

    sync.sync()
    first_sync_at = sync.last_sync_at
    clock.now += 400

    with pytest.raises(TransportError):
        sync.sync()

    assert sync.offset_ms == 250
    assert sync.last_sync_at == first_sync_at


@pytest.mark.parametrize("payload", ["", "not-a-number"])
def test_invalid_server_time_raises_decode_error(payload):
    sync = ClockSync(MagicMock(return_value=payload), clock=FakeClock())

    with pytest.raises(DecodeError):
        sync.sync()

    assert sync.offset_ms == 0
    assert sync.last_sync_at is None


def test_timestamp_falls_back_to_last_offset():
    """A failing sync still yields a timestamp using the last known offset."""
    clock = FakeClock(1_700_000_000.0)
    fetch = MagicMock(side_effect=TransportError("Request failed: timeout"))
    sync = ClockSync(fetch, clock=clock)

    assert sync.timestamp() == "2023-11-14T22:13:20.000Z"


def test_timestamp_applies_offset():
    clock = FakeClock(1_700_000_000.0)
    sync = ClockSync(MagicMock(return_value="1700000000123"), clock=clock)

    assert sync.timestamp() == "2023-11-14T22:13:20.123Z"
    assert sync.now_ms() == 1_700_000_000_123


def test_format_timestamp_pads_millis():
    assert format_timestamp(1_700_000_000_007) == "2023-11-14T22:13:20.007Z"
    assert format_timestamp(0) == "1970-01-01T00:00:00.000Z"


def test_concurrent_sync_fetches_once():
    """Callers racing on a stale clock trigger a single fetch."""
    clock = FakeClock()
    calls = []
    gate = threading.Event()

    def fetch():
        calls.append(1)
        gate.wait(1)
        return "1700000000000"

    sync = ClockSync(fetch, clock=clock)
    threads = [threading.Thread(target=sync.sync) for _ in range(8)]
    for t in threads:
        t.start()
    gate.set()
    for t in threads:
        t.join(5)

    assert len(calls) == 1
