"""
Clock agreement with the OKX server.

OKX rejects signed requests whose ``OK-ACCESS-TIMESTAMP`` drifts too far from
its own clock. ``ClockSync`` keeps a server-minus-local offset in
milliseconds, refreshes it at most once per cooldown window, and stamps every
outgoing request with ``now + offset``.

A failed refresh never clears the previous offset: the last known-good value
keeps being applied until a later sync succeeds.

Example:
    >>> client = OKXPublicClient()
    >>> clock = ClockSync(client.get_system_time)
    >>> clock.timestamp()
    '2024-01-01T00:00:00.123Z'
"""

import time
from datetime import datetime, timezone
from typing import Callable, Optional

from .errors import DecodeError, GatewayError
from .locks import ReadWriteLock
from .logging_setup import logger

DEFAULT_COOLDOWN_SECONDS = 300.0


class ClockSync:
    """Tracks the offset between the local clock and the OKX server clock.

    Attributes:
        offset_ms: server time minus local time, in milliseconds
        last_sync_at: local epoch seconds of the last successful sync (None until then)

    Invariants:
        - A network fetch happens only when never synced or when
          ``now - last_sync_at > cooldown``
        - ``offset_ms`` changes only on a successful sync
    """

    def __init__(
        self,
        fetch_server_time: Callable[[], str],
        *,
        cooldown_seconds: float = DEFAULT_COOLDOWN_SECONDS,
        clock: Callable[[], float] = time.time,
    ):
        self._fetch_server_time = fetch_server_time
        self.cooldown_seconds = cooldown_seconds
        self._clock = clock
        self._lock = ReadWriteLock()
        self._offset_ms = 0
        self._last_sync_at: Optional[float] = None

    @property
    def offset_ms(self) -> int:
        with self._lock.read():
            return self._offset_ms

    @property
    def last_sync_at(self) -> Optional[float]:
        with self._lock.read():
            return self._last_sync_at

    def _is_fresh(self, now: float) -> bool:
        return self._last_sync_at is not None and now - self._last_sync_at <= self.cooldown_seconds

    def sync(self) -> None:
        """Refresh the offset unless the last sync is within the cooldown.

        Raises:
            TransportError: server time could not be fetched
            DecodeError: the payload was empty or not an integer
        """
        with self._lock.read():
            if self._is_fresh(self._clock()):
                return

        with self._lock.write():
            # another caller may have synced while we waited for the lock
            if self._is_fresh(self._clock()):
                return

            raw_ts = self._fetch_server_time()
            if not raw_ts:
                raise DecodeError("server time payload is empty")
            try:
                server_ts = int(raw_ts)
            except (TypeError, ValueError) as e:
                raise DecodeError(f"invalid server timestamp {raw_ts!r}") from e

            now = self._clock()
            offset = server_ts - int(now * 1000)
            self._offset_ms = offset
            self._last_sync_at = now

        logger.info(f"Clock synced | offset_ms={offset} server_ts={raw_ts}")

    def now_ms(self) -> int:
        """Local epoch milliseconds corrected by the current offset."""
        with self._lock.read():
            offset = self._offset_ms
        return int(self._clock() * 1000) + offset

    def timestamp(self) -> str:
        """Return the corrected time as ``YYYY-MM-DDTHH:MM:SS.mmmZ``.

        A sync is attempted first; if it fails the last known offset is used.
        """
        try:
            self.sync()
        except GatewayError as e:
            logger.warning(f"Clock sync failed, using last known offset | offset_ms={self.offset_ms} error={e}")
        return format_timestamp(self.now_ms())


def format_timestamp(epoch_ms: int) -> str:
    dt = datetime.fromtimestamp(epoch_ms / 1000, tz=timezone.utc)
    return dt.strftime("%Y-%m-%dT%H:%M:%S.") + f"{epoch_ms % 1000:03d}Z"
