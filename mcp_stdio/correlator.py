"""
Request correlation: matches responses to the requests that caused them.

Every outgoing request gets a PendingCall keyed by its id. The first of
{response, error, timeout, channel failure} to arrive removes the entry
and settles its future; anything arriving later for that id is ignored.

All methods must be called from the event loop thread.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
from dataclasses import dataclass
from typing import Any

from mcp_stdio.errors import CallTimeoutError


@dataclass
class PendingCall:
    """One in-flight request awaiting its response."""
    request_id: str
    method: str
    future: asyncio.Future
    timer: asyncio.TimerHandle | None = None

    def settle(self, result: Any = None, error: BaseException | None = None) -> None:
        if self.timer is not None:
            self.timer.cancel()
            self.timer = None
        # The caller may have stopped waiting (task cancelled)
        if self.future.done():
            return
        if error is not None:
            self.future.set_exception(error)
        else:
            self.future.set_result(result)


class RequestCorrelator:
    """Pending-call table for one channel."""

    def __init__(self, *, logger: logging.Logger | None = None):
        self._log = logger or logging.getLogger(__name__)
        self._pending: dict[str, PendingCall] = {}
        self._counter = itertools.count(1)

    def __len__(self) -> int:
        return len(self._pending)

    def __contains__(self, request_id: object) -> bool:
        return request_id in self._pending

    def next_id(self) -> str:
        """Return an id that no pending call is using."""
        while True:
            request_id = str(next(self._counter))
            if request_id not in self._pending:
                return request_id

    def register(
        self,
        request_id: str,
        *,
        method: str = "",
        timeout: float | None = None,
    ) -> asyncio.Future:
        """
        Add a pending call and return the future its outcome lands in.

        Args:
            request_id: Id the request is sent with.
            method: JSON-RPC method, used in timeout errors and logs.
            timeout: Seconds until the call is rejected with
                     CallTimeoutError. None waits indefinitely.
        """
        if request_id in self._pending:
            raise ValueError(f"Request id already pending: {request_id}")

        loop = asyncio.get_running_loop()
        pending = PendingCall(
            request_id=request_id,
            method=method,
            future=loop.create_future(),
        )
        if timeout is not None:
            pending.timer = loop.call_later(timeout, self._expire, request_id, timeout)
        self._pending[request_id] = pending
        return pending.future

    def resolve(self, request_id: Any, result: Any) -> bool:
        """Deliver a result. Returns False if the id is not pending."""
        pending = self._pending.pop(request_id, None)
        if pending is None:
            self._log.debug(f"Dropping result for unknown request id: {request_id!r}")
            return False
        pending.settle(result=result)
        return True

    def reject(self, request_id: Any, error: BaseException) -> bool:
        """Deliver a failure. Returns False if the id is not pending."""
        pending = self._pending.pop(request_id, None)
        if pending is None:
            self._log.debug(f"Dropping error for unknown request id: {request_id!r}: {error}")
            return False
        pending.settle(error=error)
        return True

    def reject_all(self, error: BaseException) -> int:
        """Fail every pending call with ``error`` and empty the table."""
        pending_calls = list(self._pending.values())
        self._pending.clear()
        for pending in pending_calls:
            pending.settle(error=error)
        if pending_calls:
            self._log.debug(f"Rejected {len(pending_calls)} pending call(s): {error}")
        return len(pending_calls)

    def _expire(self, request_id: str, timeout: float) -> None:
        pending = self._pending.get(request_id)
        if pending is None:
            return
        self._log.warning(f"Request {request_id} ({pending.method}) timed out after {timeout}s")
        self.reject(request_id, CallTimeoutError(pending.method, timeout))
