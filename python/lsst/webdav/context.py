# This file is part of lsst-webdav.
#
# Developed for the LSST Data Management System.
# This product includes software developed by the LSST Project
# (https://www.lsst.org).
# See the COPYRIGHT file at the top-level directory of this distribution
# for details of code ownership.
#
# Use of this source code is governed by a 3-clause BSD-style
# license that can be found in the LICENSE file.

from __future__ import annotations

__all__ = ("DavContext",)

import logging
import threading
import time

from urllib3.response import BaseHTTPResponse
from urllib3.util import Timeout

from .errors import DavCancelledError, DavTimeoutError

log = logging.getLogger(__name__)


class DavContext:
    """Cancellation and deadline token for webDAV operations.

    A context may be shared by several operations, possibly running in
    different threads. Cancelling it aborts all of them.

    Parameters
    ----------
    timeout : `float`, optional
        Number of seconds from now after which the operations using this
        context must fail. If `None`, there is no deadline.

    Notes
    -----
    Cancelling a context shuts down the network connections of the
    responses currently being received on behalf of this context so that
    blocked reads return promptly. A request still waiting for the response
    headers is bounded by the deadline of the context, if any.
    """

    def __init__(self, timeout: float | None = None) -> None:
        self._lock = threading.Lock()
        self._cancelled: bool = False
        self._deadline: float | None = None if timeout is None else time.monotonic() + timeout
        self._responses: set[BaseHTTPResponse] = set()

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def deadline(self) -> float | None:
        """Deadline as a value of `time.monotonic`, or `None`."""
        return self._deadline

    def remaining(self) -> float | None:
        """Return the number of seconds until the deadline, or `None` if
        this context has no deadline. The returned value is never negative.
        """
        if self._deadline is None:
            return None

        return max(0.0, self._deadline - time.monotonic())

    def check(self) -> None:
        """Raise if this context was cancelled or its deadline expired.

        Raises
        ------
        DavCancelledError
            If `cancel` was called.
        DavTimeoutError
            If the deadline expired.
        """
        if self._cancelled:
            raise DavCancelledError("operation cancelled")

        if self._deadline is not None and time.monotonic() >= self._deadline:
            raise DavTimeoutError("operation deadline exceeded")

    def timeout(self, connect: float, read: float) -> Timeout:
        """Return the urllib3 timeout to use for the next request, bounded by
        the deadline of this context.

        Parameters
        ----------
        connect : `float`
            Configured timeout in seconds to establish a connection.
        read : `float`
            Configured timeout in seconds to read from the connection.
        """
        if (remaining := self.remaining()) is None:
            return Timeout(connect=connect, read=read)

        # urllib3 rejects timeouts which are not strictly positive.
        if remaining <= 0.0:
            raise DavTimeoutError("operation deadline exceeded")

        return Timeout(total=remaining, connect=min(connect, remaining), read=min(read, remaining))

    def cancel(self) -> None:
        """Cancel all the operations using this context."""
        with self._lock:
            if self._cancelled:
                return

            self._cancelled = True
            responses = list(self._responses)
            self._responses.clear()

        log.debug("cancelling context with %d in-flight responses", len(responses))
        for resp in responses:
            # Unblocks any thread currently reading from this response.
            _abort(resp)

    def attach(self, resp: BaseHTTPResponse) -> None:
        """Register an in-flight response, to be shut down on cancellation.

        If this context is already cancelled, `resp` is shut down and
        `DavCancelledError` is raised.
        """
        with self._lock:
            if not self._cancelled:
                self._responses.add(resp)
                return

        _abort(resp)
        raise DavCancelledError("operation cancelled")

    def detach(self, resp: BaseHTTPResponse) -> None:
        """Unregister a response which is no longer in flight."""
        with self._lock:
            self._responses.discard(resp)


def _abort(resp: BaseHTTPResponse) -> None:
    """Shut down the connection a response is being read from."""
    try:
        resp.shutdown()
    except (ValueError, RuntimeError):
        # The response is not backed by a live connection anymore.
        resp.close()
