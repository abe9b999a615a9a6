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

__all__ = ("DavReadStream",)

import io
import logging
from typing import TYPE_CHECKING

from urllib3.exceptions import HTTPError, ReadTimeoutError
from urllib3.response import BaseHTTPResponse

from ..davutils import redact_url
from ..errors import DavCancelledError, DavTimeoutError, DavTransportError

if TYPE_CHECKING:
    from ..context import DavContext

# Use the same logger than `dav.py`.
log = logging.getLogger(f"""{__name__.replace("._resourceHandles._davReadStream", ".dav")}""")


class DavReadStream(io.RawIOBase):
    """Read-only, forward-only stream over the body of a GET response.

    Parameters
    ----------
    resp : `urllib3.response.BaseHTTPResponse`
        Response whose body has not been preloaded. The stream owns it.
    url : `str`
        URL the response was obtained from, for logging purposes.
    ctx : `DavContext`, optional
        Context of the operation. Reading from the stream raises once the
        context is cancelled or its deadline expired.
    skip : `int`, optional
        Number of bytes at the beginning of the body to discard before
        returning any data. Used when the server ignored a 'Range' header.
    limit : `int`, optional
        Maximum number of bytes to return. `None` means up to the end of the
        body.
    chunk_size : `int`, optional
        Size of the chunks `readall` reads the body by.

    Notes
    -----
    Closing a stream which was read up to the end of the body releases the
    network connection to the pool for reuse. Closing a stream before that
    closes the connection. Streams can be used as context managers.
    """

    def __init__(
        self,
        resp: BaseHTTPResponse,
        url: str,
        ctx: DavContext | None = None,
        skip: int = 0,
        limit: int | None = None,
        chunk_size: int = 1_048_576,
    ) -> None:
        super().__init__()
        self._resp: BaseHTTPResponse = resp
        self._url: str = url
        self._ctx: DavContext | None = ctx
        self._skip: int = skip
        self._remaining: int | None = limit
        self._chunk_size: int = chunk_size
        self._eof: bool = False
        log.debug("opening read stream for %s [%d]", redact_url(self._url), id(self))

    def __str__(self) -> str:
        return redact_url(self._url)

    @property
    def status(self) -> int:
        """Status of the response this stream reads from."""
        return self._resp.status

    def readable(self) -> bool:
        return True

    def _read(self, size: int) -> bytes:
        if self._ctx is not None:
            self._ctx.check()

        try:
            return self._resp.read(size)
        except ReadTimeoutError as e:
            raise DavTimeoutError(f"timeout reading response from {self}") from e
        except (HTTPError, OSError) as e:
            if self._ctx is not None and self._ctx.cancelled:
                raise DavCancelledError(f"cancelled while reading response from {self}") from e

            raise DavTransportError(f"error reading response from {self}: {e}") from e

    def _discard_skip(self) -> None:
        while self._skip > 0:
            data = self._read(min(self._skip, self._chunk_size))
            if not data:
                self._eof = True
                return

            self._skip -= len(data)

    def readinto(self, buffer: bytearray | memoryview) -> int:  # type: ignore[override]
        """Read up to `len(buffer)` bytes into `buffer` and return the number
        of bytes read. Zero means the end of the stream.
        """
        if self.closed:
            raise ValueError("I/O operation on closed stream")

        self._discard_skip()
        if self._eof or self._remaining == 0 or len(buffer) == 0:
            return 0

        size = len(buffer) if self._remaining is None else min(len(buffer), self._remaining)
        data = self._read(size)
        if not data:
            self._eof = True
            return 0

        count = len(data)
        buffer[:count] = data
        if self._remaining is not None:
            self._remaining -= count

        return count

    def readall(self) -> bytes:
        chunks: list[bytes] = []
        while data := self.read(self._chunk_size):
            chunks.append(data)

        return b"".join(chunks)

    def _drained(self) -> bool:
        return self._eof or self._resp.length_remaining == 0

    def close(self) -> None:
        if self.closed:
            return

        try:
            if self._drained():
                log.debug("releasing connection of read stream for %s [%d]", self, id(self))
            else:
                # The rest of the body was not consumed so the connection
                # can't be reused.
                log.debug("closing connection of read stream for %s [%d]", self, id(self))
                self._resp.close()

            self._resp.release_conn()
        finally:
            if self._ctx is not None:
                self._ctx.detach(self._resp)

            super().close()
