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

__all__ = ("DavRequest", "DavRequestBuilder")

import io
from typing import BinaryIO

from urllib3.util import parse_url

from .davutils import make_url, normalize_path, redact_url


class DavRequest:
    """A single HTTP request to send to a webDAV server.

    Parameters
    ----------
    method : `str`
        Request method, e.g. 'PROPFIND'.
    url : `str`
        Target URL, with a percent-encoded path.
    path : `str`
        Normalized path of the target resource, relative to the base URL
        of the client.
    headers : `dict` [`str`, `str`], optional
        Request headers.
    body : `bytes` or `BinaryIO`, optional
        Request body. If `body` is a seekable stream, it is sent from its
        current position and can be rewound to that position if the request
        needs to be sent again.
    preload_content : `bool`, optional
        If False, the body of the response is not read when the response is
        received and the caller must consume it.
    """

    def __init__(
        self,
        method: str,
        url: str,
        path: str,
        headers: dict[str, str] | None = None,
        body: bytes | BinaryIO | None = None,
        preload_content: bool = True,
    ) -> None:
        self.method: str = method
        self.url: str = url
        self.path: str = path
        self.headers: dict[str, str] = {} if headers is None else dict(headers)
        self.body: bytes | BinaryIO | None = body
        self.preload_content: bool = preload_content

        # Position to rewind a seekable stream to. None when the body is
        # a stream which cannot be rewound.
        self._start: int | None = None
        if body is None or isinstance(body, bytes | bytearray | memoryview):
            return

        if _is_seekable(body):
            self._start = body.tell()
            if not any(key.lower() == "content-length" for key in self.headers):
                # Send the size of the stream when we know it so that the
                # body is not sent with chunked transfer encoding.
                end = body.seek(0, io.SEEK_END)
                body.seek(self._start)
                self.headers["Content-Length"] = str(end - self._start)

    def __str__(self) -> str:
        return f"{self.method} {redact_url(self.url)}"

    @property
    def uri(self) -> str:
        """Request target as sent in the request line, e.g.
        '/base/path/a%20file'.
        """
        return parse_url(self.url).request_uri

    @property
    def replayable(self) -> bool:
        """True if this request can be sent again with an identical body."""
        if self.body is None or isinstance(self.body, bytes | bytearray | memoryview):
            return True

        return self._start is not None

    def rewind(self) -> bool:
        """Rewind the body of this request so that it can be sent again.

        Returns
        -------
        rewound : `bool`
            False if the body is a stream which cannot be rewound.
        """
        if not self.replayable:
            return False

        if self._start is not None:
            self.body.seek(self._start)  # type: ignore[union-attr]

        return True


def _is_seekable(stream: BinaryIO) -> bool:
    try:
        return bool(stream.seekable())
    except (AttributeError, ValueError):
        return False


class DavRequestBuilder:
    """Build the requests the client sends to a webDAV server.

    Parameters
    ----------
    base_url : `str`
        Normalized base URL of the endpoint. The path of each request is
        appended to the path of this URL.
    headers : `dict` [`str`, `str`], optional
        Headers to add to every request, e.g. from the configuration of the
        endpoint.
    """

    # Body of PROPFIND requests. We ask for all the live properties of the
    # resources since some servers don't report 'getcontenttype' or
    # 'getetag' unless explicitly requested.
    PROPFIND_BODY: bytes = (
        b"""<?xml version="1.0" encoding="utf-8"?>"""
        b"""<D:propfind xmlns:D="DAV:"><D:allprop/></D:propfind>"""
    )

    def __init__(self, base_url: str, headers: dict[str, str] | None = None) -> None:
        self._base_url: str = base_url
        self._headers: dict[str, str] = {} if headers is None else dict(headers)

    @property
    def base_url(self) -> str:
        return self._base_url

    def url(self, path: str, collection: bool = False) -> str:
        """Return the absolute URL of the resource at `path`."""
        return make_url(self._base_url, path, collection=collection)

    def _make(
        self,
        method: str,
        path: str,
        headers: dict[str, str] | None = None,
        body: bytes | BinaryIO | None = None,
        collection: bool = False,
        preload_content: bool = True,
    ) -> DavRequest:
        request_headers = dict(self._headers)
        if headers is not None:
            request_headers.update(headers)

        return DavRequest(
            method,
            self.url(path, collection=collection),
            normalize_path(path),
            headers=request_headers,
            body=body,
            preload_content=preload_content,
        )

    def propfind(self, path: str, depth: int | str = 0) -> DavRequest:
        """Build a PROPFIND request for all the properties of the resource at
        `path` (``depth=0``) or of its members too (``depth=1``).
        """
        if str(depth) not in ("0", "1"):
            raise ValueError(f"unsupported PROPFIND depth {depth}")

        headers = {
            "Depth": str(depth),
            "Content-Type": 'application/xml; charset="utf-8"',
        }
        return self._make("PROPFIND", path, headers=headers, body=self.PROPFIND_BODY)

    def mkcol(self, path: str) -> DavRequest:
        return self._make("MKCOL", path, collection=True)

    def copy(self, source: str, destination: str, overwrite: bool = False) -> DavRequest:
        return self._make("COPY", source, headers=self._destination_headers(destination, overwrite))

    def move(self, source: str, destination: str, overwrite: bool = False) -> DavRequest:
        return self._make("MOVE", source, headers=self._destination_headers(destination, overwrite))

    def _destination_headers(self, destination: str, overwrite: bool) -> dict[str, str]:
        return {
            "Destination": self.url(destination),
            "Overwrite": "T" if overwrite else "F",
        }

    def get(self, path: str, offset: int | None = None, length: int = 0, stream: bool = True) -> DavRequest:
        """Build a GET request for the contents of the file at `path`.

        Parameters
        ----------
        path : `str`
            Path of the file.
        offset : `int`, optional
            Position of the first byte to retrieve. If `None`, the whole
            file is requested and no 'Range' header is sent.
        length : `int`, optional
            Number of bytes to retrieve from `offset`. Zero means up to the
            end of the file.
        stream : `bool`, optional
            If True the response body is not preloaded.

        Raises
        ------
        ValueError
            If `offset` or `length` is negative.
        """
        headers: dict[str, str] = {}
        if offset is not None:
            if offset < 0 or length < 0:
                raise ValueError(f"invalid range offset={offset} length={length} for {path}")

            if length > 0:
                headers["Range"] = f"bytes={offset}-{offset + length - 1}"
            else:
                headers["Range"] = f"bytes={offset}-"

            # Ranges are relative to the unencoded representation.
            headers["Accept-Encoding"] = "identity"

        return self._make("GET", path, headers=headers, preload_content=not stream)

    def put(self, path: str, body: bytes | BinaryIO) -> DavRequest:
        return self._make("PUT", path, body=body)

    def delete(self, path: str, depth: str | None = None) -> DavRequest:
        headers = {} if depth is None else {"Depth": depth}
        return self._make("DELETE", path, headers=headers)

    def options(self, path: str = "/") -> DavRequest:
        return self._make("OPTIONS", path)
