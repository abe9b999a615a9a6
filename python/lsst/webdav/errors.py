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

__all__ = (
    "DavCancelledError",
    "DavConflictError",
    "DavError",
    "DavErrorKind",
    "DavForbiddenError",
    "DavNotFoundError",
    "DavProtocolError",
    "DavTimeoutError",
    "DavTransportError",
    "DavUnauthorizedError",
    "classify_status",
    "is_error_code",
    "is_not_found",
    "make_status_error",
)

import enum
from http import HTTPStatus


class DavErrorKind(enum.Enum):
    """Kinds of failures a webDAV operation can report."""

    NOT_FOUND = "not found"
    CONFLICT = "conflict"
    FORBIDDEN = "forbidden"
    UNAUTHORIZED = "unauthorized"
    PROTOCOL = "protocol"
    TRANSPORT = "transport"
    GENERIC = "generic"


class DavError(Exception):
    """Base class of all the errors raised by the webDAV client.

    Parameters
    ----------
    message : `str`
        Human readable description of the error.
    kind : `DavErrorKind`, optional
        Kind of this error.
    status : `int`, optional
        HTTP status of the response which caused this error, if any.
    method : `str`, optional
        HTTP method of the failed request, e.g. 'PROPFIND'.
    path : `str`, optional
        Path of the resource the failed request was targeting.
    reason : `str`, optional
        Reason phrase of the response which caused this error, if any.
    """

    default_kind: DavErrorKind = DavErrorKind.GENERIC

    def __init__(
        self,
        message: str,
        *,
        kind: DavErrorKind | None = None,
        status: int | None = None,
        method: str | None = None,
        path: str | None = None,
        reason: str | None = None,
    ) -> None:
        super().__init__(message)
        self.kind: DavErrorKind = kind if kind is not None else self.default_kind
        self.status: int | None = status
        self.method: str | None = method
        self.path: str | None = path
        self.reason: str | None = reason

    def __str__(self) -> str:
        return str(self.args[0]) if self.args else self.kind.value


class DavNotFoundError(DavError, FileNotFoundError):
    """No resource exists at the requested path."""

    default_kind = DavErrorKind.NOT_FOUND


class DavConflictError(DavError):
    """The request conflicts with the state of the server: a missing parent
    collection, an existing destination the caller asked not to overwrite or
    a file where a directory is expected.
    """

    default_kind = DavErrorKind.CONFLICT


class DavForbiddenError(DavError, PermissionError):
    """The server refuses to perform the request."""

    default_kind = DavErrorKind.FORBIDDEN


class DavUnauthorizedError(DavError, PermissionError):
    """The server still rejects the credentials after the authentication
    retry.
    """

    default_kind = DavErrorKind.UNAUTHORIZED


class DavProtocolError(DavError, ValueError):
    """The server response does not conform to the webDAV protocol."""

    default_kind = DavErrorKind.PROTOCOL


class DavTransportError(DavError, ConnectionError):
    """The HTTP exchange could not be completed."""

    default_kind = DavErrorKind.TRANSPORT


class DavTimeoutError(DavTransportError, TimeoutError):
    """The deadline of the operation expired."""


class DavCancelledError(DavTransportError):
    """The operation was cancelled by the caller."""


_STATUS_KINDS: dict[int, DavErrorKind] = {
    HTTPStatus.NOT_FOUND: DavErrorKind.NOT_FOUND,
    HTTPStatus.GONE: DavErrorKind.NOT_FOUND,
    HTTPStatus.CONFLICT: DavErrorKind.CONFLICT,
    HTTPStatus.PRECONDITION_FAILED: DavErrorKind.CONFLICT,
    HTTPStatus.FORBIDDEN: DavErrorKind.FORBIDDEN,
    HTTPStatus.UNAUTHORIZED: DavErrorKind.UNAUTHORIZED,
}

_KIND_ERRORS: dict[DavErrorKind, type[DavError]] = {
    DavErrorKind.NOT_FOUND: DavNotFoundError,
    DavErrorKind.CONFLICT: DavConflictError,
    DavErrorKind.FORBIDDEN: DavForbiddenError,
    DavErrorKind.UNAUTHORIZED: DavUnauthorizedError,
    DavErrorKind.PROTOCOL: DavProtocolError,
    DavErrorKind.TRANSPORT: DavTransportError,
    DavErrorKind.GENERIC: DavError,
}


def classify_status(status: int) -> DavErrorKind:
    """Return the kind of error an unexpected HTTP status denotes.

    Parameters
    ----------
    status : `int`
        HTTP status code of a response, e.g. 404.

    Returns
    -------
    kind : `DavErrorKind`
        `DavErrorKind.PROTOCOL` for success statuses, which the operation
        does not expect. `DavErrorKind.GENERIC` for statuses which are not
        specifically classified.
    """
    if 200 <= status < 300:
        return DavErrorKind.PROTOCOL

    return _STATUS_KINDS.get(status, DavErrorKind.GENERIC)


def make_status_error(
    method: str,
    path: str,
    status: int,
    reason: str | None = None,
    detail: str | None = None,
) -> DavError:
    """Build the error to raise for an unexpected response status.

    Parameters
    ----------
    method : `str`
        HTTP method of the request, e.g. 'MKCOL'.
    path : `str`
        Path of the target resource.
    status : `int`
        Status code of the response.
    reason : `str`, optional
        Reason phrase of the response.
    detail : `str`, optional
        Additional information to include in the message, e.g. an excerpt
        of the response body.

    Returns
    -------
    error : `DavError`
        An instance of the `DavError` subclass matching the status kind.
    """
    kind = classify_status(status)
    prefix = "unexpected status" if kind is DavErrorKind.PROTOCOL else "status"
    message = f"{method} {path}: {prefix} {status} {reason or ''}".rstrip()
    if detail:
        message = f"{message} [{detail}]"

    return _KIND_ERRORS[kind](message, kind=kind, status=status, method=method, path=path, reason=reason)


def is_not_found(err: BaseException | None) -> bool:
    """Return True if `err` reports that a resource does not exist."""
    return isinstance(err, DavError) and err.kind is DavErrorKind.NOT_FOUND


def is_error_code(err: BaseException | None, status: int) -> bool:
    """Return True if `err` was caused by a response with HTTP `status`."""
    return isinstance(err, DavError) and err.status == status
