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
    "BasicAuthorizer",
    "DavAuthNegotiator",
    "DavAuthScheme",
    "DigestAuthorizer",
    "parse_challenges",
)

import base64
import enum
import hashlib
import logging
import os
import re
import threading
from collections.abc import Callable, Iterable

# Use the same logger than `dav.py`.
log = logging.getLogger(f"""{__name__.replace(".auth", ".dav")}""")


class DavAuthScheme(enum.Enum):
    """Authentication schemes a client can negotiate with a server."""

    NONE = "none"
    BASIC = "basic"
    DIGEST = "digest"


# Regular expression matching either an authentication scheme or an
# authentication parameter (of the form token=value or token="value") in
# the value of a 'WWW-Authenticate' header.
_challenge_item_rex = re.compile(
    r"""\s*([!#$%&'*+.^_`|~0-9A-Za-z-]+)(?:\s*=\s*("(?:[^"\\]|\\.)*"|[^\s,]*))?\s*,?"""
)


def _unquote(value: str) -> str:
    if len(value) >= 2 and value[0] == value[-1] == '"':
        return re.sub(r"\\(.)", r"\1", value[1:-1])

    return value


def _quote(value: str) -> str:
    return '"' + value.replace("\\", "\\\\").replace('"', '\\"') + '"'


def parse_challenges(headers: Iterable[str]) -> list[tuple[str, dict[str, str]]]:
    """Parse the values of 'WWW-Authenticate' response headers.

    Parameters
    ----------
    headers : `~collections.abc.Iterable` [`str`]
        Values of all the 'WWW-Authenticate' headers of a response. Each
        value may contain several challenges, e.g.

            Digest realm="dav", qop="auth", nonce="1234", Basic realm="dav"

    Returns
    -------
    challenges : `list` [`tuple` [`str`, `dict` [`str`, `str`]]]
        The challenges in the order they were found. The first item of each
        tuple is the lowercased scheme name and the second the challenge
        parameters, keyed by their lowercased name.
    """
    challenges: list[tuple[str, dict[str, str]]] = []
    for header in headers:
        pos = 0
        while pos < len(header):
            match = _challenge_item_rex.match(header, pos)
            if match is None or match.end() == pos:
                # Skip characters we don't understand.
                pos += 1
                continue

            pos = match.end()
            name, value = match.group(1), match.group(2)
            if value is None:
                challenges.append((name.lower(), {}))
            elif challenges:
                challenges[-1][1][name.lower()] = _unquote(value)

    return challenges


class BasicAuthorizer:
    """Compute the value of the 'Authorization' header for the Basic
    authentication scheme (RFC 7617).

    Parameters
    ----------
    username : `str`
        User name.
    password : `str`
        Password.
    """

    scheme = DavAuthScheme.BASIC

    def __init__(self, username: str, password: str) -> None:
        credentials = f"{username}:{password}".encode()
        self._header: str = f"Basic {base64.b64encode(credentials).decode('ascii')}"

    def authorize(self, method: str, uri: str) -> str:
        """Return the value of the 'Authorization' header for a request."""
        return self._header


class DigestAuthorizer:
    """Compute the value of the 'Authorization' header for the Digest
    authentication scheme (RFC 2617, RFC 7616).

    Parameters
    ----------
    username : `str`
        User name.
    password : `str`
        Password.
    challenge : `dict` [`str`, `str`]
        Parameters of the 'Digest' challenge sent by the server, as returned
        by `parse_challenges`.

    Raises
    ------
    ValueError
        If the challenge has no nonce, or requires an unsupported algorithm
        or quality of protection.

    Notes
    -----
    Instances of this class are thread-safe: the nonce count is incremented
    atomically for each computed header.
    """

    scheme = DavAuthScheme.DIGEST

    _HASHES: dict[str, Callable[..., hashlib._Hash]] = {
        "MD5": hashlib.md5,
        "MD5-SESS": hashlib.md5,
        "SHA-256": hashlib.sha256,
        "SHA-256-SESS": hashlib.sha256,
    }

    def __init__(self, username: str, password: str, challenge: dict[str, str]) -> None:
        if "nonce" not in challenge:
            raise ValueError("Digest challenge without nonce")

        self._username: str = username
        self._password: str = password
        self._realm: str = challenge.get("realm", "")
        self._nonce: str = challenge["nonce"]
        self._opaque: str | None = challenge.get("opaque")
        self._algorithm: str | None = challenge.get("algorithm")
        algorithm = "MD5" if self._algorithm is None else self._algorithm.upper()
        if algorithm not in self._HASHES:
            raise ValueError(f"unsupported Digest algorithm {self._algorithm}")

        self._hash = self._HASHES[algorithm]
        self._session: bool = algorithm.endswith("-SESS")

        # Only qop="auth" is supported. Servers which don't advertise any
        # qop expect the RFC 2069 computation.
        qops = [qop.strip().lower() for qop in challenge.get("qop", "").split(",") if qop.strip()]
        if qops and "auth" not in qops:
            raise ValueError(f"unsupported Digest quality of protection {qops}")

        self._qop: str | None = "auth" if qops else None
        self._lock = threading.Lock()
        self._nonce_count: int = 0

    def _h(self, data: str) -> str:
        return self._hash(data.encode("utf-8")).hexdigest()

    def authorize(self, method: str, uri: str) -> str:
        """Return the value of the 'Authorization' header for a request.

        Parameters
        ----------
        method : `str`
            Request method, e.g. 'PROPFIND'.
        uri : `str`
            Request target as sent in the request line, i.e. the
            percent-encoded path and query of the request URL.
        """
        with self._lock:
            self._nonce_count += 1
            nc = f"{self._nonce_count:08x}"

        cnonce = os.urandom(8).hex()
        ha1 = self._h(f"{self._username}:{self._realm}:{self._password}")
        if self._session:
            ha1 = self._h(f"{ha1}:{self._nonce}:{cnonce}")

        ha2 = self._h(f"{method}:{uri}")
        if self._qop is None:
            response = self._h(f"{ha1}:{self._nonce}:{ha2}")
        else:
            response = self._h(f"{ha1}:{self._nonce}:{nc}:{cnonce}:{self._qop}:{ha2}")

        fields = [
            f"username={_quote(self._username)}",
            f"realm={_quote(self._realm)}",
            f"nonce={_quote(self._nonce)}",
            f"uri={_quote(uri)}",
            f"response={_quote(response)}",
        ]
        if self._algorithm is not None:
            fields.append(f"algorithm={self._algorithm}")

        if self._opaque is not None:
            fields.append(f"opaque={_quote(self._opaque)}")

        if self._qop is not None:
            fields.extend([f"qop={self._qop}", f"nc={nc}", f"cnonce={_quote(cnonce)}"])

        return "Digest " + ", ".join(fields)


class DavAuthNegotiator:
    """Negotiate the authentication scheme to use with a server and attach
    credentials to requests.

    Parameters
    ----------
    username : `str`, optional
        User name. If `None`, the client is anonymous and authentication
        challenges can't be answered.
    password : `str`, optional
        Password.

    Notes
    -----
    The negotiated scheme is cached in a single slot shared by all the
    requests of a client. The slot is protected by a lock so instances of
    this class are thread-safe. No 'Authorization' header is produced until
    a scheme is negotiated, i.e. until the server sends a challenge.
    """

    def __init__(self, username: str | None = None, password: str | None = None) -> None:
        self._username: str | None = username
        self._password: str = "" if password is None else password
        self._lock = threading.Lock()
        self._authorizer: BasicAuthorizer | DigestAuthorizer | None = None

    @property
    def has_credentials(self) -> bool:
        return self._username is not None

    @property
    def username(self) -> str | None:
        return self._username

    @property
    def scheme(self) -> DavAuthScheme:
        """Currently negotiated authentication scheme."""
        authorizer = self.current()
        return DavAuthScheme.NONE if authorizer is None else authorizer.scheme

    def current(self) -> BasicAuthorizer | DigestAuthorizer | None:
        """Return the authorizer in the cache slot, if any."""
        with self._lock:
            return self._authorizer

    def compare_and_set(
        self,
        expected: BasicAuthorizer | DigestAuthorizer | None,
        new: BasicAuthorizer | DigestAuthorizer | None,
    ) -> bool:
        """Replace the cached authorizer by `new` only if the cache slot still
        holds `expected`.

        Returns
        -------
        replaced : `bool`
            True if the slot was updated.
        """
        with self._lock:
            if self._authorizer is not expected:
                return False

            self._authorizer = new
            return True

    def authorization(self, method: str, uri: str) -> str | None:
        """Return the value of the 'Authorization' header to attach to a
        request, or `None` if no scheme has been negotiated yet.

        Parameters
        ----------
        method : `str`
            Request method.
        uri : `str`
            Percent-encoded path and query of the request URL.
        """
        authorizer = self.current()
        return None if authorizer is None else authorizer.authorize(method, uri)

    def negotiate(self, challenges: Iterable[str]) -> BasicAuthorizer | DigestAuthorizer | None:
        """Select an authentication scheme among the challenges sent by the
        server in a '401 Unauthorized' response and cache it.

        Digest is preferred over Basic when both are offered.

        Parameters
        ----------
        challenges : `~collections.abc.Iterable` [`str`]
            Values of the 'WWW-Authenticate' headers of the response.

        Returns
        -------
        authorizer : `BasicAuthorizer`, `DigestAuthorizer` or `None`
            The authorizer stored in the cache slot if a scheme was
            negotiated and the request is worth retrying. `None` if this
            negotiator has no credentials or the server offers no supported
            scheme.
        """
        username = self._username
        if username is None:
            log.debug("authentication requested by server but no credentials configured")
            return None

        parsed = parse_challenges(challenges)
        authorizer: BasicAuthorizer | DigestAuthorizer | None = None
        for scheme, params in parsed:
            if scheme == "digest":
                try:
                    authorizer = DigestAuthorizer(username, self._password, params)
                    break
                except ValueError as e:
                    log.debug("ignoring Digest challenge: %s", e)

        if authorizer is None and any(scheme == "basic" for scheme, _ in parsed):
            authorizer = BasicAuthorizer(username, self._password)

        if authorizer is None:
            log.debug("no supported authentication scheme in challenges %s", [s for s, _ in parsed])
            return None

        with self._lock:
            self._authorizer = authorizer

        log.debug("negotiated %s authentication for user %s", authorizer.scheme.value, username)
        return authorizer
