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

__all__ = ("DavConfig", "DavConfigPool", "expand_vars", "make_retry")

import logging
import os
import random
import threading
from http import HTTPStatus
from typing import Any

import yaml
from urllib3.util import Retry

from .davutils import normalize_url

log = logging.getLogger(__name__)


class DavConfig:
    """Configurable settings a webDAV client must use when interacting with a
    particular storage endpoint.

    Parameters
    ----------
    config : `dict[str, Any]`, optional
        Dictionary of configurable settings for the webdav endpoint which
        base URL is `config["base_url"]`.

        For instance, if `config["base_url"]` is

            "davs://webdav.example.org:1234/"

        any client for a URL like

            "davs://webdav.example.org:1234/path/to/any/dir"

        will use the settings in this configuration.
    """

    # Timeout in seconds to establish a network connection with the remote
    # server.
    DEFAULT_TIMEOUT_CONNECT: float = 10.0

    # Timeout in seconds to read the response to a request sent to a server.
    # It must be large enough to allow for upload and download of files
    # of typical size the webdav client supports.
    DEFAULT_TIMEOUT_READ: float = 300.0

    # Maximum number of network connections to persist against a single
    # "host:port" pair. If the client needs to issue more simultaneous
    # requests than this number, additional network connections will be
    # created but won't be persisted after use.
    DEFAULT_PERSISTENT_CONNECTIONS_PER_HOST: int = 20

    # Size of the buffer (in mebibytes, i.e. 1024*1024 bytes) the webdav
    # client will use when sending requests and receiving responses.
    DEFAULT_BUFFER_SIZE: int = 5

    # Number of times the transport retries requests on connection errors,
    # read errors and selected 5xx statuses. Zero means requests are sent
    # exactly once: retrying is the caller's business.
    DEFAULT_RETRIES: int = 0

    # Minimal and maximal retry backoff (in seconds) for the transport to
    # compute the wait time before retrying a request.
    DEFAULT_RETRY_BACKOFF_MIN: float = 1.0
    DEFAULT_RETRY_BACKOFF_MAX: float = 3.0

    # Maximum number of redirections to follow for a single request.
    DEFAULT_REDIRECTS: int = 10

    # Path to a directory or certificate bundle file where the certificates
    # of the trusted certificate authorities can be found. If None, the
    # certificates trusted by the system are used.
    DEFAULT_TRUSTED_AUTHORITIES: str | None = None

    # Path to the client certificate and associated private key the webdav
    # client must present to the server for authentication purposes.
    # If None, no client certificate is presented.
    DEFAULT_USER_CERT: str | None = None
    DEFAULT_USER_KEY: str | None = None

    # Credentials to answer Basic or Digest authentication challenges.
    # Credentials given explicitly to the client take precedence.
    DEFAULT_USERNAME: str | None = None
    DEFAULT_PASSWORD: str | None = None

    # If True, writing a file or copying/moving a resource to a destination
    # whose parent collection does not exist creates the missing parent
    # collections and retries the request once.
    DEFAULT_CREATE_PARENTS: bool = True

    # If this option is set to True, memory usage is computed and reported
    # when executing in debug mode. Computing memory usage is costly, so only
    # set this when debugging.
    DEFAULT_COLLECT_MEMORY_USAGE: bool = False

    def __init__(self, config: dict[str, Any] | None = None) -> None:
        if config is None:
            config = {}

        if (base_url := expand_vars(config.get("base_url"))) is None:
            self._base_url = "_default_"
        else:
            self._base_url = normalize_url(base_url, preserve_path=False)

        self._timeout_connect: float = float(config.get("timeout_connect", DavConfig.DEFAULT_TIMEOUT_CONNECT))
        self._timeout_read: float = float(config.get("timeout_read", DavConfig.DEFAULT_TIMEOUT_READ))
        self._persistent_connections_per_host: int = int(
            config.get(
                "persistent_connections_per_host",
                DavConfig.DEFAULT_PERSISTENT_CONNECTIONS_PER_HOST,
            )
        )
        self._buffer_size: int = 1_048_576 * int(config.get("buffer_size", DavConfig.DEFAULT_BUFFER_SIZE))
        self._retries: int = int(config.get("retries", DavConfig.DEFAULT_RETRIES))
        self._retry_backoff_min: float = float(
            config.get("retry_backoff_min", DavConfig.DEFAULT_RETRY_BACKOFF_MIN)
        )
        self._retry_backoff_max: float = float(
            config.get("retry_backoff_max", DavConfig.DEFAULT_RETRY_BACKOFF_MAX)
        )
        self._redirects: int = int(config.get("redirects", DavConfig.DEFAULT_REDIRECTS))
        self._trusted_authorities: str | None = expand_vars(
            config.get("trusted_authorities", DavConfig.DEFAULT_TRUSTED_AUTHORITIES)
        )
        self._user_cert: str | None = expand_vars(config.get("user_cert", DavConfig.DEFAULT_USER_CERT))
        self._user_key: str | None = expand_vars(config.get("user_key", DavConfig.DEFAULT_USER_KEY))
        self._username: str | None = expand_vars(config.get("username", DavConfig.DEFAULT_USERNAME))
        self._password: str | None = expand_vars(config.get("password", DavConfig.DEFAULT_PASSWORD))
        self._headers: dict[str, str] = {
            str(key): str(value) for key, value in (config.get("headers") or {}).items()
        }
        self._create_parents: bool = bool(config.get("create_parents", DavConfig.DEFAULT_CREATE_PARENTS))
        self._collect_memory_usage: bool = bool(
            config.get("collect_memory_usage", DavConfig.DEFAULT_COLLECT_MEMORY_USAGE)
        )

        if self._retry_backoff_min > self._retry_backoff_max:
            raise ValueError(
                f"""Minimal retry backoff {self._retry_backoff_min} for storage endpoint {self._base_url} """
                f"""is greater than maximal retry backoff {self._retry_backoff_max}"""
            )

    @property
    def base_url(self) -> str:
        return self._base_url

    @property
    def timeout_connect(self) -> float:
        return self._timeout_connect

    @property
    def timeout_read(self) -> float:
        return self._timeout_read

    @property
    def persistent_connections_per_host(self) -> int:
        return self._persistent_connections_per_host

    @property
    def buffer_size(self) -> int:
        return self._buffer_size

    @property
    def retries(self) -> int:
        return self._retries

    @property
    def retry_backoff_min(self) -> float:
        return self._retry_backoff_min

    @property
    def retry_backoff_max(self) -> float:
        return self._retry_backoff_max

    @property
    def redirects(self) -> int:
        return self._redirects

    @property
    def trusted_authorities(self) -> str | None:
        return self._trusted_authorities

    @property
    def user_cert(self) -> str | None:
        return self._user_cert

    @property
    def user_key(self) -> str | None:
        # If no user certificate was specified in the configuration,
        # ignore the private key, even if it was provided.
        if self._user_cert is None:
            return None

        # If we have a user certificate but not a private key, assume the
        # private key is included in the same file as the user certificate.
        return self._user_cert if self._user_key is None else self._user_key

    @property
    def username(self) -> str | None:
        return self._username

    @property
    def password(self) -> str | None:
        return self._password

    @property
    def headers(self) -> dict[str, str]:
        return dict(self._headers)

    @property
    def create_parents(self) -> bool:
        return self._create_parents

    @property
    def collect_memory_usage(self) -> bool:
        return self._collect_memory_usage


class DavConfigPool:
    """Registry of configurable settings for all known webDAV endpoints.

    Parameters
    ----------
    filename : `str`, optional
        Name of an environment variable or path of the file to load the
        configuration from. The path can itself include environment
        variables, e.g. '$HOME/path/to/config.yaml'.

        The configuration file is a YAML file with the structure below:

          - base_url: "davs://webdav1.example.org:1234/"
            timeout_connect: 20.0
            timeout_read: 120.0
            persistent_connections_per_host: 10
            retries: 0
            user_cert: "${X509_USER_PROXY}"
            user_key: "${X509_USER_PROXY}"
            trusted_authorities: "/etc/grid-security/certificates"
            username: "alice"
            password: "${WEBDAV_PASSWORD}"
            headers:
              X-Request-Origin: "batch"
            buffer_size: 5
            create_parents: true
            collect_memory_usage: false

          - base_url: "davs://webdav2.example.org:1234/"
            timeout_connect: 5.0
            ...

        All settings are optional. If no settings are found in the
        configuration file for a particular webDAV endpoint, sensible
        defaults will be used.
    """

    # Environment variable which holds the path of the configuration file
    # used by the default pool.
    CONFIG_ENV_VAR: str = "LSST_WEBDAV_CONFIG"

    _default_pool: DavConfigPool | None = None
    _lock = threading.Lock()

    def __init__(self, filename: str | None = None) -> None:
        # Create a default configuration. This configuration is
        # used when a URL doest not match any of the endpoints in the
        # configuration.
        self._default_config: DavConfig = DavConfig()

        # The key of this dictionary is the URL of the webDAV endpoint,
        # e.g. "https://host.example.org:1234/"
        self._configs: dict[str, DavConfig] = {}

        if filename is None:
            return

        # filename can be the name of an environment variable or a path.
        # A path can include environment variables
        # (e.g. "$HOME/path/to/config.yaml") or "~"
        # (e.g. "~/path/to/config.yaml")
        if (value := os.getenv(filename)) is not None:
            filename = value

        filename = os.path.expanduser(os.path.expandvars(filename))
        if not os.path.isfile(filename):
            log.debug("webDAV configuration file %s not found, using defaults", filename)
            return

        log.debug("loading webDAV configuration from %s", filename)
        with open(filename) as file:
            for config_item in yaml.safe_load(file) or []:
                config = DavConfig(config_item)
                if config.base_url not in self._configs:
                    self._configs[config.base_url] = config
                else:
                    # We already have a configuration for the same
                    # endpoint. That is likely a human error in
                    # the configuration file.
                    raise ValueError(
                        f"""configuration file {filename} contains two configurations for """
                        f"""endpoint {config.base_url}"""
                    )

    @classmethod
    def default(cls) -> DavConfigPool:
        """Return the process-wide pool, loaded from the file designated by
        the environment variable ``LSST_WEBDAV_CONFIG``, if any.

        The pool is created the first time this method is called. Creation
        is thread-safe.
        """
        if cls._default_pool is None:
            with cls._lock:
                if cls._default_pool is None:
                    cls._default_pool = DavConfigPool(cls.CONFIG_ENV_VAR)

        return cls._default_pool

    @classmethod
    def _destroy(cls) -> None:
        """Destroy the process-wide pool.

        Helper method to be used in tests to reset global configuration.
        """
        with cls._lock:
            cls._default_pool = None

    def get_config_for_url(self, url: str) -> DavConfig:
        """Return the configuration to use a webDAV client when interacting
        with the server which hosts the resource at `url`.

        Parameters
        ----------
        url : `str`
            URL for which to obtain a configuration.
        """
        # Select the configuration for the endpoint of the provided URL.
        normalized_url: str = normalize_url(url, preserve_path=False)
        if (config := self._configs.get(normalized_url)) is not None:
            return config

        # No config was found for the specified URL. Use the default.
        return self._default_config


def make_retry(config: DavConfig) -> Retry:
    """Create a ``urllib3.util.Retry`` object from settings in `config`.

    Parameters
    ----------
    config : `DavConfig`
        Configurable settings for a webDAV storage endpoint.

    Returns
    -------
    retry : `urllib3.util.Retry`
        Retry object to be used when creating a ``urllib3.PoolManager``.

    Notes
    -----
    The returned object never turns a response status into an exception:
    when the retries are exhausted the last response is returned to the
    client which classifies it.
    """
    backoff_min: float = config.retry_backoff_min
    backoff_max: float = config.retry_backoff_max
    retry = Retry(
        # Let the specific counts below decide.
        total=None,
        # How many connection-related errors to retry on.
        connect=config.retries,
        # How many times to retry on read errors.
        read=config.retries,
        # How many redirections to follow.
        redirect=config.redirects,
        # How many times to retry on bad status codes.
        status=config.retries,
        # Errors which are none of the above.
        other=config.retries,
        # Backoff factor to apply between attempts after the second try
        # (seconds). Compute a random jitter to prevent all the clients which
        # started at the same time to overwhelm the server by sending
        # requests at the same time.
        backoff_factor=backoff_min + (backoff_max - backoff_min) * random.random(),
        # Set of uppercased HTTP method verbs that we should retry on.
        # We only automatically retry idempotent requests.
        allowed_methods=frozenset(
            [
                "DELETE",
                "GET",
                "HEAD",
                "OPTIONS",
                "PROPFIND",
                "PUT",
            ]
        ),
        # HTTP status codes that we should force a retry on.
        status_forcelist=frozenset(
            [
                HTTPStatus.TOO_MANY_REQUESTS,  # 429
                HTTPStatus.BAD_GATEWAY,  # 502
                HTTPStatus.SERVICE_UNAVAILABLE,  # 503
                HTTPStatus.GATEWAY_TIMEOUT,  # 504
            ]
        ),
        # Return the last response instead of raising when the status
        # retries are exhausted.
        raise_on_status=False,
        # Whether to respect "Retry-After" header on status codes defined
        # above.
        respect_retry_after_header=True,
    )
    return retry


def expand_vars(path: str | None) -> str | None:
    """Expand the environment variables in `path` and return the path with
    the value of the variable expanded.

    Parameters
    ----------
    path : `str` or `None`
        Abolute or relative path which may include an environment variable
        (e.g. '$HOME/path/to/my/file').

    Returns
    -------
    path: `str`
        The path with the values of the environment variables expanded.
    """
    return None if path is None else os.path.expandvars(str(path))
