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

import os
import tempfile
import time
import unittest
import unittest.mock

from lsst.webdav.config import DavConfig, DavConfigPool, expand_vars, make_retry
from lsst.webdav.context import DavContext
from lsst.webdav.errors import DavCancelledError, DavTimeoutError

TESTDIR = os.path.abspath(os.path.dirname(__file__))


class DavConfigTestCase(unittest.TestCase):
    """Test the settings of a webDAV endpoint."""

    def test_defaults(self):
        config = DavConfig()
        self.assertEqual(config.base_url, "_default_")
        self.assertEqual(config.timeout_connect, DavConfig.DEFAULT_TIMEOUT_CONNECT)
        self.assertEqual(config.timeout_read, DavConfig.DEFAULT_TIMEOUT_READ)
        self.assertEqual(config.persistent_connections_per_host, 20)
        self.assertEqual(config.buffer_size, 5 * 1024 * 1024)
        self.assertEqual(config.retries, 0)
        self.assertEqual(config.redirects, 10)
        self.assertIsNone(config.trusted_authorities)
        self.assertIsNone(config.user_cert)
        self.assertIsNone(config.user_key)
        self.assertIsNone(config.username)
        self.assertIsNone(config.password)
        self.assertEqual(config.headers, {})
        self.assertTrue(config.create_parents)
        self.assertFalse(config.collect_memory_usage)

    def test_settings(self):
        with unittest.mock.patch.dict(os.environ, {"WEBDAV_TEST_PASSWORD": "s3cret"}):
            config = DavConfig(
                {
                    "base_url": "davs://webdav.example.org:1234/some/path",
                    "timeout_connect": 1,
                    "timeout_read": "2.5",
                    "buffer_size": 1,
                    "username": "alice",
                    "password": "${WEBDAV_TEST_PASSWORD}",
                    "headers": {"X-Request-Origin": "batch"},
                    "create_parents": False,
                    "user_cert": "/path/to/cert.pem",
                }
            )

        # Only the scheme, host and port of the base URL are kept.
        self.assertEqual(config.base_url, "https://webdav.example.org:1234/")
        self.assertEqual(config.timeout_connect, 1.0)
        self.assertEqual(config.timeout_read, 2.5)
        self.assertEqual(config.buffer_size, 1024 * 1024)
        self.assertEqual(config.username, "alice")
        self.assertEqual(config.password, "s3cret")
        self.assertEqual(config.headers, {"X-Request-Origin": "batch"})
        self.assertFalse(config.create_parents)

        # The private key defaults to the certificate file.
        self.assertEqual(config.user_cert, "/path/to/cert.pem")
        self.assertEqual(config.user_key, "/path/to/cert.pem")

    def test_user_key_without_cert(self):
        config = DavConfig({"user_key": "/path/to/key.pem"})
        self.assertIsNone(config.user_key)

    def test_invalid_backoff(self):
        with self.assertRaises(ValueError):
            DavConfig({"retry_backoff_min": 5.0, "retry_backoff_max": 1.0})

    def test_make_retry(self):
        retry = make_retry(DavConfig({"retries": 3, "redirects": 2}))
        self.assertIsNone(retry.total)
        self.assertEqual(retry.connect, 3)
        self.assertEqual(retry.read, 3)
        self.assertEqual(retry.status, 3)
        self.assertEqual(retry.redirect, 2)
        self.assertFalse(retry.raise_on_status)
        self.assertIn("PROPFIND", retry.allowed_methods)
        self.assertNotIn("MOVE", retry.allowed_methods)
        self.assertIn(503, retry.status_forcelist)

        # Backoff factor lies between the configured bounds.
        retry = make_retry(DavConfig({"retry_backoff_min": 2.0, "retry_backoff_max": 4.0}))
        self.assertGreaterEqual(retry.backoff_factor, 2.0)
        self.assertLessEqual(retry.backoff_factor, 4.0)

        # No retries by default.
        retry = make_retry(DavConfig())
        self.assertEqual(retry.connect, 0)
        self.assertEqual(retry.read, 0)

    def test_expand_vars(self):
        self.assertIsNone(expand_vars(None))
        with unittest.mock.patch.dict(os.environ, {"MY_TEST_DIR": "/tmp/dir"}):
            self.assertEqual(expand_vars("$MY_TEST_DIR/file"), "/tmp/dir/file")


class DavConfigPoolTestCase(unittest.TestCase):
    """Test the registry of endpoint settings."""

    config_contents = """
- base_url: "davs://host1.example.org:1234/"
  timeout_connect: 1.0
  retries: 2

- base_url: "http://host2.example.org"
  create_parents: false
  headers:
    X-Test: "yes"
"""

    def setUp(self):
        self.tmpdir = tempfile.TemporaryDirectory(dir=TESTDIR)
        self.filename = os.path.join(self.tmpdir.name, "webdav.yaml")
        with open(self.filename, "w") as file:
            file.write(self.config_contents)

        DavConfigPool._destroy()

    def tearDown(self):
        DavConfigPool._destroy()
        self.tmpdir.cleanup()

    def test_get_config_for_url(self):
        pool = DavConfigPool(self.filename)

        config = pool.get_config_for_url("davs://host1.example.org:1234/path/to/file")
        self.assertEqual(config.timeout_connect, 1.0)
        self.assertEqual(config.retries, 2)

        config = pool.get_config_for_url("http://host2.example.org/dir/")
        self.assertFalse(config.create_parents)
        self.assertEqual(config.headers, {"X-Test": "yes"})

        # Unknown endpoints get the default configuration. A different
        # port is a different endpoint.
        for url in ("https://unknown.example.org/", "davs://host1.example.org:4321/"):
            config = pool.get_config_for_url(url)
            self.assertEqual(config.base_url, "_default_")
            self.assertEqual(config.timeout_connect, DavConfig.DEFAULT_TIMEOUT_CONNECT)

    def test_filename_from_environment(self):
        with unittest.mock.patch.dict(os.environ, {"WEBDAV_TEST_CONFIG": self.filename}):
            pool = DavConfigPool("WEBDAV_TEST_CONFIG")

        self.assertEqual(pool.get_config_for_url("davs://host1.example.org:1234/").retries, 2)

    def test_missing_file(self):
        pool = DavConfigPool(os.path.join(self.tmpdir.name, "missing.yaml"))
        self.assertEqual(pool.get_config_for_url("https://host1.example.org/").base_url, "_default_")

    def test_duplicate_endpoint(self):
        with open(self.filename, "w") as file:
            file.write(
                """
- base_url: "davs://host1.example.org:1234/a"
- base_url: "https://host1.example.org:1234/b"
"""
            )

        with self.assertRaises(ValueError):
            DavConfigPool(self.filename)

    def test_default_pool(self):
        with unittest.mock.patch.dict(os.environ, {DavConfigPool.CONFIG_ENV_VAR: self.filename}):
            pool = DavConfigPool.default()
            self.assertIs(DavConfigPool.default(), pool)
            self.assertEqual(pool.get_config_for_url("davs://host1.example.org:1234/").retries, 2)

        DavConfigPool._destroy()
        with unittest.mock.patch.dict(os.environ, clear=False):
            os.environ.pop(DavConfigPool.CONFIG_ENV_VAR, None)
            pool = DavConfigPool.default()
            self.assertEqual(pool.get_config_for_url("davs://host1.example.org:1234/").retries, 0)


class DavContextTestCase(unittest.TestCase):
    """Test the cancellation and deadline token."""

    def test_no_deadline(self):
        ctx = DavContext()
        self.assertIsNone(ctx.deadline)
        self.assertIsNone(ctx.remaining())
        ctx.check()

        timeout = ctx.timeout(10.0, 300.0)
        self.assertEqual(timeout.connect_timeout, 10.0)
        self.assertEqual(timeout.read_timeout, 300.0)

    def test_deadline(self):
        ctx = DavContext(timeout=60.0)
        self.assertLessEqual(ctx.remaining(), 60.0)
        self.assertGreater(ctx.remaining(), 50.0)
        ctx.check()

        # Timeouts are bounded by the deadline.
        timeout = ctx.timeout(10.0, 300.0)
        self.assertLessEqual(timeout.total, 60.0)
        self.assertEqual(timeout.connect_timeout, 10.0)

    def test_expired(self):
        ctx = DavContext(timeout=0.01)
        time.sleep(0.05)
        self.assertEqual(ctx.remaining(), 0.0)
        with self.assertRaises(DavTimeoutError):
            ctx.check()

        with self.assertRaises(DavTimeoutError):
            ctx.timeout(10.0, 300.0)

    def test_cancel(self):
        ctx = DavContext()
        self.assertFalse(ctx.cancelled)
        ctx.cancel()
        ctx.cancel()
        self.assertTrue(ctx.cancelled)
        with self.assertRaises(DavCancelledError):
            ctx.check()

    def test_cancel_aborts_attached_responses(self):
        ctx = DavContext()
        resp = unittest.mock.Mock()
        ctx.attach(resp)
        ctx.cancel()
        resp.shutdown.assert_called_once()

        # A detached response is left alone.
        ctx = DavContext()
        other = unittest.mock.Mock()
        ctx.attach(other)
        ctx.detach(other)
        ctx.cancel()
        other.shutdown.assert_not_called()

    def test_attach_after_cancel(self):
        ctx = DavContext()
        ctx.cancel()
        resp = unittest.mock.Mock()
        resp.shutdown.side_effect = ValueError("no socket")
        with self.assertRaises(DavCancelledError):
            ctx.attach(resp)

        resp.close.assert_called_once()


if __name__ == "__main__":
    unittest.main()
