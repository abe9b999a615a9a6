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

"""Thread-safe client for webDAV servers."""

from ._resourceHandles import DavReadStream
from .auth import DavAuthScheme
from .config import DavConfig, DavConfigPool
from .context import DavContext
from .dav import DavClient
from .errors import *
from .propfind import DavResourceInfo
from .version import *
