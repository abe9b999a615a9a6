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

__all__ = ("DavProperty", "DavPropfindParser", "DavResourceInfo")

import logging
import posixpath
import re
import xml.etree.ElementTree as eTree
from datetime import datetime

from urllib3.util import parse_url

from .davutils import href_to_path, make_url
from .errors import DavProtocolError

# Use the same logger than `dav.py`.
log = logging.getLogger(f"""{__name__.replace(".propfind", ".dav")}""")


class DavResourceInfo:
    """Attributes of a webDAV file or directory, as reported by the server.

    Parameters
    ----------
    path : `str`
        Absolute, normalized path of the resource relative to the base URL
        of the client, e.g. '/dir/file.txt'.
    url : `str`
        Absolute URL of the resource.
    href : `str`, optional
        Value of the 'href' element the server sent for this resource.
    size : `int`, optional
        Size in bytes. Always 0 for directories.
    is_dir : `bool`, optional
        Whether the resource is a collection.
    last_modified : `datetime`, optional
        Last modification timestamp.
    content_type : `str`, optional
        Media type of the resource.
    etag : `str`, optional
        Entity tag of the resource, including its quotes.
    """

    def __init__(
        self,
        path: str,
        url: str,
        href: str = "",
        size: int = 0,
        is_dir: bool = False,
        last_modified: datetime = datetime.min,
        content_type: str = "",
        etag: str = "",
    ) -> None:
        self._path: str = path
        self._url: str = url
        self._href: str = href
        self._size: int = 0 if is_dir else size
        self._is_dir: bool = is_dir
        self._last_modified: datetime = last_modified
        self._content_type: str = content_type
        self._etag: str = etag

    def __str__(self) -> str:
        return f"""{self._path} {"dir" if self._is_dir else "file"} {self._size} {self._last_modified}"""

    def __repr__(self) -> str:
        return f"DavResourceInfo(path={self._path!r}, is_dir={self._is_dir}, size={self._size})"

    @property
    def name(self) -> str:
        return posixpath.basename(self._path)

    @property
    def path(self) -> str:
        return self._path

    @property
    def url(self) -> str:
        return self._url

    @property
    def href(self) -> str:
        return self._href

    @property
    def size(self) -> int:
        return self._size

    @property
    def is_dir(self) -> bool:
        return self._is_dir

    @property
    def is_file(self) -> bool:
        return not self._is_dir

    @property
    def last_modified(self) -> datetime:
        return self._last_modified

    @property
    def content_type(self) -> str:
        return self._content_type

    @property
    def etag(self) -> str:
        return self._etag


class DavProperty:
    """Helper class to encapsulate select live DAV properties of a single
    resource, as retrieved via a PROPFIND request.

    Parameters
    ----------
    response : `eTree.Element`
        The 'response' element of a multistatus document.

    Raises
    ------
    ValueError
        If `response` has no 'href' element, reports a failure status for
        the resource or has no property with status OK.
    """

    # Regular expression to compare against the 'status' element of a
    # PROPFIND response's 'propstat' element.
    _status_ok_rex = re.compile(r"^\s*HTTP/\S+\s+200(\s.*)?$", re.IGNORECASE | re.DOTALL)

    # Regular expression to compare against the 'status' element of a
    # PROPFIND response's 'response' element.
    _status_success_rex = re.compile(r"^\s*HTTP/\S+\s+2\d\d(\s.*)?$", re.IGNORECASE | re.DOTALL)

    def __init__(self, response: eTree.Element):
        self._href: str = ""
        self._collection: bool = False
        self._getlastmodified: str = ""
        self._getcontentlength: str = ""
        self._getcontenttype: str = ""
        self._getetag: str = ""
        self._parse(response)

    def _parse(self, response: eTree.Element) -> None:
        # Extract 'href'.
        element = response.find("./{DAV:}href")
        if element is None or not (element.text or "").strip():
            raise ValueError(
                "Property 'href' expected but not found in PROPFIND response: "
                f"{eTree.tostring(response, encoding='unicode')}"
            )

        self._href = str(element.text).strip()

        # A failure status for the whole response means there is no such
        # resource to report.
        status = response.find("./{DAV:}status")
        if status is not None and not self._status_success_rex.match(str(status.text)):
            raise ValueError(f"status {(status.text or '').strip()!r} for {self._href}")

        found = status is not None
        for propstat in response.findall("./{DAV:}propstat"):
            # Only extract properties of interest with status OK.
            status = propstat.find("./{DAV:}status")
            if status is None or not self._status_ok_rex.match(str(status.text)):
                continue

            found = True
            for prop in propstat.findall("./{DAV:}prop"):
                if prop.find("./{DAV:}resourcetype/{DAV:}collection") is not None:
                    self._collection = True

                if (element := prop.find("./{DAV:}getlastmodified")) is not None:
                    self._getlastmodified = (element.text or "").strip()

                if (element := prop.find("./{DAV:}getcontentlength")) is not None:
                    self._getcontentlength = (element.text or "").strip()

                if (element := prop.find("./{DAV:}getcontenttype")) is not None:
                    self._getcontenttype = (element.text or "").strip()

                if (element := prop.find("./{DAV:}getetag")) is not None:
                    self._getetag = (element.text or "").strip()

        if not found:
            raise ValueError(f"no property with status OK for {self._href}")

    @property
    def href(self) -> str:
        return self._href

    @property
    def is_dir(self) -> bool:
        return self._collection

    @property
    def size(self) -> int:
        # Force a size of 0 for collections and for values we can't use.
        if self._collection or not self._getcontentlength:
            return 0

        try:
            return max(0, int(self._getcontentlength))
        except ValueError:
            log.debug("ignoring invalid getcontentlength %r for %s", self._getcontentlength, self._href)
            return 0

    @property
    def last_modified(self) -> datetime:
        if not self._getlastmodified:
            return datetime.min

        # Last modified timestamp is of the form:
        # 'Wed, 12 Mar 2025 10:11:13 GMT'
        try:
            return datetime.strptime(self._getlastmodified, "%a, %d %b %Y %H:%M:%S %Z")
        except ValueError:
            log.warning("could not parse getlastmodified %r for %s", self._getlastmodified, self._href)
            return datetime.min

    @property
    def content_type(self) -> str:
        return self._getcontenttype

    @property
    def etag(self) -> str:
        return self._getetag


class DavPropfindParser:
    """Helper class to parse the response body of a PROPFIND request.

    Parameters
    ----------
    base_url : `str`, optional
        Base URL of the client. The path of this URL is stripped from the
        paths of the resources found in the responses.

    Notes
    -----
    Instances of this class hold no state besides the base URL and can be
    shared among threads.
    """

    def __init__(self, base_url: str = "/") -> None:
        self._base_url: str = base_url
        self._base_path: str = parse_url(base_url).path or "/"

    def parse(self, body: bytes) -> list[DavResourceInfo]:
        """Parse the XML-encoded contents of the response body to a webDAV
        PROPFIND request.

        Parameters
        ----------
        body : `bytes`
            XML-encoded response body to a PROPFIND request.

        Returns
        -------
        resources : `list` [ `DavResourceInfo` ]
            One item per 'response' element with a usable 'href', in the
            order the server sent them. May be empty.

        Raises
        ------
        DavProtocolError
            If `body` is not a well-formed XML document or its root element
            is not 'multistatus'.
        """
        # A response body to a PROPFIND request is of the form (indented for
        # readability):
        #
        # <?xml version="1.0" encoding="UTF-8"?>
        # <D:multistatus xmlns:D="DAV:">
        #     <D:response>
        #         <D:href>/path/to/resource</D:href>
        #         <D:propstat>
        #             <D:prop>
        #                 <D:resourcetype>
        #                     <D:collection/>
        #                 </D:resourcetype>
        #                 <D:getlastmodified>
        #                     Fri, 27 Jan 2023 13:59:01 GMT
        #                 </D:getlastmodified>
        #             </D:prop>
        #             <D:status>HTTP/1.1 200 OK</D:status>
        #         </D:propstat>
        #         <D:propstat>
        #             <D:prop><D:getcontentlength/></D:prop>
        #             <D:status>HTTP/1.1 404 Not Found</D:status>
        #         </D:propstat>
        #     </D:response>
        #     <D:response>
        #        ...
        #     </D:response>
        # </D:multistatus>
        try:
            multistatus = eTree.fromstring(body)
        except eTree.ParseError as e:
            raise DavProtocolError(f"Unable to parse response for PROPFIND request: {e}") from e

        if multistatus.tag != "{DAV:}multistatus":
            raise DavProtocolError(
                f"Unexpected root element {multistatus.tag} in response for PROPFIND request"
            )

        resources: list[DavResourceInfo] = []
        for response in multistatus.findall("./{DAV:}response"):
            try:
                property = DavProperty(response)
            except ValueError as e:
                log.warning("skipping PROPFIND response entry: %s", e)
                continue

            resources.append(self._make_resource_info(property))

        return resources

    def _make_resource_info(self, property: DavProperty) -> DavResourceInfo:
        path = href_to_path(property.href, self._base_path)
        return DavResourceInfo(
            path=path,
            url=make_url(self._base_url, path, collection=property.is_dir),
            href=property.href,
            size=property.size,
            is_dir=property.is_dir,
            last_modified=property.last_modified,
            content_type=property.content_type,
            etag=property.etag,
        )
