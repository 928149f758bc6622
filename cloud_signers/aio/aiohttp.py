#  Copyright The cloud-signers Authors. All Rights Reserved.
#  SPDX-License-Identifier: Apache-2.0
from itertools import chain
from urllib.parse import urlunparse

import aiohttp
from yarl import URL

from .._http import URI, Field, Fields, HTTPRequest, HTTPResponse
from ..interfaces.http import HTTPClient


class AIOHTTPClient(HTTPClient):
    """Implementation of :py:class:`.interfaces.http.HTTPClient` using aiohttp."""

    def __init__(self, *, _session: aiohttp.ClientSession | None = None) -> None:
        self._session = _session

    async def send(self, request: HTTPRequest) -> HTTPResponse:
        """Send HTTP request using aiohttp client.

        :param request: The request including destination URI, fields, payload.
        """
        headers_list = list(
            chain.from_iterable(fld.as_tuples() for fld in request.fields)
        )
        async with self._get_session().request(
            method=request.method,
            url=self._serialize_uri(request.destination),
            headers=headers_list,
            data=request.body,
        ) as resp:
            return await self._marshal_response(resp)

    async def close(self) -> None:
        if self._session is not None:
            await self._session.close()
            self._session = None

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None:
            self._session = aiohttp.ClientSession()
        return self._session

    def _serialize_uri(self, uri: URI) -> URL:
        components = (uri.scheme, uri.netloc, uri.path or "", "", uri.query, "")
        return URL(urlunparse(components), encoded=True)

    async def _marshal_response(
        self, aiohttp_resp: aiohttp.ClientResponse
    ) -> HTTPResponse:
        """Convert a ``aiohttp.ClientResponse`` to a :py:class:`HTTPResponse`."""
        headers = Fields()
        for header_name, header_val in aiohttp_resp.headers.items():
            try:
                headers[header_name].add(header_val)
            except KeyError:
                headers[header_name] = Field(name=header_name, values=[header_val])

        return HTTPResponse(
            status=aiohttp_resp.status,
            fields=headers,
            body=await aiohttp_resp.read(),
            reason=aiohttp_resp.reason,
        )
