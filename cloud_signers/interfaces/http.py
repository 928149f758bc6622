#  Copyright The cloud-signers Authors. All Rights Reserved.
#  SPDX-License-Identifier: Apache-2.0
from typing import Protocol

from .._http import HTTPRequest, HTTPResponse


class HTTPClient(Protocol):
    """An asynchronous HTTP client interface.

    Transport is supplied by the caller; this package only builds requests and reads
    the few response fields that signing depends on.
    """

    async def send(self, request: HTTPRequest) -> HTTPResponse:
        """Send HTTP request over the wire and return the response.

        :param request: The request including destination URI, fields, payload.
        """
        ...
