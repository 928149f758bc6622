#  Copyright The cloud-signers Authors. All Rights Reserved.
#  SPDX-License-Identifier: Apache-2.0

import json
from collections import deque
from copy import deepcopy
from typing import Any

from .._http import HTTPRequest, HTTPResponse, tuples_to_fields
from ..interfaces.http import HTTPClient


class MockHTTPClient(HTTPClient):
    """Implementation of :py:class:`.interfaces.http.HTTPClient` solely for testing
    purposes.

    Responses are queued in FIFO order and requests are captured for inspection.
    """

    def __init__(self) -> None:
        self._response_queue: deque[HTTPResponse | BaseException] = deque()
        self._captured_requests: list[HTTPRequest] = []

    def add_response(
        self,
        status: int = 200,
        headers: list[tuple[str, str]] | None = None,
        body: bytes = b"",
    ) -> None:
        """Queue a response for the next request.

        :param status: HTTP status code.
        :param headers: HTTP response headers as list of (name, value) tuples.
        :param body: Response body as bytes.
        """
        self._response_queue.append(
            HTTPResponse(
                status=status, fields=tuples_to_fields(headers or []), body=body
            )
        )

    def add_json_response(
        self,
        document: Any,
        status: int = 200,
        headers: list[tuple[str, str]] | None = None,
    ) -> None:
        """Queue a response whose body is ``document`` encoded as JSON."""
        self.add_response(
            status=status,
            headers=[("Content-Type", "application/json"), *(headers or [])],
            body=json.dumps(document).encode("utf-8"),
        )

    def add_error(self, error: BaseException) -> None:
        """Queue an exception to be raised by the next request."""
        self._response_queue.append(error)

    async def send(self, request: HTTPRequest) -> HTTPResponse:
        """Send HTTP request and return configured response.

        :param request: The request including destination URI, fields, payload.
        :returns: Pre-configured HTTP response from the queue.
        :raises MockHTTPClientError: If no responses are queued.
        """
        self._captured_requests.append(deepcopy(request))

        if not self._response_queue:
            raise MockHTTPClientError(
                "No responses queued in MockHTTPClient. Use add_response() to queue "
                "responses."
            )
        response = self._response_queue.popleft()
        if isinstance(response, BaseException):
            raise response
        return response

    @property
    def call_count(self) -> int:
        """The number of requests made to this client."""
        return len(self._captured_requests)

    @property
    def captured_requests(self) -> list[HTTPRequest]:
        """The list of all requests captured by this client."""
        return self._captured_requests.copy()

    def __deepcopy__(self, memo: Any) -> "MockHTTPClient":
        return self


class MockHTTPClientError(Exception):
    """Exception raised by MockHTTPClient for test setup issues."""
