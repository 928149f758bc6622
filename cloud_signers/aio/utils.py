#  Copyright The cloud-signers Authors. All Rights Reserved.
#  SPDX-License-Identifier: Apache-2.0
import json
from collections.abc import Mapping
from typing import Any

from .._http import URI, Field, Fields, HTTPRequest, HTTPResponse
from ..exceptions import AuthorizationError, CallError
from ..interfaces.http import HTTPClient

_RETRYABLE_STATUSES = frozenset({408, 429, 500, 502, 503, 504})


def raise_for_status(response: HTTPResponse, *, context: str) -> None:
    """Raise the error matching a non-2xx response.

    :param context: The method and resource, included in the message.
    :raises AuthorizationError: On 401 and 403.
    :raises CallError: On any other non-2xx status.
    """
    if 200 <= response.status < 300:
        return
    if response.status in (401, 403):
        raise AuthorizationError(
            f"{context} was rejected with status {response.status}",
            status=response.status,
        )
    raise CallError(
        f"{context} failed with status {response.status}",
        fault="client" if response.status < 500 else "server",
        is_retry_safe=response.status in _RETRYABLE_STATUSES,
        is_throttling_error=response.status == 429,
    )


def json_request(
    method: str,
    destination: URI,
    document: Mapping[str, Any] | None = None,
    *,
    headers: Mapping[str, str] | None = None,
) -> HTTPRequest:
    """Build a request with an optional JSON body."""
    fields = Fields([Field(name=k, values=[v]) for k, v in (headers or {}).items()])
    body = None
    if document is not None:
        body = json.dumps(document).encode("utf-8")
        fields.set_field(Field(name="Content-Type", values=["application/json"]))
    return HTTPRequest(method=method, destination=destination, fields=fields, body=body)


async def send_json(
    http_client: HTTPClient, request: HTTPRequest
) -> tuple[HTTPResponse, dict[str, Any]]:
    """Send ``request`` and decode the JSON document it returns.

    An empty body decodes to an empty dict.
    """
    response = await http_client.send(request)
    context = f"{request.method} {request.destination.path or '/'}"
    return response, read_json(response, context=context)


def read_json(response: HTTPResponse, *, context: str) -> dict[str, Any]:
    """Check the status of ``response`` and decode its JSON document.

    An empty body decodes to an empty dict.
    """
    raise_for_status(response, context=context)
    if not response.body:
        return {}
    return json.loads(response.body)
