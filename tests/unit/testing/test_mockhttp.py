#  Copyright The cloud-signers Authors. All Rights Reserved.
#  SPDX-License-Identifier: Apache-2.0

import pytest
from cloud_signers._http import URI, Field, Fields, HTTPRequest
from cloud_signers.testing import MockHTTPClient, MockHTTPClientError


def request(method: str = "GET", body: bytes | None = None) -> HTTPRequest:
    return HTTPRequest(
        method=method, destination=URI(host="test.example.com"), body=body
    )


@pytest.mark.asyncio
async def test_default_response():
    # Test error when no responses are queued
    mock_client = MockHTTPClient()

    with pytest.raises(MockHTTPClientError, match="No responses queued"):
        await mock_client.send(request())


@pytest.mark.asyncio
async def test_queued_responses_fifo():
    mock_client = MockHTTPClient()
    mock_client.add_response(status=404, body=b"not found")
    mock_client.add_response(status=500, body=b"server error")

    response1 = await mock_client.send(request())
    assert response1.status == 404
    assert response1.body == b"not found"

    response2 = await mock_client.send(request())
    assert response2.status == 500
    assert response2.body == b"server error"

    assert mock_client.call_count == 2


@pytest.mark.asyncio
async def test_captured_requests_are_snapshots():
    mock_client = MockHTTPClient()
    mock_client.add_response()
    sent = HTTPRequest(
        method="POST",
        destination=URI(host="test.example.com"),
        fields=Fields([Field(name="Authorization", values=["a"])]),
        body=b'{"name": "test"}',
    )

    await mock_client.send(sent)
    sent.fields.set_field(Field(name="Authorization", values=["b"]))

    (captured,) = mock_client.captured_requests
    assert captured.method == "POST"
    assert captured.body == b'{"name": "test"}'
    assert captured.fields.get_value("Authorization") == "a"


@pytest.mark.asyncio
async def test_queued_errors_are_raised():
    mock_client = MockHTTPClient()
    mock_client.add_error(ConnectionResetError("reset"))

    with pytest.raises(ConnectionResetError):
        await mock_client.send(request())
    assert mock_client.call_count == 1


@pytest.mark.asyncio
async def test_json_response_headers():
    mock_client = MockHTTPClient()
    mock_client.add_json_response({"a": 1}, status=201, headers=[("X-Extra", "1")])

    response = await mock_client.send(request())

    assert response.status == 201
    assert response.body == b'{"a": 1}'
    assert response.fields.get_value("content-type") == "application/json"
    assert response.fields.get_value("x-extra") == "1"
