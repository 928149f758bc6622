#  Copyright The cloud-signers Authors. All Rights Reserved.
#  SPDX-License-Identifier: Apache-2.0
from unittest.mock import AsyncMock, MagicMock

import pytest
from cloud_signers._http import URI, Field, Fields, HTTPRequest
from cloud_signers.aio.aiohttp import AIOHTTPClient


def test_presigned_query_is_sent_unchanged() -> None:
    uri = URI(
        host="storage.example.com",
        port=8443,
        path="/rest/namespace/c/a%20b",
        query="uid=user&signature=ab%2Bc%2F%3D",
    )
    url = AIOHTTPClient()._serialize_uri(uri)

    assert str(url) == (
        "https://storage.example.com:8443/rest/namespace/c/a%20b"
        "?uid=user&signature=ab%2Bc%2F%3D"
    )
    assert url.raw_query_string == "uid=user&signature=ab%2Bc%2F%3D"


@pytest.mark.asyncio
async def test_send_marshals_response() -> None:
    aiohttp_response = MagicMock()
    aiohttp_response.status = 200
    aiohttp_response.reason = "OK"
    aiohttp_response.headers.items.return_value = [
        ("X-Multi", "1"),
        ("X-Multi", "2"),
        ("Etag", '"e"'),
    ]
    aiohttp_response.read = AsyncMock(return_value=b"body")

    context = MagicMock()
    context.__aenter__ = AsyncMock(return_value=aiohttp_response)
    context.__aexit__ = AsyncMock(return_value=None)
    session = MagicMock()
    session.request.return_value = context

    client = AIOHTTPClient(_session=session)
    response = await client.send(
        HTTPRequest(
            method="PUT",
            destination=URI(host="storage.example.com", path="/c/n"),
            fields=Fields([Field(name="Content-Type", values=["text/plain"])]),
            body=b"data",
        )
    )

    assert response.status == 200
    assert response.reason == "OK"
    assert response.body == b"body"
    assert response.fields.get_value("x-multi") == "1,2"
    _, kwargs = session.request.call_args
    assert kwargs["method"] == "PUT"
    assert kwargs["headers"] == [("Content-Type", "text/plain")]
    assert kwargs["data"] == b"data"


@pytest.mark.asyncio
async def test_close_releases_the_session() -> None:
    session = MagicMock()
    session.close = AsyncMock()
    client = AIOHTTPClient(_session=session)

    await client.close()
    await client.close()

    session.close.assert_awaited_once()
