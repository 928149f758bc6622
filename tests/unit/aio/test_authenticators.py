#  Copyright The cloud-signers Authors. All Rights Reserved.
#  SPDX-License-Identifier: Apache-2.0
import base64
import json
from datetime import UTC, datetime, timedelta
from urllib.parse import parse_qs

import jwt
import pytest
from cloud_signers._http import URI, Field, Fields, HTTPRequest
from cloud_signers.aio.authenticators import (
    B2Authenticator,
    B2DownloadAuthorizer,
    KeystoneAuthenticator,
    OAuthAuthenticator,
    send_with_reauthentication,
    temp_url_key_loader,
)
from cloud_signers.aio.session import SessionCache
from cloud_signers.credentials_resolvers import StaticCredentialsResolver
from cloud_signers.exceptions import AuthorizationError, ConfigurationError
from cloud_signers.identity import AuthSession, Credentials
from cloud_signers.oauth import JWT_BEARER_GRANT_TYPE, JwtAssertionSigner
from cloud_signers.testing import MockHTTPClient
from freezegun import freeze_time

KEYSTONE = URI(host="keystone.example.com", path="/v3")
SWIFT_CATALOG = [
    {
        "type": "object-store",
        "endpoints": [
            {
                "region_id": "RegionOne",
                "interface": "public",
                "url": "https://swift.example.com/v1/AUTH_p1",
            }
        ],
    }
]


def static(identity: str, secret: str = "secret") -> StaticCredentialsResolver:
    return StaticCredentialsResolver(
        credentials=Credentials(identity=identity, secret=secret)
    )


class CountingSessions:
    def __init__(self) -> None:
        self.calls = 0

    async def __call__(self) -> AuthSession:
        self.calls += 1
        return AuthSession.create(
            token=f"token-{self.calls}",
            lifetime=timedelta(hours=1),
            attributes={"api_url": "https://api000.example.com", "account_id": "a1"},
        )


@pytest.mark.asyncio
async def test_keystone_v3() -> None:
    client = MockHTTPClient()
    client.add_json_response(
        {
            "token": {
                "expires_at": "2024-01-01T02:00:00.000000Z",
                "project": {"id": "p1"},
                "catalog": SWIFT_CATALOG,
            }
        },
        status=201,
        headers=[("X-Subject-Token", "v3-token")],
    )
    authenticator = KeystoneAuthenticator(client, static("project:user"), KEYSTONE)

    with freeze_time("2024-01-01 00:00:00", real_asyncio=True):
        session = await authenticator.authenticate()

    assert session.token == "v3-token"
    assert session.expires_at == datetime(2024, 1, 1, 2, tzinfo=UTC)
    assert session.attributes["project"] == "p1"
    assert session.catalog is not None
    assert session.catalog.resolve("object-store") == URI(
        host="swift.example.com", path="/v1/AUTH_p1"
    )

    (sent,) = client.captured_requests
    assert sent.method == "POST"
    assert sent.destination.path == "/v3/auth/tokens"
    document = json.loads(sent.body or b"")
    user = document["auth"]["identity"]["password"]["user"]
    assert user == {"name": "user", "domain": {"name": "Default"}, "password": "secret"}
    assert document["auth"]["scope"]["project"]["name"] == "project"


@pytest.mark.asyncio
async def test_keystone_v3_requires_subject_token() -> None:
    client = MockHTTPClient()
    client.add_json_response({"token": {"catalog": []}}, status=201)
    authenticator = KeystoneAuthenticator(client, static("project:user"), KEYSTONE)

    with pytest.raises(AuthorizationError):
        await authenticator.authenticate()


@pytest.mark.asyncio
async def test_keystone_v2() -> None:
    client = MockHTTPClient()
    client.add_json_response(
        {
            "access": {
                "token": {"id": "v2-token", "tenant": {"id": "t1"}},
                "serviceCatalog": [
                    {
                        "type": "object-store",
                        "endpoints": [
                            {
                                "region": "RegionOne",
                                "publicURL": "https://swift.example.com/v1/AUTH_t1",
                            }
                        ],
                    }
                ],
            }
        }
    )
    authenticator = KeystoneAuthenticator(
        client,
        static("tenant:user"),
        URI(host="keystone.example.com", path="/v2.0"),
        version=2,
    )

    with freeze_time("2024-01-01 00:00:00", real_asyncio=True):
        session = await authenticator.authenticate()

    assert session.token == "v2-token"
    # No expiry in the response falls back to the default lifetime.
    assert session.expires_at == datetime(2024, 1, 1, 11, tzinfo=UTC)
    assert session.attributes["tenant"] == "t1"
    (sent,) = client.captured_requests
    assert sent.destination.path == "/v2.0/tokens"
    auth = json.loads(sent.body or b"")["auth"]
    assert auth["tenantName"] == "tenant"
    assert auth["passwordCredentials"] == {"username": "user", "password": "secret"}


@pytest.mark.asyncio
async def test_keystone_identity_format() -> None:
    authenticator = KeystoneAuthenticator(MockHTTPClient(), static("user"), KEYSTONE)
    with pytest.raises(ConfigurationError):
        await authenticator.authenticate()


def test_keystone_version() -> None:
    with pytest.raises(ConfigurationError):
        KeystoneAuthenticator(MockHTTPClient(), static("p:u"), KEYSTONE, version=4)


@pytest.mark.asyncio
@pytest.mark.parametrize("status", [401, 403])
async def test_keystone_rejection(status: int) -> None:
    client = MockHTTPClient()
    client.add_response(status=status)
    authenticator = KeystoneAuthenticator(client, static("project:user"), KEYSTONE)

    with pytest.raises(AuthorizationError) as exc_info:
        await authenticator.authenticate()
    assert exc_info.value.status == status


@pytest.mark.asyncio
async def test_b2_authorize_account() -> None:
    client = MockHTTPClient()
    client.add_json_response(
        {
            "accountId": "a1",
            "authorizationToken": "account-token",
            "apiUrl": "https://api000.example.com",
            "downloadUrl": "https://f000.example.com",
        }
    )
    authenticator = B2Authenticator(client, static("key-id", "app-key"))

    session = await authenticator.authenticate()

    assert session.token == "account-token"
    assert dict(session.attributes) == {
        "account_id": "a1",
        "api_url": "https://api000.example.com",
        "download_url": "https://f000.example.com",
    }
    assert session.expires_at - session.issued_at == timedelta(hours=23)
    (sent,) = client.captured_requests
    assert sent.method == "GET"
    assert sent.destination.host == "api.backblazeb2.com"
    assert sent.destination.path == "/b2api/v2/b2_authorize_account"
    expected = base64.b64encode(b"key-id:app-key").decode("ascii")
    assert sent.fields.get_value("Authorization") == f"Basic {expected}"


@pytest.mark.asyncio
async def test_oauth_exchanges_assertion() -> None:
    client = MockHTTPClient()
    client.add_json_response({"access_token": "access", "expires_in": 3600})
    secret = "a-shared-secret-that-is-long-enough-for-hs256"
    assertion_signer = JwtAssertionSigner(
        audience="https://oauth.example.com/token",
        scope="storage",
        algorithm="HS256",
    )
    authenticator = OAuthAuthenticator(
        client,
        static("svc", secret),
        URI(host="oauth.example.com", path="/token"),
        assertion_signer,
        clock=lambda: 1_700_000_000,
    )

    session = await authenticator.authenticate()

    assert session.token == "access"
    assert session.expires_at - session.issued_at == timedelta(hours=1)
    assert session.attributes["token_type"] == "Bearer"
    (sent,) = client.captured_requests
    assert sent.fields.get_value("Content-Type") == "application/x-www-form-urlencoded"
    form = parse_qs((sent.body or b"").decode("ascii"))
    assert form["grant_type"] == [JWT_BEARER_GRANT_TYPE]
    claims = jwt.decode(
        form["assertion"][0],
        secret,
        algorithms=["HS256"],
        audience="https://oauth.example.com/token",
        options={"verify_exp": False},
    )
    assert claims["iss"] == "svc"
    assert claims["iat"] == 1_700_000_000


def build_request(session: AuthSession) -> HTTPRequest:
    return HTTPRequest(
        method="GET",
        destination=URI(host="api.example.com"),
        fields=Fields([Field(name="X-Auth-Token", values=[session.token])]),
    )


@pytest.mark.asyncio
async def test_reauthenticates_once_on_401() -> None:
    client = MockHTTPClient()
    client.add_response(status=401)
    client.add_response(status=200)
    sessions = CountingSessions()

    response = await send_with_reauthentication(
        client, SessionCache(sessions), build_request
    )

    assert response.status == 200
    assert sessions.calls == 2
    tokens = [r.fields.get_value("X-Auth-Token") for r in client.captured_requests]
    assert tokens == ["token-1", "token-2"]


@pytest.mark.asyncio
async def test_second_401_is_an_authorization_error() -> None:
    client = MockHTTPClient()
    client.add_response(status=401)
    client.add_response(status=401)

    with pytest.raises(AuthorizationError) as exc_info:
        await send_with_reauthentication(
            client, SessionCache(CountingSessions()), build_request
        )
    assert exc_info.value.status == 401
    assert client.call_count == 2


@pytest.mark.asyncio
async def test_403_is_not_retried() -> None:
    client = MockHTTPClient()
    client.add_response(status=403)
    sessions = CountingSessions()

    with pytest.raises(AuthorizationError):
        await send_with_reauthentication(client, SessionCache(sessions), build_request)
    assert client.call_count == 1
    assert sessions.calls == 1


@pytest.mark.asyncio
async def test_request_builder_may_be_async() -> None:
    client = MockHTTPClient()
    client.add_response(status=204)

    async def build(session: AuthSession) -> HTTPRequest:
        return build_request(session)

    response = await send_with_reauthentication(
        client, SessionCache(CountingSessions()), build
    )
    assert response.status == 204


@pytest.mark.asyncio
async def test_temp_url_key_loader() -> None:
    client = MockHTTPClient()
    client.add_response(
        status=204, headers=[("X-Account-Meta-Temp-Url-Key", "temp-key")]
    )
    sessions = SessionCache(CountingSessions())
    account = URI(host="swift.example.com", path="/v1/AUTH_p1")

    key = await temp_url_key_loader(client, sessions, account)()

    assert key.key == "temp-key"
    assert key.expiration == (await sessions.get()).expires_at
    (sent,) = client.captured_requests
    assert sent.method == "HEAD"
    assert sent.destination == account
    assert sent.fields.get_value("X-Auth-Token") == "token-1"


@pytest.mark.asyncio
async def test_temp_url_key_must_be_set() -> None:
    client = MockHTTPClient()
    client.add_response(status=204)
    load = temp_url_key_loader(
        client, SessionCache(CountingSessions()), URI(host="swift.example.com")
    )
    with pytest.raises(ConfigurationError):
        await load()


@pytest.mark.asyncio
async def test_b2_download_authorization() -> None:
    client = MockHTTPClient()
    client.add_json_response({"buckets": [{"bucketId": "b1", "bucketName": "c"}]})
    client.add_json_response({"authorizationToken": "download-1"})
    client.add_json_response({"authorizationToken": "download-2"})
    authorizer = B2DownloadAuthorizer(client, SessionCache(CountingSessions()))

    assert await authorizer("c", "dir/n", 900) == "download-1"
    assert await authorizer("c", "dir/n", 60) == "download-2"

    list_buckets, first, second = client.captured_requests
    assert list_buckets.destination.path == "/b2api/v2/b2_list_buckets"
    assert json.loads(list_buckets.body or b"") == {
        "accountId": "a1",
        "bucketName": "c",
    }
    assert first.destination.path == "/b2api/v2/b2_get_download_authorization"
    assert json.loads(second.body or b"") == {
        "bucketId": "b1",
        "fileNamePrefix": "dir/n",
        "validDurationInSeconds": 60,
    }
    assert first.fields.get_value("Authorization") == "token-1"


@pytest.mark.asyncio
async def test_b2_unknown_bucket() -> None:
    client = MockHTTPClient()
    client.add_json_response({"buckets": []})
    authorizer = B2DownloadAuthorizer(client, SessionCache(CountingSessions()))

    with pytest.raises(ConfigurationError):
        await authorizer("missing", "n", 60)


@pytest.mark.asyncio
async def test_temp_url_key_loader_reauthenticates_on_401() -> None:
    client = MockHTTPClient()
    client.add_response(status=401)
    client.add_response(
        status=204, headers=[("X-Account-Meta-Temp-Url-Key", "temp-key")]
    )
    sessions = CountingSessions()
    cache = SessionCache(sessions)

    key = await temp_url_key_loader(client, cache, URI(host="swift.example.com"))()

    assert key.key == "temp-key"
    assert sessions.calls == 2
    assert key.expiration == (await cache.get()).expires_at
    tokens = [r.fields.get_value("X-Auth-Token") for r in client.captured_requests]
    assert tokens == ["token-1", "token-2"]


@pytest.mark.asyncio
async def test_b2_download_authorization_reauthenticates_on_401() -> None:
    client = MockHTTPClient()
    client.add_json_response({"buckets": [{"bucketId": "b1", "bucketName": "c"}]})
    client.add_response(status=401)
    client.add_json_response({"authorizationToken": "download-1"})
    sessions = CountingSessions()
    authorizer = B2DownloadAuthorizer(client, SessionCache(sessions))

    assert await authorizer("c", "n", 900) == "download-1"

    assert sessions.calls == 2
    tokens = [r.fields.get_value("Authorization") for r in client.captured_requests]
    assert tokens == ["token-1", "token-1", "token-2"]
    retried = client.captured_requests[-1]
    assert retried.destination.path == "/b2api/v2/b2_get_download_authorization"
    assert json.loads(retried.body or b"")["bucketId"] == "b1"


@pytest.mark.asyncio
async def test_b2_bucket_lookup_reauthenticates_on_401() -> None:
    client = MockHTTPClient()
    client.add_response(status=401)
    client.add_json_response({"buckets": [{"bucketId": "b1", "bucketName": "c"}]})
    sessions = CountingSessions()
    authorizer = B2DownloadAuthorizer(client, SessionCache(sessions))

    assert await authorizer.bucket_id("c") == "b1"

    assert sessions.calls == 2
    first, retried = client.captured_requests
    assert first.fields.get_value("Authorization") == "token-1"
    assert retried.fields.get_value("Authorization") == "token-2"
    assert json.loads(retried.body or b"") == {"accountId": "a1", "bucketName": "c"}


@pytest.mark.asyncio
async def test_b2_download_authorization_gives_up_after_second_401() -> None:
    client = MockHTTPClient()
    client.add_json_response({"buckets": [{"bucketId": "b1", "bucketName": "c"}]})
    client.add_response(status=401)
    client.add_response(status=401)
    sessions = CountingSessions()
    authorizer = B2DownloadAuthorizer(client, SessionCache(sessions))

    with pytest.raises(AuthorizationError) as exc_info:
        await authorizer("c", "n", 900)
    assert exc_info.value.status == 401
    assert sessions.calls == 2
    assert client.call_count == 3
