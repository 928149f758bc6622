#  Copyright The cloud-signers Authors. All Rights Reserved.
#  SPDX-License-Identifier: Apache-2.0
"""Authenticators that turn credentials into :py:class:`.identity.AuthSession`\\s.

An authenticator's :py:meth:`authenticate` is meant to be the loader of a
:py:class:`.session.SessionCache`, which makes concurrent callers share one
authentication call.
"""

import base64
import logging
import time
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime, timedelta
from typing import Any, Final, Protocol
from urllib.parse import urlencode

from .._http import URI, Field, Fields, HTTPRequest, HTTPResponse
from ..blobstore import EndpointSource
from ..endpoints import parse_keystone_v2_catalog, parse_keystone_v3_catalog
from ..exceptions import AuthorizationError, ConfigurationError
from ..identity import AuthSession, Credentials, ensure_utc
from ..interfaces.http import HTTPClient
from ..interfaces.identity import CredentialsResolver
from ..oauth import JWT_BEARER_GRANT_TYPE, JwtAssertionSigner
from ..request_signers import TEMP_URL_KEY_HEADER, TemporaryUrlKey
from .session import SessionCache
from .utils import json_request, raise_for_status, read_json, send_json

logger: Final = logging.getLogger(__name__)

KEYSTONE_DEFAULT_LIFETIME: Final = timedelta(hours=11)
B2_SESSION_LIFETIME: Final = timedelta(hours=23)


class Authenticator(Protocol):
    async def authenticate(self) -> AuthSession: ...


def _split_identity(identity: str, what: str) -> tuple[str, str]:
    scope, sep, user = identity.partition(":")
    if not sep or not scope or not user:
        raise ConfigurationError(f"Expected identity in the form {what}:user")
    return scope, user


class KeystoneAuthenticator:
    """Password authentication against an identity service.

    The identity is ``tenant:user`` for version 2 and ``project:user`` for version 3.
    The returned session carries the parsed service catalog.
    """

    def __init__(
        self,
        http_client: HTTPClient,
        credentials_resolver: CredentialsResolver[Credentials],
        endpoint: URI,
        *,
        version: int = 3,
        domain: str = "Default",
    ) -> None:
        if version not in (2, 3):
            raise ConfigurationError(f"Unsupported identity API version: {version}")
        self._http_client = http_client
        self._credentials_resolver = credentials_resolver
        self._endpoint = endpoint
        self._version = version
        self._domain = domain

    async def authenticate(self) -> AuthSession:
        credentials = await self._credentials_resolver.get_identity()
        logger.debug(
            "Authenticating %s against %s.", credentials.identity, self._endpoint.host
        )
        if self._version == 2:
            return await self._authenticate_v2(credentials)
        return await self._authenticate_v3(credentials)

    async def _authenticate_v2(self, credentials: Credentials) -> AuthSession:
        tenant, user = _split_identity(credentials.identity, "tenant")
        document = {
            "auth": {
                "passwordCredentials": {
                    "username": user,
                    "password": credentials.secret,
                },
                "tenantName": tenant,
            }
        }
        _, body = await send_json(
            self._http_client,
            json_request("POST", self._endpoint.append_path("tokens"), document),
        )
        token = body["access"]["token"]
        return AuthSession.create(
            token=token["id"],
            lifetime=self._lifetime(token.get("expires")),
            catalog=parse_keystone_v2_catalog(body),
            attributes={"tenant": token.get("tenant", {}).get("id")},
        )

    async def _authenticate_v3(self, credentials: Credentials) -> AuthSession:
        project, user = _split_identity(credentials.identity, "project")
        domain = {"name": self._domain}
        document = {
            "auth": {
                "identity": {
                    "methods": ["password"],
                    "password": {
                        "user": {
                            "name": user,
                            "domain": domain,
                            "password": credentials.secret,
                        }
                    },
                },
                "scope": {"project": {"name": project, "domain": domain}},
            }
        }
        response, body = await send_json(
            self._http_client,
            json_request("POST", self._endpoint.append_path("auth/tokens"), document),
        )
        if (token_id := response.fields.get_value("X-Subject-Token")) is None:
            raise AuthorizationError(
                "POST auth/tokens returned no X-Subject-Token", status=response.status
            )
        token = body["token"]
        return AuthSession.create(
            token=token_id,
            lifetime=self._lifetime(token.get("expires_at")),
            catalog=parse_keystone_v3_catalog(body),
            attributes={"project": token.get("project", {}).get("id")},
        )

    def _lifetime(self, expires: str | None) -> timedelta:
        if expires is None:
            return KEYSTONE_DEFAULT_LIFETIME
        remaining = ensure_utc(datetime.fromisoformat(expires)) - datetime.now(tz=UTC)
        return max(remaining, timedelta(0))


class B2Authenticator:
    """Account authorization with an application key id and key."""

    DEFAULT_ENDPOINT: Final = URI(host="api.backblazeb2.com")

    def __init__(
        self,
        http_client: HTTPClient,
        credentials_resolver: CredentialsResolver[Credentials],
        endpoint: URI = DEFAULT_ENDPOINT,
    ) -> None:
        self._http_client = http_client
        self._credentials_resolver = credentials_resolver
        self._endpoint = endpoint

    async def authenticate(self) -> AuthSession:
        credentials = await self._credentials_resolver.get_identity()
        basic = base64.b64encode(
            f"{credentials.identity}:{credentials.secret}".encode()
        ).decode("ascii")
        request = json_request(
            "GET",
            self._endpoint.with_path("/b2api/v2/b2_authorize_account"),
            headers={"Authorization": f"Basic {basic}"},
        )
        _, body = await send_json(self._http_client, request)
        return AuthSession.create(
            token=body["authorizationToken"],
            lifetime=B2_SESSION_LIFETIME,
            attributes={
                "account_id": body.get("accountId"),
                "api_url": body["apiUrl"],
                "download_url": body["downloadUrl"],
            },
        )


class OAuthAuthenticator:
    """Exchanges a JWT bearer assertion for an access token."""

    def __init__(
        self,
        http_client: HTTPClient,
        credentials_resolver: CredentialsResolver[Credentials],
        token_endpoint: URI,
        assertion_signer: JwtAssertionSigner,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._http_client = http_client
        self._credentials_resolver = credentials_resolver
        self._token_endpoint = token_endpoint
        self._assertion_signer = assertion_signer
        self._clock = clock

    async def authenticate(self) -> AuthSession:
        credentials = await self._credentials_resolver.get_identity()
        assertion = self._assertion_signer.assertion(
            credentials, now=int(self._clock())
        )
        form = urlencode({"grant_type": JWT_BEARER_GRANT_TYPE, "assertion": assertion})
        request = HTTPRequest(
            method="POST",
            destination=self._token_endpoint,
            fields=Fields(
                [
                    Field(
                        name="Content-Type",
                        values=["application/x-www-form-urlencoded"],
                    )
                ]
            ),
            body=form.encode("ascii"),
        )
        _, body = await send_json(self._http_client, request)
        return AuthSession.create(
            token=body["access_token"],
            lifetime=timedelta(seconds=int(body["expires_in"])),
            attributes={"token_type": body.get("token_type", "Bearer")},
        )


async def send_with_reauthentication(
    http_client: HTTPClient,
    session_cache: SessionCache[AuthSession],
    build_request: Callable[[AuthSession], HTTPRequest | Awaitable[HTTPRequest]],
) -> HTTPResponse:
    """Send a request built from the current session, re-authenticating once on 401.

    :raises AuthorizationError: If the request is rejected again after
        re-authentication, or is rejected with 403.
    """

    async def attempt() -> HTTPResponse:
        session = await session_cache.get()
        request = build_request(session)
        if not isinstance(request, HTTPRequest):
            request = await request
        return await http_client.send(request)

    response = await attempt()
    if response.status == 401:
        logger.info("Request was rejected with 401; re-authenticating once.")
        session_cache.invalidate()
        response = await attempt()
    if response.status in (401, 403):
        raise AuthorizationError(
            f"Request was rejected with status {response.status}",
            status=response.status,
        )
    return response


def temp_url_key_loader(
    http_client: HTTPClient,
    session_cache: SessionCache[AuthSession],
    endpoint: URI | EndpointSource,
    region_id: str | None = None,
) -> Callable[[], Awaitable[TemporaryUrlKey]]:
    """Build a loader reading the account's temp URL key, for use in a
    :py:class:`.session.SessionCache`.

    The key expires with the session it was read under.
    """

    async def load() -> TemporaryUrlKey:
        match endpoint:
            case URI():
                account = endpoint
            case _:
                account = await endpoint.resolve(region_id)
        sessions: list[AuthSession] = []

        def build_request(session: AuthSession) -> HTTPRequest:
            sessions.append(session)
            return HTTPRequest(
                method="HEAD",
                destination=account,
                fields=Fields([Field(name="X-Auth-Token", values=[session.token])]),
            )

        response = await send_with_reauthentication(
            http_client, session_cache, build_request
        )
        raise_for_status(response, context=f"HEAD {account.path or '/'}")
        if not (key := response.fields.get_value(TEMP_URL_KEY_HEADER)):
            raise ConfigurationError(
                f"The account at {account.host} has no {TEMP_URL_KEY_HEADER} set"
            )
        logger.debug("Loaded temp URL key for %s.", account.host)
        return TemporaryUrlKey(key=key, expiration=sessions[-1].expires_at)

    return load


def b2_api_request(
    session: AuthSession, operation: str, document: dict[str, Any]
) -> HTTPRequest:
    """Build a call to ``operation`` on the session's API host."""
    api = URI.from_string(session.attributes["api_url"])
    return json_request(
        "POST",
        api.with_path(f"/b2api/v2/{operation}"),
        document,
        headers={"Authorization": session.token},
    )


class B2DownloadAuthorizer:
    """Mints download authorization tokens scoped to a bucket and name prefix."""

    def __init__(
        self, http_client: HTTPClient, session_cache: SessionCache[AuthSession]
    ) -> None:
        self._http_client = http_client
        self._session_cache = session_cache
        self._bucket_ids: dict[str, str] = {}

    async def __call__(self, container: str, name: str, duration: int) -> str:
        bucket_id = await self.bucket_id(container)
        body = await self._call(
            "b2_get_download_authorization",
            lambda session: {
                "bucketId": bucket_id,
                "fileNamePrefix": name,
                "validDurationInSeconds": duration,
            },
        )
        return body["authorizationToken"]

    async def bucket_id(self, container: str) -> str:
        if (cached := self._bucket_ids.get(container)) is not None:
            return cached
        body = await self._call(
            "b2_list_buckets",
            lambda session: {
                "accountId": session.attributes.get("account_id"),
                "bucketName": container,
            },
        )
        buckets = body.get("buckets") or []
        if not buckets:
            raise ConfigurationError(f"No bucket named {container!r}")
        self._bucket_ids[container] = buckets[0]["bucketId"]
        return self._bucket_ids[container]

    async def _call(
        self, operation: str, document: Callable[[AuthSession], dict[str, Any]]
    ) -> dict[str, Any]:
        response = await send_with_reauthentication(
            self._http_client,
            self._session_cache,
            lambda session: b2_api_request(session, operation, document(session)),
        )
        return read_json(response, context=f"POST /b2api/v2/{operation}")
