#  Copyright The cloud-signers Authors. All Rights Reserved.
#  SPDX-License-Identifier: Apache-2.0
"""Signed blob requests.

:py:class:`BlobRequestSigner` composes a credentials resolver, an endpoint source,
and a provider specific :py:class:`RequestSigner` into ready to send
:py:class:`SignedRequest` objects.
"""

import logging
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field, replace
from datetime import datetime
from email.utils import format_datetime
from enum import Enum
from types import MappingProxyType
from typing import Final, Protocol, runtime_checkable
from urllib.parse import parse_qsl

from ._http import URI, Field, Fields, HTTPRequest
from .aio.endpoints import CatalogEndpointResolver
from .aio.session import SessionCache
from .exceptions import ConfigurationError, UnsupportedOperationError
from .identity import AuthSession, Credentials, ensure_utc
from .interfaces.identity import CredentialsResolver

logger: Final = logging.getLogger(__name__)

DEFAULT_SIGNED_URL_TTL: Final = 900
"""Seconds a presigned request stays valid when no ttl is given."""


class SigningStyle(Enum):
    """Where a request signer places identity, expiry, and signature."""

    HEADER = "header"
    QUERY_PARAM = "query_param"


@dataclass(frozen=True)
class SignedRequest:
    """An immutable, ready to send request descriptor."""

    method: str
    uri: URI
    headers: Mapping[str, str] = field(default_factory=dict)
    expires: int | None = None
    """Epoch seconds after which the provider rejects the request, if time-boxed."""

    signing_style: SigningStyle | None = None
    """Whether the signature travels in the query or in the headers."""

    def __post_init__(self) -> None:
        object.__setattr__(self, "headers", MappingProxyType(dict(self.headers)))

    @property
    def url(self) -> str:
        return self.uri.build()

    @property
    def query_params(self) -> list[tuple[str, str]]:
        return parse_qsl(self.uri.query or "", keep_blank_values=True)

    def to_http_request(self, body: bytes | None = None) -> HTTPRequest:
        fields = Fields([Field(name=k, values=[v]) for k, v in self.headers.items()])
        return HTTPRequest(
            method=self.method, destination=self.uri, fields=fields, body=body
        )


@dataclass(kw_only=True, frozen=True)
class GetOptions:
    """Range and conditional options for a blob download."""

    ranges: tuple[tuple[int, int | None], ...] = ()
    """Inclusive byte ranges. An open ended range has ``None`` as its end."""

    if_modified_since: datetime | None = None
    if_unmodified_since: datetime | None = None
    if_match: str | None = None
    if_none_match: str | None = None

    def to_headers(self) -> dict[str, str]:
        headers: dict[str, str] = {}
        if self.ranges:
            spans = ",".join(
                f"{start}-{'' if end is None else end}" for start, end in self.ranges
            )
            headers["Range"] = f"bytes={spans}"
        if self.if_modified_since is not None:
            headers["If-Modified-Since"] = _http_date(self.if_modified_since)
        if self.if_unmodified_since is not None:
            headers["If-Unmodified-Since"] = _http_date(self.if_unmodified_since)
        if self.if_match is not None:
            headers["If-Match"] = self.if_match
        if self.if_none_match is not None:
            headers["If-None-Match"] = self.if_none_match
        return headers


def _http_date(value: datetime) -> str:
    return format_datetime(ensure_utc(value), usegmt=True)


@dataclass(kw_only=True, frozen=True)
class Blob:
    """The metadata of a blob that affects how an upload is signed."""

    name: str
    content_length: int | None = None
    content_type: str | None = None
    content_md5: str | None = None

    def to_headers(self) -> dict[str, str]:
        headers: dict[str, str] = {}
        if self.content_length is not None:
            headers["Content-Length"] = str(self.content_length)
        if self.content_type is not None:
            headers["Content-Type"] = self.content_type
        if self.content_md5 is not None:
            headers["Content-MD5"] = self.content_md5
        return headers


@dataclass(kw_only=True, frozen=True)
class BlobRequest:
    """The unsigned description of a blob operation handed to a request signer."""

    method: str
    endpoint: URI
    container: str
    name: str
    headers: Mapping[str, str] = field(default_factory=dict)


@runtime_checkable
class EndpointSource(Protocol):
    async def resolve(self, region_id: str | None = None) -> URI: ...


class RequestSigner(Protocol):
    """A provider's request-level signing contract."""

    signing_style: SigningStyle
    """Where :py:meth:`presign` places its signature."""

    timed_methods: frozenset[str]
    """Methods the provider can sign with an expiry."""

    async def presign(
        self, request: BlobRequest, *, credentials: Credentials, expires: int
    ) -> SignedRequest:
        """Sign a request that stays valid until ``expires`` without further auth.

        :raises UnsupportedOperationError: If the method is not in
            :py:attr:`timed_methods`.
        """
        ...

    async def authorize(
        self, request: BlobRequest, *, credentials: Credentials, now: int
    ) -> SignedRequest:
        """Authorize a request through the provider's normal pipeline, without an
        expiry."""
        ...


class BlobRequestSigner:
    def __init__(
        self,
        request_signer: RequestSigner,
        credentials_resolver: CredentialsResolver[Credentials],
        endpoint: URI | EndpointSource,
        *,
        default_ttl: int = DEFAULT_SIGNED_URL_TTL,
        region_id: str | None = None,
        session_cache: SessionCache[AuthSession] | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Sign blob downloads, uploads, and removals.

        :param request_signer: The provider's signing contract.
        :param credentials_resolver: Source of the identity and secret, resolved on
            every call so that rotation takes effect immediately.
        :param endpoint: A fixed base URI, or a source resolved on every call.
        :param default_ttl: Seconds a presigned request is valid when no ttl is given.
        :param region_id: Region passed to ``endpoint`` when it is a source.
        :param session_cache: The authentication session whose catalog backs
            :py:meth:`resolve_endpoint`.
        :param clock: Returns the current epoch time in seconds.
        """
        if default_ttl <= 0:
            raise ConfigurationError(f"default_ttl must be positive, got {default_ttl}")
        self._request_signer = request_signer
        self._credentials_resolver = credentials_resolver
        self._endpoint = endpoint
        self._default_ttl = default_ttl
        self._region_id = region_id
        self._session_cache = session_cache
        self._clock = clock
        self._catalog_resolvers: dict[
            tuple[str, str | None], CatalogEndpointResolver
        ] = {}

    @property
    def signing_style(self) -> SigningStyle:
        return self._request_signer.signing_style

    async def sign_get_blob(
        self,
        container: str,
        name: str,
        ttl: int | None = None,
        *,
        options: GetOptions | None = None,
    ) -> SignedRequest:
        """Sign a download.

        Without ``options`` the request is presigned for ``ttl`` seconds. With
        ``options`` it carries the range and conditional headers and is authorized
        through the normal pipeline, without an expiry.
        """
        if options is not None:
            if ttl is not None:
                raise ConfigurationError("ttl and options cannot be combined.")
            return await self._authorize("GET", container, name, options.to_headers())
        return await self._presign("GET", container, name, ttl)

    async def sign_put_blob(
        self, container: str, blob: Blob, ttl: int | None = None
    ) -> SignedRequest:
        """Sign an upload.

        :raises UnsupportedOperationError: If ``ttl`` is given and the provider has no
            time-boxed upload contract.
        """
        headers = blob.to_headers()
        if ttl is None:
            return await self._authorize("PUT", container, blob.name, headers)
        if "PUT" not in self._request_signer.timed_methods:
            raise UnsupportedOperationError(
                f"{type(self._request_signer).__name__} cannot sign a time-boxed "
                f"PUT {container}/{blob.name}"
            )
        return await self._presign("PUT", container, blob.name, ttl, headers)

    async def sign_remove_blob(self, container: str, name: str) -> SignedRequest:
        if "DELETE" in self._request_signer.timed_methods:
            return await self._presign("DELETE", container, name, None)
        return await self._authorize("DELETE", container, name)

    async def resolve_endpoint(
        self,
        service_type: str,
        api_version: str | None = None,
        region_id: str | None = None,
    ) -> URI:
        """Resolve a service endpoint from the current session's catalog."""
        if self._session_cache is None:
            raise ConfigurationError(
                "Resolving endpoints requires an authenticated session cache."
            )
        key = (service_type, api_version)
        if (resolver := self._catalog_resolvers.get(key)) is None:
            resolver = CatalogEndpointResolver(
                self._session_cache, service_type, api_version
            )
            self._catalog_resolvers[key] = resolver
        return await resolver.resolve(region_id)

    async def _presign(
        self,
        method: str,
        container: str,
        name: str,
        ttl: int | None,
        headers: Mapping[str, str] | None = None,
    ) -> SignedRequest:
        ttl = self._default_ttl if ttl is None else ttl
        if ttl <= 0:
            raise ConfigurationError(
                f"ttl must be positive to sign {method} {container}/{name}"
            )
        expires = int(self._clock()) + ttl
        request = await self._blob_request(method, container, name, headers)
        credentials = await self._credentials_resolver.get_identity()
        logger.debug("Presigning %s %s/%s until %s.", method, container, name, expires)
        signed = await self._request_signer.presign(
            request, credentials=credentials, expires=expires
        )
        return replace(signed, signing_style=self._request_signer.signing_style)

    async def _authorize(
        self,
        method: str,
        container: str,
        name: str,
        headers: Mapping[str, str] | None = None,
    ) -> SignedRequest:
        request = await self._blob_request(method, container, name, headers)
        credentials = await self._credentials_resolver.get_identity()
        logger.debug("Authorizing %s %s/%s.", method, container, name)
        signed = await self._request_signer.authorize(
            request, credentials=credentials, now=int(self._clock())
        )
        return replace(signed, signing_style=SigningStyle.HEADER)

    async def _blob_request(
        self,
        method: str,
        container: str,
        name: str,
        headers: Mapping[str, str] | None,
    ) -> BlobRequest:
        if not container or not name:
            raise ConfigurationError(
                f"A container and blob name are required to sign {method}."
            )
        match self._endpoint:
            case URI():
                endpoint = self._endpoint
            case _:
                endpoint = await self._endpoint.resolve(self._region_id)
        return BlobRequest(
            method=method,
            endpoint=endpoint,
            container=container,
            name=name,
            headers=headers or {},
        )
