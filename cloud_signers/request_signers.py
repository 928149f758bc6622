#  Copyright The cloud-signers Authors. All Rights Reserved.
#  SPDX-License-Identifier: Apache-2.0
"""Provider request signers.

Each class implements :py:class:`.blobstore.RequestSigner` for one provider family.
They differ in the canonical string they build, the MAC they apply, and where the
result lands on the request.
"""

import time
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from email.utils import formatdate
from typing import Final
from urllib.parse import quote, urlencode

from aws_sdk_signers import URI as AWSURI
from aws_sdk_signers import (
    AWSCredentialIdentity,
    AWSRequest,
    SigV4Signer,
    SigV4SigningProperties,
)
from aws_sdk_signers import Field as AWSField
from aws_sdk_signers import Fields as AWSFields
from aws_sdk_signers.signers import SIGV4_TIMESTAMP_FORMAT

from ._http import URI
from .aio.session import SessionCache
from .blobstore import BlobRequest, SignedRequest, SigningStyle
from .canonical import (
    EMC_HEADER_SPEC,
    PATH_QUERY_SPEC,
    S3_HEADER_SPEC,
    S3_QUERY_SPEC,
    SHARED_ACCESS_SIGNATURE_SPEC,
    SHARED_KEY_LITE_SPEC,
    TEMP_URL_SPEC,
    blob_path,
    build_canonical_string,
    canonical_path,
)
from .exceptions import ConfigurationError, UnsupportedOperationError
from .identity import AuthSession, Credentials
from .interfaces.identity import Identity
from .signers import HMACSigner, SignatureEncoding, StringSigner


_ALL_METHODS: Final = frozenset({"GET", "PUT", "DELETE"})


def _require_timed(signer: object, timed_methods: frozenset[str], method: str) -> None:
    if method not in timed_methods:
        raise UnsupportedOperationError(
            f"{type(signer).__name__} cannot sign a time-boxed {method} request"
        )


def _http_date(epoch_seconds: int) -> str:
    return formatdate(epoch_seconds, usegmt=True)


class PathQuerySigner:
    """Query-string signing over ``METHOD\\nPATH\\nIDENTITY\\nEXPIRES``.

    Presigned requests carry ``uid``, ``expires`` and ``signature`` query parameters.
    Pipeline requests carry ``x-emc-uid``, ``x-emc-date`` and ``x-emc-signature``
    headers.
    """

    signing_style = SigningStyle.QUERY_PARAM
    timed_methods = _ALL_METHODS

    def __init__(
        self,
        *,
        path_prefix: str = "/rest/namespace",
        signer: StringSigner | None = None,
    ) -> None:
        self._path_prefix = canonical_path(path_prefix)
        self._signer = signer or HMACSigner(digest="sha256", base64_key=True)

    async def presign(
        self, request: BlobRequest, *, credentials: Credentials, expires: int
    ) -> SignedRequest:
        _require_timed(self, self.timed_methods, request.method)
        path = blob_path(self._path_prefix, request.container, request.name)
        canonical = build_canonical_string(
            PATH_QUERY_SPEC,
            method=request.method,
            resource_path=path,
            identity=credentials.identity,
            expires=expires,
        )
        signature = self._signer.sign(credentials.secret, canonical)
        query = urlencode(
            [
                ("uid", credentials.identity),
                ("expires", str(expires)),
                ("signature", signature),
            ]
        )
        return SignedRequest(
            method=request.method,
            uri=request.endpoint.with_path(path, query),
            headers=request.headers,
            expires=expires,
        )

    async def authorize(
        self, request: BlobRequest, *, credentials: Credentials, now: int
    ) -> SignedRequest:
        path = blob_path(self._path_prefix, request.container, request.name)
        date = _http_date(now)
        headers = {
            **request.headers,
            "Date": date,
            "x-emc-date": date,
            "x-emc-uid": credentials.identity,
        }
        canonical = build_canonical_string(
            EMC_HEADER_SPEC,
            method=request.method,
            resource_path=path.lower(),
            headers=headers,
        )
        headers["x-emc-signature"] = self._signer.sign(credentials.secret, canonical)
        return SignedRequest(
            method=request.method,
            uri=request.endpoint.with_path(path),
            headers=headers,
        )


class HeaderMacSigner:
    """Shared key signing for account/container/blob storage.

    Presigned requests carry a service shared access signature in the query.
    Pipeline requests carry a ``SharedKeyLite`` ``Authorization`` header.
    """

    signing_style = SigningStyle.QUERY_PARAM
    timed_methods = _ALL_METHODS

    API_VERSION: Final = "2017-04-17"
    _PERMISSIONS: Final = {"PUT": "w", "DELETE": "d"}

    def __init__(
        self, *, api_version: str = API_VERSION, signer: StringSigner | None = None
    ) -> None:
        self._api_version = api_version
        self._signer = signer or HMACSigner(digest="sha256", base64_key=True)

    @staticmethod
    def default_endpoint(account: str) -> URI:
        return URI(host=f"{account}.blob.core.windows.net", path="/")

    async def presign(
        self, request: BlobRequest, *, credentials: Credentials, expires: int
    ) -> SignedRequest:
        _require_timed(self, self.timed_methods, request.method)
        path = blob_path("", request.container, request.name)
        signed_expiry = datetime.fromtimestamp(expires, tz=UTC).strftime(
            "%Y-%m-%dT%H:%M:%SZ"
        )
        permission = self._PERMISSIONS.get(request.method, "r")
        canonical = build_canonical_string(
            SHARED_ACCESS_SIGNATURE_SPEC,
            method=request.method,
            resource_path=blob_path(
                f"/blob/{credentials.identity}",
                request.container,
                request.name,
                encode=False,
            ),
            extra={
                "signed_permission": permission,
                "signed_expiry": signed_expiry,
                "signed_version": self._api_version,
            },
        )
        query = urlencode(
            [
                ("sv", self._api_version),
                ("se", signed_expiry),
                ("sr", "b"),
                ("sp", permission),
                ("sig", self._signer.sign(credentials.secret, canonical)),
            ]
        )
        return SignedRequest(
            method=request.method,
            uri=request.endpoint.with_path(path, query),
            headers=self._headers(request),
            expires=expires,
        )

    async def authorize(
        self, request: BlobRequest, *, credentials: Credentials, now: int
    ) -> SignedRequest:
        path = blob_path("", request.container, request.name)
        headers = self._headers(request)
        headers["Date"] = _http_date(now)
        headers["x-ms-version"] = self._api_version
        canonical = build_canonical_string(
            SHARED_KEY_LITE_SPEC,
            method=request.method,
            resource_path=f"/{credentials.identity}{path}",
            headers=headers,
        )
        signature = self._signer.sign(credentials.secret, canonical)
        headers["Authorization"] = f"SharedKeyLite {credentials.identity}:{signature}"
        return SignedRequest(
            method=request.method,
            uri=request.endpoint.with_path(path),
            headers=headers,
        )

    def _headers(self, request: BlobRequest) -> dict[str, str]:
        headers = dict(request.headers)
        if request.method == "PUT":
            headers["x-ms-blob-type"] = "BlockBlob"
        return headers


TEMP_URL_KEY_HEADER: Final = "X-Account-Meta-Temp-Url-Key"


@dataclass(kw_only=True, frozen=True)
class TemporaryUrlKey(Identity):
    """The account key temporary URLs are signed with."""

    key: str = field(repr=False)
    expiration: datetime | None = None


class TemporaryUrlKeySigner:
    """Temporary URLs signed with the account's temp URL key.

    The key is read through ``key_cache``, whose loader typically reads the
    :py:data:`TEMP_URL_KEY_HEADER` of the account. The signature covers the decoded
    object path. Pipeline requests carry the session token in ``X-Auth-Token``.
    """

    signing_style = SigningStyle.QUERY_PARAM
    timed_methods = _ALL_METHODS

    def __init__(
        self,
        *,
        session_cache: SessionCache[AuthSession],
        key_cache: SessionCache[TemporaryUrlKey],
        signer: StringSigner | None = None,
    ) -> None:
        self._session_cache = session_cache
        self._key_cache = key_cache
        self._signer = signer or HMACSigner(
            digest="sha1", encoding=SignatureEncoding.HEX
        )

    async def presign(
        self, request: BlobRequest, *, credentials: Credentials, expires: int
    ) -> SignedRequest:
        _require_timed(self, self.timed_methods, request.method)
        path = self._path(request)
        temp_url_key = await self._key_cache.get()
        canonical = build_canonical_string(
            TEMP_URL_SPEC,
            method=request.method,
            resource_path=self._path(request, encode=False),
            expires=expires,
        )
        query = urlencode(
            [
                ("temp_url_sig", self._signer.sign(temp_url_key.key, canonical)),
                ("temp_url_expires", str(expires)),
            ]
        )
        return SignedRequest(
            method=request.method,
            uri=request.endpoint.with_path(path, query),
            headers=request.headers,
            expires=expires,
        )

    async def authorize(
        self, request: BlobRequest, *, credentials: Credentials, now: int
    ) -> SignedRequest:
        session = await self._session_cache.get()
        return SignedRequest(
            method=request.method,
            uri=request.endpoint.with_path(self._path(request)),
            headers={**request.headers, "X-Auth-Token": session.token},
        )

    def _path(self, request: BlobRequest, *, encode: bool = True) -> str:
        prefix = canonical_path(request.endpoint.path or "/")
        return blob_path(prefix, request.container, request.name, encode=encode)


type DownloadAuthorizer = Callable[[str, str, int], Awaitable[str]]
"""Called with a container, a blob name prefix and a duration in seconds; returns a
token valid for that long."""


class SessionTokenSigner:
    """Session token authorization with download authorizations for presigned GETs.

    Time-boxed uploads and removals have no provider contract and are rejected.
    """

    signing_style = SigningStyle.HEADER
    timed_methods = frozenset({"GET"})

    def __init__(
        self,
        *,
        session_cache: SessionCache[AuthSession],
        download_authorizer: DownloadAuthorizer,
        path_prefix: str = "/file",
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._session_cache = session_cache
        self._download_authorizer = download_authorizer
        self._path_prefix = canonical_path(path_prefix)
        self._clock = clock

    async def presign(
        self, request: BlobRequest, *, credentials: Credentials, expires: int
    ) -> SignedRequest:
        _require_timed(self, self.timed_methods, request.method)
        duration = max(1, expires - int(self._clock()))
        token = await self._download_authorizer(
            request.container, request.name, duration
        )
        return SignedRequest(
            method=request.method,
            uri=request.endpoint.with_path(self._path(request)),
            headers={**request.headers, "Authorization": token},
            expires=expires,
        )

    async def authorize(
        self, request: BlobRequest, *, credentials: Credentials, now: int
    ) -> SignedRequest:
        session = await self._session_cache.get()
        return SignedRequest(
            method=request.method,
            uri=request.endpoint.with_path(self._path(request)),
            headers={**request.headers, "Authorization": session.token},
        )

    def _path(self, request: BlobRequest) -> str:
        return blob_path(self._path_prefix, request.container, request.name)



SIGV4_ALGORITHM: Final = "AWS4-HMAC-SHA256"
MAX_SIGV4_EXPIRES: Final = 604800
_S3_SIGNED_HEADERS: Final = frozenset({"content-md5", "content-type"})


class _BlobSigV4Signer(SigV4Signer):
    """:py:class:`aws_sdk_signers.SigV4Signer` where ``payload_signing_enabled``
    alone decides between a payload hash and ``UNSIGNED-PAYLOAD``."""

    def _should_sha256_sign_payload(
        self, *, request: AWSRequest, signing_properties: SigV4SigningProperties
    ) -> bool:
        return signing_properties.get("payload_signing_enabled", True)

    def signature(
        self,
        *,
        string_to_sign: str,
        secret_key: str,
        signing_properties: SigV4SigningProperties,
    ) -> str:
        return self._signature(
            string_to_sign=string_to_sign,
            secret_key=secret_key,
            signing_properties=signing_properties,
        )


def _aws_uri(uri: URI, query: str | None = None) -> AWSURI:
    return AWSURI(
        scheme=uri.scheme, host=uri.host, port=uri.port, path=uri.path, query=query
    )


def _s3_signable_fields(headers: Mapping[str, str]) -> AWSFields:
    return AWSFields(
        [
            AWSField(name=name, values=[value])
            for name, value in headers.items()
            if name.lower() in _S3_SIGNED_HEADERS or name.lower().startswith("x-amz-")
        ]
    )


class _S3Addressing:
    def __init__(self, *, virtual_host: bool) -> None:
        self._virtual_host = virtual_host

    def _locate(self, request: BlobRequest) -> tuple[URI, str]:
        """Return the object URI and the ``/{bucket}/{key}`` resource it names."""
        resource = blob_path("", request.container, request.name)
        if not self._virtual_host:
            return request.endpoint.with_path(resource), resource
        uri = replace(
            request.endpoint,
            host=f"{request.container}.{request.endpoint.host}",
            path="/" + quote(request.name, safe="/"),
            query=None,
            fragment=None,
        )
        return uri, resource


class S3SigV4Signer(_S3Addressing):
    """AWS Signature Version 4 for object storage, on top of
    :py:class:`aws_sdk_signers.SigV4Signer`.

    Presigned requests carry ``X-Amz-Algorithm``, ``X-Amz-Credential``,
    ``X-Amz-Date``, ``X-Amz-Expires``, ``X-Amz-SignedHeaders`` and ``X-Amz-Signature``
    query parameters, sign only ``host`` and leave the payload unsigned. Pipeline
    requests carry an ``Authorization`` header over ``host``, ``content-md5``,
    ``content-type`` and the ``x-amz-*`` headers.
    """

    signing_style = SigningStyle.QUERY_PARAM
    timed_methods = _ALL_METHODS

    def __init__(
        self,
        *,
        region: str,
        service: str = "s3",
        virtual_host: bool = True,
        clock: Callable[[], float] = time.time,
    ) -> None:
        super().__init__(virtual_host=virtual_host)
        if not region:
            raise ConfigurationError("SigV4 signing requires a region.")
        self._region = region
        self._service = service
        self._clock = clock
        self._signer = _BlobSigV4Signer()

    async def presign(
        self, request: BlobRequest, *, credentials: Credentials, expires: int
    ) -> SignedRequest:
        _require_timed(self, self.timed_methods, request.method)
        _require_secret(credentials)
        now = int(self._clock())
        if not 0 < expires - now <= MAX_SIGV4_EXPIRES:
            raise ConfigurationError(
                f"SigV4 presigned requests last 1 to {MAX_SIGV4_EXPIRES} seconds, "
                f"got {expires - now} for {request.method} {request.container}"
            )
        uri, _ = self._locate(request)
        properties = self._properties(now, payload_signing_enabled=False)
        query = urlencode(
            [
                ("X-Amz-Algorithm", SIGV4_ALGORITHM),
                ("X-Amz-Credential", f"{credentials.identity}/{self._scope(now)}"),
                ("X-Amz-Date", properties["date"]),
                ("X-Amz-Expires", str(expires - now)),
                ("X-Amz-SignedHeaders", "host"),
            ],
            quote_via=quote,
        )
        unsigned = AWSRequest(
            destination=_aws_uri(uri, query),
            method=request.method,
            body=None,
            fields=AWSFields(),
        )
        canonical = self._signer.canonical_request(
            signing_properties=properties, request=unsigned
        )
        signature = self._signer.signature(
            string_to_sign=self._signer.string_to_sign(
                canonical_request=canonical, signing_properties=properties
            ),
            secret_key=credentials.secret,
            signing_properties=properties,
        )
        return SignedRequest(
            method=request.method,
            uri=uri.with_path(uri.path or "/", f"{query}&X-Amz-Signature={signature}"),
            headers=request.headers,
            expires=expires,
        )

    async def authorize(
        self, request: BlobRequest, *, credentials: Credentials, now: int
    ) -> SignedRequest:
        _require_secret(credentials)
        uri, _ = self._locate(request)
        signed = self._signer.sign(
            signing_properties=self._properties(
                now,
                payload_signing_enabled=request.method != "PUT",
                content_checksum_enabled=True,
            ),
            http_request=AWSRequest(
                destination=_aws_uri(uri),
                method=request.method,
                body=None,
                fields=_s3_signable_fields(request.headers),
            ),
            identity=AWSCredentialIdentity(
                access_key_id=credentials.identity,
                secret_access_key=credentials.secret,
            ),
        )
        headers = dict(request.headers)
        headers.update((fld.name, fld.as_string()) for fld in signed.fields)
        return SignedRequest(method=request.method, uri=uri, headers=headers)

    def _properties(
        self,
        now: int,
        *,
        payload_signing_enabled: bool,
        content_checksum_enabled: bool = False,
    ) -> SigV4SigningProperties:
        return SigV4SigningProperties(
            region=self._region,
            service=self._service,
            date=datetime.fromtimestamp(now, tz=UTC).strftime(SIGV4_TIMESTAMP_FORMAT),
            payload_signing_enabled=payload_signing_enabled,
            content_checksum_enabled=content_checksum_enabled,
            uri_encode_path=False,
        )

    def _scope(self, now: int) -> str:
        day = datetime.fromtimestamp(now, tz=UTC).strftime("%Y%m%d")
        return f"{day}/{self._region}/{self._service}/aws4_request"


class S3SigV2Signer(_S3Addressing):
    """AWS Signature Version 2 for object storage.

    Presigned requests carry ``AWSAccessKeyId``, ``Expires`` and ``Signature`` query
    parameters. Pipeline requests carry an ``Authorization: AWS id:signature`` header
    and a ``Date`` header.
    """

    signing_style = SigningStyle.QUERY_PARAM
    timed_methods = _ALL_METHODS

    def __init__(
        self, *, virtual_host: bool = True, signer: StringSigner | None = None
    ) -> None:
        super().__init__(virtual_host=virtual_host)
        self._signer = signer or HMACSigner(digest="sha1")

    async def presign(
        self, request: BlobRequest, *, credentials: Credentials, expires: int
    ) -> SignedRequest:
        _require_timed(self, self.timed_methods, request.method)
        uri, resource = self._locate(request)
        canonical = build_canonical_string(
            S3_QUERY_SPEC,
            method=request.method,
            resource_path=resource,
            expires=expires,
            headers=request.headers,
        )
        query = urlencode(
            [
                ("AWSAccessKeyId", credentials.identity),
                ("Expires", str(expires)),
                ("Signature", self._signer.sign(credentials.secret, canonical)),
            ]
        )
        return SignedRequest(
            method=request.method,
            uri=uri.with_path(uri.path or "/", query),
            headers=request.headers,
            expires=expires,
        )

    async def authorize(
        self, request: BlobRequest, *, credentials: Credentials, now: int
    ) -> SignedRequest:
        uri, resource = self._locate(request)
        headers = {**request.headers, "Date": _http_date(now)}
        canonical = build_canonical_string(
            S3_HEADER_SPEC,
            method=request.method,
            resource_path=resource,
            headers=headers,
        )
        signature = self._signer.sign(credentials.secret, canonical)
        headers["Authorization"] = f"AWS {credentials.identity}:{signature}"
        return SignedRequest(method=request.method, uri=uri, headers=headers)


def _require_secret(credentials: Credentials) -> None:
    if not credentials.secret:
        raise ConfigurationError("Refusing to sign with an empty secret.")
