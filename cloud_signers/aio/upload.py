#  Copyright The cloud-signers Authors. All Rights Reserved.
#  SPDX-License-Identifier: Apache-2.0
"""Re-minting of per-attempt upload targets.

Some providers hand out an upload URL and token per transfer. When the storage node
behind that URL goes away, resending to the same URL fails forever; a new target has
to be minted first. :py:class:`UploadSessionRetryFilter` detects that case from the
request path and response status, and leaves every other failure to the caller's
generic retry policy.
"""

import asyncio
import logging
from copy import deepcopy
from dataclasses import dataclass, field
from typing import Final, Protocol

from .._http import URI, Field, HTTPRequest, HTTPResponse
from ..exceptions import ConfigurationError, RetryError, TransientUploadTargetError
from ..identity import AuthSession
from ..interfaces.http import HTTPClient
from ..interfaces.retries import RetryStrategy
from ..retries import SimpleRetryStrategy
from .authenticators import b2_api_request, send_with_reauthentication
from .session import SessionCache
from .utils import read_json

logger: Final = logging.getLogger(__name__)

UPLOAD_TARGET_FAILURE_STATUSES: Final = frozenset({408, 429, 500, 503})
UPLOAD_FILE_MARKER: Final = "/b2_upload_file/"
UPLOAD_PART_MARKER: Final = "/b2_upload_part/"


@dataclass(kw_only=True, frozen=True)
class UploadTarget:
    url: URI
    authorization_token: str = field(repr=False)


class UploadTargetMinter(Protocol):
    async def mint(self, request: HTTPRequest) -> UploadTarget:
        """Mint a fresh target for the upload ``request`` was sent to."""
        ...


def is_upload_request(request: HTTPRequest) -> bool:
    path = request.destination.path or ""
    return UPLOAD_FILE_MARKER in path or UPLOAD_PART_MARKER in path


def is_upload_target_failure(request: HTTPRequest, response: HTTPResponse) -> bool:
    """Whether ``response`` means the upload target of ``request`` is gone."""
    return (
        response.status in UPLOAD_TARGET_FAILURE_STATUSES
        and is_upload_request(request)
    )


class UploadSessionRetryFilter:
    def __init__(
        self,
        http_client: HTTPClient,
        minter: UploadTargetMinter,
        *,
        retry_strategy: RetryStrategy | None = None,
    ) -> None:
        """Send requests, re-minting the upload target when it stops being valid.

        :param http_client: The client that performs each attempt.
        :param minter: Produces a fresh URL and token pair.
        :param retry_strategy: Bounds the number of attempts and their delays.
            Defaults to three attempts.
        """
        self._http_client = http_client
        self._minter = minter
        self._retry_strategy = retry_strategy or SimpleRetryStrategy(max_attempts=3)

    async def send(self, request: HTTPRequest) -> HTTPResponse:
        """Send ``request``.

        :raises TransientUploadTargetError: If the attempts allowed by the retry
            strategy run out while the target keeps failing.
        """
        token = self._retry_strategy.acquire_initial_retry_token()
        current = request
        while True:
            response = await self._http_client.send(current)
            if not is_upload_target_failure(current, response):
                self._retry_strategy.record_success(token=token)
                return response

            error = TransientUploadTargetError(
                f"{current.method} {current.destination.path} failed with status "
                f"{response.status}",
                attempts=token.retry_count + 1,
            )
            try:
                token = self._retry_strategy.refresh_retry_token_for_retry(
                    token_to_renew=token, error=error
                )
            except RetryError as e:
                logger.warning(
                    "Upload target for %s kept failing after %s attempts.",
                    current.method,
                    error.attempts,
                )
                error.is_retry_safe = False
                raise error from e

            target = await self._minter.mint(current)
            logger.info(
                "Re-minted upload target after status %s (attempt %s).",
                response.status,
                token.retry_count + 1,
            )
            current = _retarget(current, target)
            await asyncio.sleep(token.retry_delay)


def _retarget(request: HTTPRequest, target: UploadTarget) -> HTTPRequest:
    retargeted = deepcopy(request)
    retargeted.destination = target.url
    retargeted.fields.set_field(
        Field(name="Authorization", values=[target.authorization_token])
    )
    return retargeted


class B2UploadTargetMinter:
    """Mints upload targets through ``b2_get_upload_url`` and
    ``b2_get_upload_part_url``.

    The bucket id, or the large file id, is the path segment after the upload
    operation name.
    """

    def __init__(
        self, http_client: HTTPClient, session_cache: SessionCache[AuthSession]
    ) -> None:
        self._http_client = http_client
        self._session_cache = session_cache

    async def mint(self, request: HTTPRequest) -> UploadTarget:
        path = request.destination.path or ""
        if UPLOAD_PART_MARKER in path:
            operation, key = "b2_get_upload_part_url", "fileId"
            identifier = _segment_after(path, UPLOAD_PART_MARKER)
        elif UPLOAD_FILE_MARKER in path:
            operation, key = "b2_get_upload_url", "bucketId"
            identifier = _segment_after(path, UPLOAD_FILE_MARKER)
        else:
            raise ConfigurationError(f"{path} is not an upload path")

        response = await send_with_reauthentication(
            self._http_client,
            self._session_cache,
            lambda session: b2_api_request(session, operation, {key: identifier}),
        )
        body = read_json(response, context=f"POST /b2api/v2/{operation}")
        return UploadTarget(
            url=URI.from_string(body["uploadUrl"]),
            authorization_token=body["authorizationToken"],
        )


def _segment_after(path: str, marker: str) -> str:
    segment = path.split(marker, 1)[1].split("/", 1)[0]
    if not segment:
        raise ConfigurationError(f"No identifier follows {marker} in {path}")
    return segment
