#  Copyright The cloud-signers Authors. All Rights Reserved.
#  SPDX-License-Identifier: Apache-2.0
import logging
from typing import Final

from .._http import URI
from ..endpoints import InterfaceKind, select_region
from ..exceptions import EndpointNotFoundError
from ..identity import AuthSession
from .session import SessionCache

logger: Final = logging.getLogger(__name__)


class CatalogEndpointResolver:
    """Resolves endpoints of one service type from the current session's catalog.

    The resolved region mapping is kept for as long as the session that produced it.
    Any new session, whether from expiry or re-authentication, recomputes it.
    """

    def __init__(
        self,
        session_cache: SessionCache[AuthSession],
        service_type: str,
        api_version: str | None = None,
    ) -> None:
        self._session_cache = session_cache
        self.service_type = service_type
        self.api_version = api_version
        self._memo: tuple[AuthSession, dict[str, URI]] | None = None

    async def resolve_all(self) -> dict[str, URI]:
        session = await self._session_cache.get()
        if self._memo is not None and self._memo[0] is session:
            return dict(self._memo[1])

        if session.catalog is None:
            raise EndpointNotFoundError(
                f"The current session carries no service catalog to resolve "
                f"{self.service_type!r} from."
            )
        resolved = session.catalog.resolve_all(self.service_type, self.api_version)
        self._memo = (session, resolved)
        return dict(resolved)

    async def resolve(self, region_id: str | None = None) -> URI:
        return select_region(await self.resolve_all(), region_id)

    async def region_ids(self) -> list[str]:
        return list(await self.resolve_all())

    async def resolve_admin_all(self) -> dict[str, URI]:
        """Resolve admin endpoints. These are never memoized."""
        session = await self._session_cache.get()
        if session.catalog is None:
            raise EndpointNotFoundError(
                f"The current session carries no service catalog to resolve "
                f"{self.service_type!r} from."
            )
        return session.catalog.resolve_all(
            self.service_type, self.api_version, interface=InterfaceKind.ADMIN
        )

    def invalidate(self) -> None:
        """Forget the memoized mapping together with the session it came from."""
        logger.info("Invalidating %s endpoints.", self.service_type)
        self._memo = None
        self._session_cache.invalidate()


class SessionAttributeEndpoint:
    """An endpoint read from an attribute of the current session, such as the
    download URL returned at account authorization."""

    def __init__(
        self, session_cache: SessionCache[AuthSession], attribute: str
    ) -> None:
        self._session_cache = session_cache
        self._attribute = attribute

    async def resolve(self, region_id: str | None = None) -> URI:
        session = await self._session_cache.get()
        if (url := session.attributes.get(self._attribute)) is None:
            raise EndpointNotFoundError(
                f"The current session has no {self._attribute!r} attribute."
            )
        return URI.from_string(url)
