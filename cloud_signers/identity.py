#  Copyright The cloud-signers Authors. All Rights Reserved.
#  SPDX-License-Identifier: Apache-2.0
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from types import MappingProxyType
from typing import Any

from .endpoints import ServiceCatalog
from .interfaces.identity import Identity


def ensure_utc(value: datetime) -> datetime:
    """Convert ``value`` to UTC, treating naive datetimes as already UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


@dataclass(kw_only=True, frozen=True)
class Credentials(Identity):
    """An identity/secret pair as configured for a provider."""

    identity: str
    """The account, user, or key id the provider knows the caller by."""

    secret: str = field(repr=False)
    """The shared secret or private key material used to sign requests."""

    expiration: datetime | None = None
    """When these credentials stop being valid, if ever."""

    def __post_init__(self) -> None:
        if self.expiration is not None:
            object.__setattr__(self, "expiration", ensure_utc(self.expiration))


@dataclass(kw_only=True, frozen=True, eq=False)
class AuthSession(Identity):
    """The result of authenticating against a provider.

    A session carries the bearer token and, for providers that return one, the
    service catalog that is valid for the life of the token.
    """

    token: str = field(repr=False)
    """The opaque token to present on subsequent requests."""

    issued_at: datetime
    """When the session was created."""

    expires_at: datetime
    """When the session stops being valid. Always UTC."""

    catalog: ServiceCatalog | None = None
    """The service catalog returned alongside the token, if any."""

    attributes: Mapping[str, Any] = field(default_factory=dict)
    """Provider specific values returned at authentication time, such as api urls."""

    def __post_init__(self) -> None:
        object.__setattr__(self, "issued_at", ensure_utc(self.issued_at))
        object.__setattr__(self, "expires_at", ensure_utc(self.expires_at))
        object.__setattr__(self, "attributes", MappingProxyType(dict(self.attributes)))

    @property
    def expiration(self) -> datetime | None:  # type: ignore[override]
        return self.expires_at

    @classmethod
    def create(
        cls,
        *,
        token: str,
        lifetime: timedelta,
        catalog: ServiceCatalog | None = None,
        attributes: Mapping[str, Any] | None = None,
        now: datetime | None = None,
    ) -> "AuthSession":
        """Build a session that expires ``lifetime`` after ``now``."""
        issued_at = now or datetime.now(tz=UTC)
        return cls(
            token=token,
            issued_at=issued_at,
            expires_at=issued_at + lifetime,
            catalog=catalog,
            attributes=attributes or {},
        )
