#  Copyright The cloud-signers Authors. All Rights Reserved.
#  SPDX-License-Identifier: Apache-2.0
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Literal


class CloudSignersError(Exception):
    """Base exception type for all exceptions raised by cloud-signers."""


type Fault = Literal["client", "server"] | None
"""Whether the client or server is at fault.

If None, then there was not enough information to determine fault.
"""


@dataclass(kw_only=True)
class CallError(CloudSignersError):
    """Base exception for errors raised while talking to a provider.

    Implements :py:class:`.interfaces.retries.ErrorRetryInfo`.
    """

    fault: Fault = None
    """Whether the client or server is at fault."""

    message: str = field(default="", kw_only=False)
    """The message of the error."""

    is_retry_safe: bool | None = None
    """Whether the exception is safe to retry.

    A value of None indicates that there is not enough information available to
    determine if a retry is safe.
    """

    retry_after: float | None = None
    """The amount of time that should pass before a retry."""

    is_throttling_error: bool = False
    """Whether the error is a throttling error."""

    def __post_init__(self):
        super().__init__(self.message)


class ConfigurationError(CloudSignersError, ValueError):
    """A credential, canonicalization input, or config value is missing or invalid.

    These are programmer errors and are never retried.
    """


class EndpointNotFoundError(CloudSignersError):
    """No catalog entry matches the requested service type, version, or region."""


class NoSuchRegionError(EndpointNotFoundError, LookupError):
    """The requested region is not among the resolved regions."""

    def __init__(self, region_id: str, available: Iterable[str]) -> None:
        self.region_id = region_id
        self.available = tuple(available)
        super().__init__(
            f"Region {region_id!r} not found. Available regions: "
            f"{', '.join(self.available) or '<none>'}"
        )


@dataclass(kw_only=True)
class AuthorizationError(CallError):
    """The provider rejected authentication or a signature (401/403)."""

    fault: Fault = "client"
    is_retry_safe: bool | None = False

    status: int | None = None
    """The HTTP status that triggered the error, if any."""


class UnsupportedOperationError(CloudSignersError, NotImplementedError):
    """The provider defines no signing contract for the requested operation."""


@dataclass(kw_only=True)
class TransientUploadTargetError(CallError):
    """An upload URL or token stopped being valid mid-transfer.

    Raised once the bounded number of re-mint attempts is exhausted.
    """

    fault: Fault = "server"
    is_retry_safe: bool | None = True

    attempts: int = 0
    """The number of attempts made, including the initial one."""


class SessionTimeoutError(CloudSignersError, TimeoutError):
    """Waiting on an in-flight session refresh took longer than allowed."""


class RetryError(CloudSignersError):
    """Base exception type for all exceptions raised in retry strategies."""
