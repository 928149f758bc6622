#  Copyright The cloud-signers Authors. All Rights Reserved.
#  SPDX-License-Identifier: Apache-2.0
"""JWT bearer assertions for the OAuth 2.0 ``jwt-bearer`` grant."""

import logging
from datetime import timedelta
from typing import Any, Final, Literal

import jwt

from .exceptions import ConfigurationError
from .identity import Credentials

logger: Final = logging.getLogger(__name__)

JWT_BEARER_GRANT_TYPE: Final = "urn:ietf:params:oauth:grant-type:jwt-bearer"

type AssertionAlgorithm = Literal["RS256", "HS256", "none"]


class JwtAssertionSigner:
    """Builds signed assertions that a token endpoint exchanges for an access token.

    The credentials' identity is the issuer. The secret is the RSA private key in PEM
    form for ``RS256``, or the shared key for ``HS256``. It is ignored for ``none``.
    """

    def __init__(
        self,
        *,
        audience: str,
        scope: str,
        algorithm: AssertionAlgorithm = "RS256",
        lifetime: timedelta = timedelta(hours=1),
    ) -> None:
        if algorithm not in ("RS256", "HS256", "none"):
            raise ConfigurationError(f"Unsupported assertion algorithm: {algorithm}")
        self.audience = audience
        self.scope = scope
        self.algorithm = algorithm
        self.lifetime = lifetime

    def claims(self, credentials: Credentials, *, now: int) -> dict[str, Any]:
        return {
            "iss": credentials.identity,
            "scope": self.scope,
            "aud": self.audience,
            "exp": now + int(self.lifetime.total_seconds()),
            "iat": now,
        }

    def assertion(self, credentials: Credentials, *, now: int) -> str:
        """Encode the assertion for ``credentials`` issued at ``now``.

        :raises ConfigurationError: If the key is missing or cannot be used with the
            configured algorithm.
        """
        key: str | None = None
        if self.algorithm != "none":
            if not credentials.secret:
                raise ConfigurationError(
                    f"A key is required to sign a {self.algorithm} assertion."
                )
            key = credentials.secret
        try:
            token = jwt.encode(
                self.claims(credentials, now=now), key, algorithm=self.algorithm
            )
        except (jwt.PyJWTError, ValueError, TypeError) as e:
            raise ConfigurationError(
                f"Unable to sign a {self.algorithm} assertion for "
                f"{credentials.identity}: {type(e).__name__}"
            ) from e
        logger.debug("Built %s assertion for %s.", self.algorithm, credentials.identity)
        return token
