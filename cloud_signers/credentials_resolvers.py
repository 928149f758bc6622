#  Copyright The cloud-signers Authors. All Rights Reserved.
#  SPDX-License-Identifier: Apache-2.0
import logging
import os
from collections.abc import Mapping, Sequence
from typing import Final

from .exceptions import ConfigurationError
from .identity import Credentials
from .interfaces.identity import CredentialsResolver

logger: Final = logging.getLogger(__name__)

IDENTITY_ENV_VAR: Final = "CLOUD_IDENTITY"
CREDENTIAL_ENV_VAR: Final = "CLOUD_CREDENTIAL"


class StaticCredentialsResolver(CredentialsResolver[Credentials]):
    """Resolve fixed credentials.

    Rotation is done by calling :py:meth:`rotate`; requests signed before the
    rotation keep their original signatures.
    """

    def __init__(self, *, credentials: Credentials) -> None:
        self._credentials = credentials

    async def get_identity(self) -> Credentials:
        return self._credentials

    def rotate(self, credentials: Credentials) -> None:
        logger.info("Rotating static credentials for %s.", credentials.identity)
        self._credentials = credentials


class EnvironmentCredentialsResolver(CredentialsResolver[Credentials]):
    """Resolves credentials from ``CLOUD_IDENTITY`` and ``CLOUD_CREDENTIAL``."""

    def __init__(self, *, environ: Mapping[str, str] | None = None) -> None:
        self._environ = environ
        self._credentials: Credentials | None = None

    async def get_identity(self) -> Credentials:
        if self._credentials is not None:
            return self._credentials

        environ = os.environ if self._environ is None else self._environ
        identity = environ.get(IDENTITY_ENV_VAR)
        secret = environ.get(CREDENTIAL_ENV_VAR)
        if not identity or not secret:
            raise ConfigurationError(
                f"{IDENTITY_ENV_VAR} and {CREDENTIAL_ENV_VAR} are required"
            )

        self._credentials = Credentials(identity=identity, secret=secret)
        return self._credentials


class ChainedCredentialsResolver(CredentialsResolver[Credentials]):
    """Attempts to resolve credentials by checking a sequence of sub-resolvers.

    If a nested resolver raises a :py:class:`ConfigurationError`, the next resolver
    in the chain is attempted. The first resolver to succeed is remembered.
    """

    def __init__(self, resolvers: Sequence[CredentialsResolver[Credentials]]) -> None:
        self._resolvers = resolvers
        self._chosen: CredentialsResolver[Credentials] | None = None

    async def get_identity(self) -> Credentials:
        if self._chosen is not None:
            return await self._chosen.get_identity()

        logger.debug("Attempting to resolve credentials from resolver chain.")
        for resolver in self._resolvers:
            try:
                credentials = await resolver.get_identity()
            except ConfigurationError as e:
                logger.debug(
                    "Failed to resolve credentials from %s: %s", type(resolver), e
                )
                continue
            self._chosen = resolver
            return credentials

        raise ConfigurationError("Failed to resolve credentials from resolver chain.")
