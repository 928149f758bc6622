#  Copyright The cloud-signers Authors. All Rights Reserved.
#  SPDX-License-Identifier: Apache-2.0
"""String-level signers.

A string signer turns a secret and an already built canonical string into the token
a provider expects. Signers hold no state beyond their algorithm choice and are safe
to share.
"""

import base64
import binascii
import hashlib
import hmac
import logging
from enum import Enum
from typing import Final, Literal, Protocol

from .exceptions import ConfigurationError

logger: Final = logging.getLogger(__name__)

type DigestName = Literal["sha1", "sha256"]


class SignatureEncoding(Enum):
    BASE64 = "base64"
    HEX = "hex"


class StringSigner(Protocol):
    """Computes a signature over a canonical string."""

    def sign(self, secret: str | None, canonical_string: str) -> str:
        """Sign ``canonical_string`` with ``secret``.

        :raises ConfigurationError: If ``secret`` is empty or malformed.
        """
        ...


def _require_secret(secret: str | None) -> str:
    if not secret:
        raise ConfigurationError("Refusing to sign with an empty secret.")
    return secret


class HMACSigner:
    """HMAC over the canonical string with a configurable digest and encoding."""

    def __init__(
        self,
        *,
        digest: DigestName = "sha256",
        encoding: SignatureEncoding = SignatureEncoding.BASE64,
        base64_key: bool = False,
    ) -> None:
        """
        :param digest: The hash used inside the HMAC.
        :param encoding: How the raw MAC is rendered.
        :param base64_key: Whether the secret is itself base64 and must be decoded
            before use as the key.
        """
        if digest not in ("sha1", "sha256"):
            raise ConfigurationError(f"Unsupported HMAC digest: {digest}")
        self._digest = digest
        self._encoding = encoding
        self._base64_key = base64_key

    @property
    def algorithm(self) -> str:
        return f"hmac-{self._digest}/{self._encoding.value}"

    def sign(self, secret: str | None, canonical_string: str) -> str:
        key = self._key(_require_secret(secret))
        mac = hmac.new(key, canonical_string.encode("utf-8"), self._digest)
        logger.debug("Computed %s signature.", self.algorithm)
        if self._encoding is SignatureEncoding.HEX:
            return mac.hexdigest()
        return base64.b64encode(mac.digest()).decode("ascii")

    def _key(self, secret: str) -> bytes:
        if not self._base64_key:
            return secret.encode("utf-8")
        try:
            return base64.b64decode(secret, validate=True)
        except binascii.Error as e:
            raise ConfigurationError("The signing secret is not valid base64.") from e

    def __repr__(self) -> str:
        return (
            f"HMACSigner(digest={self._digest!r}, encoding={self._encoding}, "
            f"base64_key={self._base64_key})"
        )


class SHA256DigestSigner:
    """Plain SHA-256 digest of ``canonical_string + ":" + secret``, hex encoded.

    Used by providers that accept a digest in place of a MAC for simple temporary
    URLs.
    """

    algorithm: Final = "sha256-digest/hex"

    def sign(self, secret: str | None, canonical_string: str) -> str:
        material = f"{canonical_string}:{_require_secret(secret)}"
        logger.debug("Computed %s signature.", self.algorithm)
        return hashlib.sha256(material.encode("utf-8")).hexdigest()
