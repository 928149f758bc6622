#  Copyright The cloud-signers Authors. All Rights Reserved.
#  SPDX-License-Identifier: Apache-2.0
"""Canonical strings: the exact text a provider recomputes to verify a signature.

Each provider fixes its own field order and delimiter, so the layout is data
(:py:class:`CanonicalStringSpec`) and :py:func:`build_canonical_string` is the single
function that renders it. Rendering is pure: expiry and dates are always passed in.
"""

import re
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from enum import Enum
from typing import Final
from urllib.parse import quote

from .exceptions import ConfigurationError

_NEWLINES: Final = re.compile(r"[\r\n]+")
_REPEATED_SLASHES: Final = re.compile(r"/{2,}")


class CanonicalField(Enum):
    METHOD = "method"
    PATH = "path"
    IDENTITY = "identity"
    EXPIRES = "expires"
    HEADER_BLOCK = "header_block"
    """All request headers starting with :py:attr:`CanonicalStringSpec.header_prefix`,
    one ``name:value`` line each."""


@dataclass(frozen=True)
class HeaderField:
    """A positional header value, written as its bare value."""

    name: str


@dataclass(frozen=True)
class ExtraField:
    """A positional value supplied through the ``extra`` mapping."""

    name: str


@dataclass(frozen=True)
class Literal:
    """A constant written verbatim."""

    value: str


type Component = CanonicalField | HeaderField | ExtraField | Literal


@dataclass(frozen=True)
class CanonicalStringSpec:
    """Ordered description of a provider's string-to-sign."""

    components: Sequence[Component]
    delimiter: str = "\n"
    header_prefix: str | None = None
    trailing_delimiter: bool = False
    optional: frozenset[str] = frozenset()
    """Names of :py:class:`HeaderField` / :py:class:`ExtraField` components that may
    be absent, in which case an empty value is written."""


PATH_QUERY_SPEC: Final = CanonicalStringSpec(
    components=(
        CanonicalField.METHOD,
        CanonicalField.PATH,
        CanonicalField.IDENTITY,
        CanonicalField.EXPIRES,
    ),
)
"""``METHOD\\nPATH\\nIDENTITY\\nEXPIRES`` used for query-string presigned URLs."""

TEMP_URL_SPEC: Final = CanonicalStringSpec(
    components=(CanonicalField.METHOD, CanonicalField.EXPIRES, CanonicalField.PATH),
)
"""``METHOD\\nEXPIRES\\nPATH`` used for temporary URLs signed with an account key."""

DIGEST_SPEC: Final = CanonicalStringSpec(
    components=(
        CanonicalField.METHOD,
        CanonicalField.PATH,
        CanonicalField.IDENTITY,
        CanonicalField.EXPIRES,
    ),
    delimiter=":",
)
"""Colon delimited form hashed by :py:class:`.signers.SHA256DigestSigner`."""

EMC_HEADER_SPEC: Final = CanonicalStringSpec(
    components=(
        CanonicalField.METHOD,
        HeaderField("content-type"),
        HeaderField("range"),
        HeaderField("date"),
        CanonicalField.PATH,
        CanonicalField.HEADER_BLOCK,
    ),
    header_prefix="x-emc-",
    optional=frozenset({"content-type", "range", "date"}),
)
"""Header authenticated form: positional headers, then sorted ``x-emc-*`` lines."""

SHARED_KEY_LITE_SPEC: Final = CanonicalStringSpec(
    components=(
        CanonicalField.METHOD,
        HeaderField("content-md5"),
        HeaderField("content-type"),
        HeaderField("date"),
        CanonicalField.HEADER_BLOCK,
        CanonicalField.PATH,
    ),
    header_prefix="x-ms-",
    optional=frozenset({"content-md5", "content-type", "date"}),
)
"""Shared key lite form; ``PATH`` is ``/{account}/{container}/{name}[?comp=...]``."""

SHARED_ACCESS_SIGNATURE_SPEC: Final = CanonicalStringSpec(
    components=(
        ExtraField("signed_permission"),
        Literal(""),  # signed start
        ExtraField("signed_expiry"),
        CanonicalField.PATH,
        Literal(""),  # signed identifier
        Literal(""),  # signed ip
        Literal(""),  # signed protocol
        ExtraField("signed_version"),
        Literal(""),  # cache-control
        Literal(""),  # content-disposition
        Literal(""),  # content-encoding
        Literal(""),  # content-language
        Literal(""),  # content-type
    ),
)
"""Service shared access signature for a single blob; ``PATH`` is the decoded
``/blob/{account}/{container}/{name}``."""

S3_QUERY_SPEC: Final = CanonicalStringSpec(
    components=(
        CanonicalField.METHOD,
        HeaderField("content-md5"),
        HeaderField("content-type"),
        CanonicalField.EXPIRES,
        CanonicalField.HEADER_BLOCK,
        CanonicalField.PATH,
    ),
    header_prefix="x-amz-",
    optional=frozenset({"content-md5", "content-type"}),
)
"""Version 2 query string authentication; the expiry takes the place of the date."""

S3_HEADER_SPEC: Final = CanonicalStringSpec(
    components=(
        CanonicalField.METHOD,
        HeaderField("content-md5"),
        HeaderField("content-type"),
        HeaderField("date"),
        CanonicalField.HEADER_BLOCK,
        CanonicalField.PATH,
    ),
    header_prefix="x-amz-",
    optional=frozenset({"content-md5", "content-type"}),
)
"""Version 2 ``Authorization: AWS id:sig`` form."""


def build_canonical_string(
    spec: CanonicalStringSpec,
    *,
    method: str,
    resource_path: str,
    identity: str | None = None,
    expires: int | None = None,
    headers: Mapping[str, str] | None = None,
    extra: Mapping[str, str] | None = None,
) -> str:
    """Render the string to sign for one request.

    :param spec: The provider's layout.
    :param method: HTTP method; upper-cased.
    :param resource_path: An already canonical path. It is written verbatim.
    :param identity: Caller identity, required when the spec lists it.
    :param expires: Epoch seconds, required when the spec lists it.
    :param headers: Request headers. Lookups are case insensitive.
    :param extra: Provider specific positional values.
    :raises ConfigurationError: If a required input is missing.
    """
    if not method:
        raise ConfigurationError("A method is required to build a canonical string.")
    lowered = {k.lower(): v for k, v in (headers or {}).items()}
    extra = extra or {}

    lines: list[str] = []
    for component in spec.components:
        match component:
            case CanonicalField.METHOD:
                lines.append(method.upper())
            case CanonicalField.PATH:
                lines.append(resource_path)
            case CanonicalField.IDENTITY:
                if not identity:
                    raise ConfigurationError(
                        f"An identity is required to sign {method} {resource_path}."
                    )
                lines.append(identity)
            case CanonicalField.EXPIRES:
                if expires is None:
                    raise ConfigurationError(
                        f"An expiry is required to sign {method} {resource_path}."
                    )
                lines.append(str(expires))
            case CanonicalField.HEADER_BLOCK:
                if spec.header_prefix is None:
                    raise ConfigurationError("HEADER_BLOCK requires a header_prefix.")
                block = canonical_header_block(lowered, spec.header_prefix)
                # Each header line carries its own terminator, so absent headers
                # leave nothing behind.
                if block:
                    lines.append(block.rstrip("\n"))
            case HeaderField(name=name):
                value = lowered.get(name.lower())
                if value is None and name not in spec.optional:
                    raise ConfigurationError(
                        f"Header {name!r} is required to sign {method} {resource_path}."
                    )
                lines.append(value or "")
            case ExtraField(name=name):
                value = extra.get(name)
                if value is None and name not in spec.optional:
                    raise ConfigurationError(
                        f"{name!r} is required to sign {method} {resource_path}."
                    )
                lines.append(value or "")
            case Literal(value=value):
                lines.append(value)

    rendered = spec.delimiter.join(lines)
    if spec.trailing_delimiter:
        rendered += spec.delimiter
    return rendered


def canonical_header_block(headers: Mapping[str, str], prefix: str) -> str:
    """Render every header starting with ``prefix`` as ``name:value\\n``.

    Names are lower-cased and sorted. Newlines inside values are removed and runs of
    whitespace collapsed to a single space.
    """
    prefix = prefix.lower()
    selected = {
        name.lower(): " ".join(_NEWLINES.sub("", value).split())
        for name, value in headers.items()
        if name.lower().startswith(prefix)
    }
    return "".join(f"{name}:{selected[name]}\n" for name in sorted(selected))


def canonical_path(path: str) -> str:
    """Collapse repeated slashes and drop a trailing slash unless the path is ``/``."""
    path = _REPEATED_SLASHES.sub("/", path or "/")
    if path.endswith("/") and len(path) > 1:
        return path[:-1]
    return path


def blob_path(
    prefix: str, container: str, name: str | None = None, *, encode: bool = True
) -> str:
    """Join an already canonical ``prefix`` with a container and blob name.

    ``/`` inside ``name`` is kept so that pseudo directories survive. With
    ``encode=False`` both are joined as given, which is the form providers that
    sign the decoded resource expect.
    """
    if not container:
        raise ConfigurationError("A container name is required.")
    if name is not None and not name:
        raise ConfigurationError("A blob name must not be empty.")
    if encode:
        container = quote(container, safe="")
        name = None if name is None else quote(name, safe="/")
    parts = [prefix.rstrip("/"), container]
    if name is not None:
        parts.append(name)
    return "/".join(parts)
