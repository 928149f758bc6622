#  Copyright The cloud-signers Authors. All Rights Reserved.
#  SPDX-License-Identifier: Apache-2.0
"""HTTP primitives shared by signers, resolvers, and the upload filter.

Transport is not performed here; an :py:class:`.interfaces.http.HTTPClient`
implementation sends :py:class:`HTTPRequest` objects.
"""

from __future__ import annotations

from collections import Counter, OrderedDict
from collections.abc import Iterable, Iterator
from copy import deepcopy
from dataclasses import dataclass, field, replace
from functools import cached_property
from urllib.parse import urlparse, urlunparse

from .exceptions import ConfigurationError


class Field:
    """A name-value pair representing a single header in an HTTP message.

    All field names are case insensitive and case-variance must be treated as
    equivalent. Names are preserved for accuracy during transmission.
    """

    def __init__(self, *, name: str, values: Iterable[str] | None = None):
        self.name = name
        self.values: list[str] = list(values) if values is not None else []

    def add(self, value: str) -> None:
        """Append a value to a field."""
        self.values.append(value)

    def set(self, values: list[str]) -> None:
        """Overwrite existing field values."""
        self.values = values

    def as_string(self, delimiter: str = ",") -> str:
        """Get delimited string of all values.

        If the ``Field`` has zero values, the empty string is returned. If the ``Field``
        has exactly one value, the value is returned unmodified.
        """
        value_count = len(self.values)
        if value_count == 0:
            return ""
        if value_count == 1:
            return self.values[0]
        return delimiter.join(quote_and_escape_field_value(val) for val in self.values)

    def as_tuples(self) -> list[tuple[str, str]]:
        """Get list of ``name``, ``value`` tuples where each tuple represents one
        value."""
        return [(self.name, val) for val in self.values]

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Field):
            return False
        return self.name == other.name and self.values == other.values

    def __repr__(self) -> str:
        return f"Field(name={self.name!r}, value={self.values!r})"


class Fields:
    def __init__(self, initial: Iterable[Field] | None = None):
        """Collection of header entries mapped by name.

        :param initial: Initial list of ``Field`` objects. ``Field``s can also be added
        and later removed.
        """
        init_fields = list(initial) if initial is not None else []
        init_field_names = [self._normalize_field_name(fld.name) for fld in init_fields]
        fname_counter = Counter(init_field_names)
        repeated_names_exist = (
            len(init_fields) > 0 and fname_counter.most_common(1)[0][1] > 1
        )
        if repeated_names_exist:
            non_unique_names = [name for name, num in fname_counter.items() if num > 1]
            raise ValueError(
                "Field names of the initial list of fields must be unique. The "
                "following normalized field names appear more than once: "
                f"{', '.join(non_unique_names)}."
            )
        self.entries: OrderedDict[str, Field] = OrderedDict(
            zip(init_field_names, init_fields)
        )

    def set_field(self, field: Field) -> None:
        """Alias for __setitem__ to utilize the field.name for the entry key."""
        self.__setitem__(field.name, field)

    def get_value(self, name: str, default: str | None = None) -> str | None:
        """Get the delimited value of a field, or ``default`` if it is absent."""
        try:
            return self[name].as_string()
        except KeyError:
            return default

    def remove_field(self, name: str) -> None:
        """Remove a field if present."""
        self.entries.pop(self._normalize_field_name(name), None)

    def as_dict(self) -> dict[str, str]:
        """Flatten into a ``name -> value`` dict, keeping original name casing."""
        return {fld.name: fld.as_string() for fld in self.entries.values()}

    def __setitem__(self, name: str, field: Field) -> None:
        """Set or override entry for a Field name."""
        normalized_name = self._normalize_field_name(name)
        normalized_field_name = self._normalize_field_name(field.name)
        if normalized_name != normalized_field_name:
            raise ValueError(
                f"Supplied key {name} does not match Field.name "
                f"provided: {normalized_field_name}"
            )
        self.entries[normalized_name] = field

    def __getitem__(self, name: str) -> Field:
        """Retrieve Field entry."""
        return self.entries[self._normalize_field_name(name)]

    def __delitem__(self, name: str) -> None:
        """Delete entry from collection."""
        del self.entries[self._normalize_field_name(name)]

    def _normalize_field_name(self, name: str) -> str:
        return name.lower()

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Fields):
            return False
        return self.entries == other.entries

    def __iter__(self) -> Iterator[Field]:
        yield from self.entries.values()

    def __len__(self) -> int:
        return len(self.entries)

    def __repr__(self) -> str:
        return f"Fields({self.entries})"

    def __contains__(self, key: str) -> bool:
        return self._normalize_field_name(key) in self.entries


def quote_and_escape_field_value(value: str) -> str:
    """Escapes and quotes a single :class:`Field` value if necessary."""
    chars_to_quote = (",", '"')
    if any(char in chars_to_quote for char in value):
        escaped = value.replace("\\", "\\\\").replace('"', '\\"')
        return f'"{escaped}"'
    else:
        return value


def tuples_to_fields(tuples: Iterable[tuple[str, str]]) -> Fields:
    """Convert ``name``, ``value`` tuples to ``Fields`` object. Each tuple represents
    one Field value."""
    fields = Fields()
    for name, value in tuples:
        try:
            fields[name].add(value)
        except KeyError:
            fields[name] = Field(name=name, values=[value])
    return fields


@dataclass(kw_only=True, frozen=True)
class URI:
    """Universal Resource Identifier, target location for an :py:class:`HTTPRequest`."""

    scheme: str = "https"
    """For example ``http`` or ``https``."""

    host: str
    """The hostname, for example ``blob.core.windows.net``."""

    port: int | None = None
    """An explicit port number."""

    path: str | None = None
    """Path component of the URI."""

    query: str | None = None
    """Query component of the URI as string."""

    fragment: str | None = None
    """Part of the URI specification, but may not be transmitted by a client."""

    def __post_init__(self) -> None:
        if not self.host:
            raise ConfigurationError("URI host must not be empty.")

    @classmethod
    def from_string(cls, value: str) -> URI:
        """Parse an absolute URL into a :py:class:`URI`.

        :raises ConfigurationError: If no hostname can be parsed from ``value``.
        """
        parsed = urlparse(value)
        if parsed.hostname is None:
            raise ConfigurationError(
                f"Unable to parse hostname from provided URI: {value}"
            )
        return cls(
            scheme=parsed.scheme or "https",
            host=parsed.hostname,
            port=parsed.port,
            path=parsed.path or None,
            query=parsed.query or None,
            fragment=parsed.fragment or None,
        )

    @property
    def netloc(self) -> str:
        """Construct netloc string in format ``{host}:{port}``.

        ``port`` is only included if set.
        """
        return self._netloc

    # cached_property does NOT behave like property, it actually allows for setting.
    # Therefore we need a layer of indirection.
    @cached_property
    def _netloc(self) -> str:
        if self.port is not None:
            return f"{self.host}:{self.port}"
        return self.host

    def with_path(self, path: str, query: str | None = None) -> URI:
        """Copy with the same scheme, host and port but a new path and query."""
        return replace(self, path=path, query=query, fragment=None)

    def append_path(self, suffix: str) -> URI:
        """Return a copy with ``suffix`` joined onto the existing path."""
        base = (self.path or "").rstrip("/")
        return self.with_path(f"{base}/{suffix.lstrip('/')}")

    def build(self) -> str:
        """Construct URI string representation.

        Returns a string of the form ``{scheme}://{host}:{port}{path}?{query}#{frag}``
        """
        components = (
            self.scheme,
            self.netloc,
            self.path or "",
            "",  # params
            self.query,
            self.fragment,
        )
        return urlunparse(components)


@dataclass(kw_only=True)
class HTTPRequest:
    """A request handed to an :py:class:`.interfaces.http.HTTPClient`."""

    method: str
    destination: URI
    fields: Fields = field(default_factory=Fields)
    body: bytes | None = None

    def __deepcopy__(self, memo: dict[int, HTTPRequest] | None = None) -> HTTPRequest:
        if memo is None:
            memo = {}
        if id(self) in memo:
            return memo[id(self)]
        # the destination doesn't need to be copied because it's immutable
        new_instance = self.__class__(
            method=self.method,
            destination=self.destination,
            fields=deepcopy(self.fields, memo),
            body=self.body,
        )
        memo[id(self)] = new_instance
        return new_instance


@dataclass(kw_only=True)
class HTTPResponse:
    """A response returned by an :py:class:`.interfaces.http.HTTPClient`."""

    status: int
    fields: Fields = field(default_factory=Fields)
    body: bytes = b""
    reason: str | None = None
