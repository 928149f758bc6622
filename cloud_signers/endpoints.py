#  Copyright The cloud-signers Authors. All Rights Reserved.
#  SPDX-License-Identifier: Apache-2.0
"""Service catalogs and the rules for picking one endpoint per region."""

import logging
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass
from enum import Enum
from typing import Any, Final

from ._http import URI
from .exceptions import EndpointNotFoundError, NoSuchRegionError

logger: Final = logging.getLogger(__name__)


class InterfaceKind(Enum):
    """Visibility tag of a catalog endpoint."""

    PUBLIC = "public"
    INTERNAL = "internal"
    ADMIN = "admin"


_AUTO_SELECT_ORDER: Final = (InterfaceKind.PUBLIC, InterfaceKind.INTERNAL)


@dataclass(kw_only=True, frozen=True)
class ServiceEndpoint:
    """A single region-scoped entry of a service catalog."""

    service_type: str
    """The catalog type, for example ``compute`` or ``object-store``."""

    url: URI
    """Base URL of the service."""

    api_version: str | None = None
    """Version the endpoint declares, if any. ``None`` means version-agnostic."""

    region_id: str | None = None
    """Region the endpoint serves. ``None`` for global services."""

    interface: InterfaceKind = InterfaceKind.PUBLIC

    provider: str | None = None
    """Location used in place of ``region_id`` when the entry has no region."""


def normalize_version(version: str) -> tuple[str, ...]:
    """Reduce a version string to comparable parts.

    A leading ``v`` is dropped and trailing zero components are removed, so ``v1``,
    ``1`` and ``1.0`` all normalize to ``("1",)``.
    """
    parts = version.strip().lstrip("vV").split(".")
    while len(parts) > 1 and parts[-1] == "0":
        parts.pop()
    return tuple(parts)


def versions_match(declared: str | None, requested: str) -> bool:
    if declared is None:
        return False
    return normalize_version(declared) == normalize_version(requested)


@dataclass(frozen=True)
class ServiceCatalog:
    """An ordered collection of :py:class:`ServiceEndpoint`.

    Resolution is a pure function of the catalog contents; callers that need caching
    should use :py:class:`.aio.endpoints.CatalogEndpointResolver`.
    """

    endpoints: tuple[ServiceEndpoint, ...] = ()
    provider: str = "default"
    """Fallback location for entries that declare neither a region nor a provider."""

    @classmethod
    def of(
        cls, endpoints: Iterable[ServiceEndpoint], *, provider: str = "default"
    ) -> "ServiceCatalog":
        return cls(endpoints=tuple(endpoints), provider=provider)

    @property
    def service_types(self) -> list[str]:
        """Distinct service types in catalog order."""
        return list(dict.fromkeys(e.service_type for e in self.endpoints))

    def resolve_all(
        self,
        service_type: str,
        api_version: str | None = None,
        *,
        interface: InterfaceKind | None = None,
    ) -> dict[str, URI]:
        """Map each region to the single URL to use for it.

        :param service_type: Exact catalog type to match.
        :param api_version: Version to prefer. Version-specific entries win over
            version-agnostic ones when both exist.
        :param interface: Pass :py:attr:`InterfaceKind.ADMIN` to select admin
            endpoints. Any other value, or ``None``, selects public endpoints and
            falls back to internal ones.
        :raises EndpointNotFoundError: If nothing matches the type or version, or no
            region is left after interface selection.
        """
        candidates = [e for e in self.endpoints if e.service_type == service_type]
        if not candidates:
            raise EndpointNotFoundError(
                f"No endpoints of type {service_type!r} in service catalog. "
                f"Types found: {', '.join(self.service_types) or '<none>'}"
            )

        candidates = self._filter_version(service_type, api_version, candidates)

        by_location: dict[str, list[ServiceEndpoint]] = {}
        for endpoint in candidates:
            by_location.setdefault(self._location_of(endpoint), []).append(endpoint)

        order = (
            (InterfaceKind.ADMIN,)
            if interface is InterfaceKind.ADMIN
            else _AUTO_SELECT_ORDER
        )
        resolved: dict[str, URI] = {}
        for location, group in by_location.items():
            chosen = _pick(group, order)
            if chosen is None:
                logger.debug(
                    "Dropping %s for %s: no %s endpoint.",
                    location,
                    service_type,
                    "/".join(kind.value for kind in order),
                )
                continue
            resolved[location] = chosen.url

        if not resolved:
            raise EndpointNotFoundError(
                f"No {'/'.join(kind.value for kind in order)} endpoints of type "
                f"{service_type!r} in any of the regions "
                f"{', '.join(by_location)}"
            )
        logger.debug(
            "Resolved %s (version %s) to regions %s.",
            service_type,
            api_version,
            list(resolved),
        )
        return resolved

    def resolve(
        self,
        service_type: str,
        api_version: str | None = None,
        region_id: str | None = None,
        *,
        interface: InterfaceKind | None = None,
    ) -> URI:
        """Resolve one URL.

        If ``region_id`` is not given, the last resolved region is used, which is the
        behavior expected for global, single-location services.

        :raises NoSuchRegionError: If ``region_id`` was resolved for no endpoint.
        """
        resolved = self.resolve_all(service_type, api_version, interface=interface)
        return select_region(resolved, region_id)

    def lookup(
        self,
        service_type: str,
        api_version: str | None = None,
        region_id: str | None = None,
    ) -> URI | None:
        """Like :py:meth:`resolve`, but returns ``None`` when nothing matches."""
        try:
            return self.resolve(service_type, api_version, region_id)
        except EndpointNotFoundError:
            return None

    def _filter_version(
        self,
        service_type: str,
        api_version: str | None,
        candidates: list[ServiceEndpoint],
    ) -> list[ServiceEndpoint]:
        if api_version is None:
            return candidates
        declared = [e.api_version for e in candidates if e.api_version is not None]
        if not declared:
            return candidates

        matching = [e for e in candidates if versions_match(e.api_version, api_version)]
        if matching:
            return matching

        agnostic = [e for e in candidates if e.api_version is None]
        if agnostic:
            return agnostic

        raise EndpointNotFoundError(
            f"No endpoints of type {service_type!r} for version {api_version!r}. "
            f"Versions found: {', '.join(dict.fromkeys(declared))}"
        )

    def _location_of(self, endpoint: ServiceEndpoint) -> str:
        return endpoint.region_id or endpoint.provider or self.provider


def _pick(
    group: Sequence[ServiceEndpoint], order: Sequence[InterfaceKind]
) -> ServiceEndpoint | None:
    for kind in order:
        for endpoint in group:
            if endpoint.interface is kind:
                return endpoint
    return None


def select_region(resolved: Mapping[str, URI], region_id: str | None) -> URI:
    """Pick a region out of a resolved mapping.

    :raises NoSuchRegionError: If ``region_id`` is not a key of ``resolved``.
    """
    if region_id is None:
        return list(resolved.values())[-1]
    try:
        return resolved[region_id]
    except KeyError:
        raise NoSuchRegionError(region_id, resolved) from None


def parse_keystone_v2_catalog(
    document: Mapping[str, Any], *, provider: str = "openstack"
) -> ServiceCatalog:
    """Build a catalog from an already decoded v2 ``access`` document.

    Each catalog entry holds a list of endpoints with ``publicURL``, ``internalURL``
    and ``adminURL`` keys; every URL present becomes one :py:class:`ServiceEndpoint`.
    """
    access = document.get("access", document)
    url_keys = (
        ("publicURL", InterfaceKind.PUBLIC),
        ("internalURL", InterfaceKind.INTERNAL),
        ("adminURL", InterfaceKind.ADMIN),
    )
    endpoints: list[ServiceEndpoint] = []
    for service in access.get("serviceCatalog", []):
        for entry in service.get("endpoints", []):
            for key, kind in url_keys:
                if (url := entry.get(key)) is None:
                    continue
                endpoints.append(
                    ServiceEndpoint(
                        service_type=service["type"],
                        url=URI.from_string(url),
                        api_version=entry.get("versionId"),
                        region_id=entry.get("region"),
                        interface=kind,
                        provider=provider,
                    )
                )
    return ServiceCatalog.of(endpoints, provider=provider)


def parse_keystone_v3_catalog(
    document: Mapping[str, Any], *, provider: str = "openstack"
) -> ServiceCatalog:
    """Build a catalog from an already decoded v3 ``token`` document."""
    token = document.get("token", document)
    endpoints: list[ServiceEndpoint] = []
    for service in token.get("catalog", []):
        for entry in service.get("endpoints", []):
            try:
                kind = InterfaceKind(entry.get("interface", "public"))
            except ValueError:
                logger.debug("Skipping endpoint with interface %s.", entry)
                continue
            endpoints.append(
                ServiceEndpoint(
                    service_type=service["type"],
                    url=URI.from_string(entry["url"]),
                    api_version=entry.get("version"),
                    region_id=entry.get("region_id") or entry.get("region"),
                    interface=kind,
                    provider=provider,
                )
            )
    return ServiceCatalog.of(endpoints, provider=provider)
