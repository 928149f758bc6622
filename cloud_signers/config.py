#  Copyright The cloud-signers Authors. All Rights Reserved.
#  SPDX-License-Identifier: Apache-2.0
import logging
import os
import time
from collections.abc import Awaitable, Callable, Mapping
from typing import Any, ClassVar, Final, Literal

from ._http import URI
from .aio.aiohttp import AIOHTTPClient
from .aio.authenticators import (
    B2Authenticator,
    B2DownloadAuthorizer,
    KeystoneAuthenticator,
    temp_url_key_loader,
)
from .aio.endpoints import CatalogEndpointResolver, SessionAttributeEndpoint
from .aio.session import SessionCache
from .blobstore import (
    DEFAULT_SIGNED_URL_TTL,
    BlobRequestSigner,
    EndpointSource,
    RequestSigner,
)
from .credentials_resolvers import (
    ChainedCredentialsResolver,
    EnvironmentCredentialsResolver,
    StaticCredentialsResolver,
)
from .exceptions import ConfigurationError
from .identity import AuthSession, Credentials
from .interfaces.http import HTTPClient
from .interfaces.identity import CredentialsResolver
from .request_signers import (
    HeaderMacSigner,
    PathQuerySigner,
    S3SigV2Signer,
    S3SigV4Signer,
    SessionTokenSigner,
    TemporaryUrlKeySigner,
)

logger: Final = logging.getLogger(__name__)

SOURCE_CONSTRUCTOR = "constructor"
SOURCE_ENVIRONMENT = "environment"
SOURCE_DEFAULT = "default"
SOURCE_IN_CODE_UPDATE = "in_code_update"

SourceType = Literal["constructor", "environment", "default", "in_code_update"]

PROVIDERS: Final = ("atmos", "aws-s3", "azureblob", "b2", "openstack-swift", "s3")
AWS_S3_DEFAULT_ENDPOINT: Final = URI(host="s3.amazonaws.com")
AWS_S3_DEFAULT_REGION: Final = "us-east-1"
MAX_SIGNED_URL_TTL: Final = 604800


class ConfigValue:
    """Configuration value with metadata about its source"""

    def __init__(self, value: Any, source: SourceType):
        self.value = value
        self.source = source


class SignerConfig:
    """Signer configuration with precedence-based resolution.

    Each field is taken from the constructor, then the environment, then its
    default. The sentinel value (...) distinguishes "not provided" from "explicitly
    set to None".
    """

    CONFIG_FIELDS: ClassVar[dict[str, dict[str, Any]]] = {
        "provider": {
            "env_var": "CLOUD_PROVIDER",
            "default": None,
            "validator": "_validate_provider",
        },
        "identity": {
            "env_var": "CLOUD_IDENTITY",
            "default": None,
            "type": str | None,
        },
        "credential": {
            "env_var": "CLOUD_CREDENTIAL",
            "default": None,
            "type": str | None,
        },
        "endpoint": {
            "env_var": "CLOUD_ENDPOINT",
            "default": None,
            "validator": "_validate_endpoint",
        },
        "region": {
            "env_var": "CLOUD_REGION",
            "default": None,
            "type": str | None,
        },
        "signed_url_ttl": {
            "env_var": "CLOUD_SIGNED_URL_TTL",
            "default": DEFAULT_SIGNED_URL_TTL,
            "validator": "_validate_signed_url_ttl",
        },
    }

    def __init__(
        self,
        *,
        provider: str = ...,  # type: ignore[assignment]
        identity: str | None = ...,  # type: ignore[assignment]
        credential: str | None = ...,  # type: ignore[assignment]
        endpoint: str | URI | None = ...,  # type: ignore[assignment]
        region: str | None = ...,  # type: ignore[assignment]
        signed_url_ttl: int = ...,  # type: ignore[assignment]
    ):
        self._constructor_values = {
            k: v for k, v in locals().items() if k != "self" and v is not ...
        }
        self._resolved = False

    @property
    def resolved(self) -> bool:
        return self._resolved

    async def resolve(
        self,
        *,
        environment_loader: Callable[[], Awaitable[Mapping[str, str]]] | None = None,
    ) -> None:
        """Resolve configuration from all sources.

        :param environment_loader: Custom environment loader function.
        :raises ConfigurationError: If a value fails validation.
        """
        if self._resolved:
            raise RuntimeError(
                "Config has already been resolved. Multiple calls to resolve() are "
                "not allowed."
            )

        env_values = await (environment_loader or self._load_environment_values)()
        for field_name, field_info in self.CONFIG_FIELDS.items():
            resolved_value = self._resolve_field(field_name, field_info, env_values)
            setattr(self, f"_{field_name}", resolved_value)
            logger.debug("Resolved %s from %s.", field_name, resolved_value.source)

        self._resolved = True

    async def _load_environment_values(self) -> Mapping[str, str]:
        return os.environ

    def _resolve_field(
        self,
        field_name: str,
        field_info: dict[str, Any],
        env_values: Mapping[str, str],
    ) -> ConfigValue:
        env_var = field_info.get("env_var")
        if field_name in self._constructor_values:
            value = self._constructor_values[field_name]
            source: SourceType = SOURCE_CONSTRUCTOR
        elif env_var and env_var in env_values:
            value = env_values[env_var]
            source = SOURCE_ENVIRONMENT
        else:
            value = field_info["default"]
            source = SOURCE_DEFAULT

        if validator := field_info.get("validator"):
            value = getattr(self, validator)(value, field_name)
        elif not isinstance(value, field_info["type"]):
            raise ConfigurationError(
                f"{field_name} must be {field_info['type']}, got {type(value).__name__}"
            )
        return ConfigValue(value, source)

    def _validate_provider(self, value: Any, field_name: str) -> str:
        if value not in PROVIDERS:
            raise ConfigurationError(
                f"{field_name} must be one of {', '.join(PROVIDERS)}, got {value!r}"
            )
        return value

    def _validate_endpoint(self, value: Any, field_name: str) -> URI | None:
        match value:
            case None | URI():
                return value
            case str():
                return URI.from_string(value)
            case _:
                raise ConfigurationError(f"{field_name} must be a string or URI")

    def _validate_signed_url_ttl(self, value: Any, field_name: str) -> int:
        try:
            ttl = int(value)
        except (TypeError, ValueError) as e:
            raise ConfigurationError(f"{field_name} must be an integer") from e
        if not 1 <= ttl <= MAX_SIGNED_URL_TTL:
            raise ConfigurationError(
                f"{field_name} must be between 1 and {MAX_SIGNED_URL_TTL}, got {ttl}"
            )
        return ttl

    def get_config_value_object(self, field_name: str) -> ConfigValue:
        """Get the raw ConfigValue object for a field"""
        if not self._resolved:
            raise RuntimeError("Config must be resolved before accessing values")
        return getattr(self, f"_{field_name}")

    @property
    def provider(self) -> str:
        return self.get_config_value_object("provider").value

    @provider.setter
    def provider(self, value: str) -> None:
        self._provider = ConfigValue(
            self._validate_provider(value, "provider"), SOURCE_IN_CODE_UPDATE
        )

    @property
    def identity(self) -> str | None:
        return self.get_config_value_object("identity").value

    @identity.setter
    def identity(self, value: str | None) -> None:
        self._identity = ConfigValue(value, SOURCE_IN_CODE_UPDATE)

    @property
    def credential(self) -> str | None:
        return self.get_config_value_object("credential").value

    @credential.setter
    def credential(self, value: str | None) -> None:
        self._credential = ConfigValue(value, SOURCE_IN_CODE_UPDATE)

    @property
    def endpoint(self) -> URI | None:
        return self.get_config_value_object("endpoint").value

    @endpoint.setter
    def endpoint(self, value: str | URI | None) -> None:
        self._endpoint = ConfigValue(
            self._validate_endpoint(value, "endpoint"), SOURCE_IN_CODE_UPDATE
        )

    @property
    def region(self) -> str | None:
        return self.get_config_value_object("region").value

    @region.setter
    def region(self, value: str | None) -> None:
        self._region = ConfigValue(value, SOURCE_IN_CODE_UPDATE)

    @property
    def signed_url_ttl(self) -> int:
        return self.get_config_value_object("signed_url_ttl").value

    @signed_url_ttl.setter
    def signed_url_ttl(self, value: int) -> None:
        self._signed_url_ttl = ConfigValue(
            self._validate_signed_url_ttl(value, "signed_url_ttl"),
            SOURCE_IN_CODE_UPDATE,
        )


def create_blob_request_signer(
    config: SignerConfig,
    *,
    http_client: HTTPClient | None = None,
    credentials_resolver: CredentialsResolver[Credentials] | None = None,
    session_cache: SessionCache[AuthSession] | None = None,
    clock: Callable[[], float] = time.time,
) -> BlobRequestSigner:
    """Build the :py:class:`BlobRequestSigner` for ``config.provider``.

    :param config: A resolved configuration.
    :param http_client: Used by providers that authenticate over the network.
        Defaults to :py:class:`.aio.aiohttp.AIOHTTPClient`.
    :param credentials_resolver: Defaults to the configured identity and credential,
        falling back to the environment.
    :param session_cache: An existing authentication session to share.
    :param clock: Returns the current epoch time in seconds.
    :raises ConfigurationError: If the configuration lacks what the provider needs.
    """
    if not config.resolved:
        raise ConfigurationError("Config must be resolved before building a signer.")
    credentials_resolver = credentials_resolver or _default_credentials_resolver(config)

    request_signer: RequestSigner
    endpoint: URI | EndpointSource
    match config.provider:
        case "atmos":
            endpoint = _required_endpoint(config)
            request_signer = PathQuerySigner()
        case "aws-s3":
            endpoint = config.endpoint or AWS_S3_DEFAULT_ENDPOINT
            request_signer = S3SigV4Signer(
                region=config.region or AWS_S3_DEFAULT_REGION, clock=clock
            )
        case "s3":
            endpoint = _required_endpoint(config)
            request_signer = S3SigV2Signer(virtual_host=False)
        case "azureblob":
            if config.endpoint is not None:
                endpoint = config.endpoint
            elif config.identity:
                endpoint = HeaderMacSigner.default_endpoint(config.identity)
            else:
                raise ConfigurationError(
                    "azureblob needs an endpoint or an identity naming the account"
                )
            request_signer = HeaderMacSigner()
        case "openstack-swift":
            http_client = http_client or AIOHTTPClient()
            session_cache = session_cache or SessionCache(
                KeystoneAuthenticator(
                    http_client, credentials_resolver, _required_endpoint(config)
                ).authenticate,
                name="keystone session",
            )
            endpoint = CatalogEndpointResolver(session_cache, "object-store")
            key_cache = SessionCache(
                temp_url_key_loader(
                    http_client, session_cache, endpoint, config.region
                ),
                name="temp url key",
            )
            request_signer = TemporaryUrlKeySigner(
                session_cache=session_cache, key_cache=key_cache
            )
        case "b2":
            http_client = http_client or AIOHTTPClient()
            session_cache = session_cache or SessionCache(
                B2Authenticator(
                    http_client,
                    credentials_resolver,
                    config.endpoint or B2Authenticator.DEFAULT_ENDPOINT,
                ).authenticate,
                name="b2 account authorization",
            )
            endpoint = SessionAttributeEndpoint(session_cache, "download_url")
            request_signer = SessionTokenSigner(
                session_cache=session_cache,
                download_authorizer=B2DownloadAuthorizer(http_client, session_cache),
                clock=clock,
            )
        case _:
            raise ConfigurationError(f"Unknown provider: {config.provider}")

    logger.debug("Built %s request signer.", config.provider)
    return BlobRequestSigner(
        request_signer,
        credentials_resolver,
        endpoint,
        default_ttl=config.signed_url_ttl,
        region_id=config.region,
        session_cache=session_cache,
        clock=clock,
    )


def _required_endpoint(config: SignerConfig) -> URI:
    if config.endpoint is None:
        raise ConfigurationError(f"{config.provider} requires an endpoint")
    return config.endpoint


def _default_credentials_resolver(
    config: SignerConfig,
) -> CredentialsResolver[Credentials]:
    resolvers: list[CredentialsResolver[Credentials]] = []
    if config.identity and config.credential:
        resolvers.append(
            StaticCredentialsResolver(
                credentials=Credentials(
                    identity=config.identity, secret=config.credential
                )
            )
        )
    resolvers.append(EnvironmentCredentialsResolver())
    return ChainedCredentialsResolver(resolvers)
