#  Copyright The cloud-signers Authors. All Rights Reserved.
#  SPDX-License-Identifier: Apache-2.0
"""Cloud Signers resolves provider endpoints from service catalogs and signs blob
requests for storage providers that authenticate with HMACs, shared keys, temporary
URL keys, SigV4, session tokens, or JWT assertions."""

from ._http import URI, Field, Fields, HTTPRequest, HTTPResponse
from .blobstore import (
    Blob,
    BlobRequestSigner,
    GetOptions,
    SignedRequest,
    SigningStyle,
)
from .config import SignerConfig, create_blob_request_signer
from .endpoints import InterfaceKind, ServiceCatalog, ServiceEndpoint
from .identity import AuthSession, Credentials

__license__ = "Apache-2.0"
__version__ = "0.1.0"

__all__ = (
    "URI",
    "AuthSession",
    "Blob",
    "BlobRequestSigner",
    "Credentials",
    "Field",
    "Fields",
    "GetOptions",
    "HTTPRequest",
    "HTTPResponse",
    "InterfaceKind",
    "ServiceCatalog",
    "ServiceEndpoint",
    "SignedRequest",
    "SigningStyle",
    "SignerConfig",
    "create_blob_request_signer",
)
