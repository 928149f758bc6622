#  Copyright The cloud-signers Authors. All Rights Reserved.
#  SPDX-License-Identifier: Apache-2.0

"""Test doubles for code built on cloud-signers."""

from .mockhttp import MockHTTPClient, MockHTTPClientError

__all__ = (
    "MockHTTPClient",
    "MockHTTPClientError",
)
