#  Copyright The cloud-signers Authors. All Rights Reserved.
#  SPDX-License-Identifier: Apache-2.0
from datetime import UTC, datetime, timedelta, timezone

import pytest
from cloud_signers.identity import AuthSession, Credentials, ensure_utc
from freezegun import freeze_time


@pytest.mark.parametrize(
    "value,expected",
    [
        (datetime(2024, 1, 1, 12), datetime(2024, 1, 1, 12, tzinfo=UTC)),
        (
            datetime(2024, 1, 1, 14, tzinfo=timezone(timedelta(hours=2))),
            datetime(2024, 1, 1, 12, tzinfo=UTC),
        ),
    ],
)
def test_ensure_utc(value: datetime, expected: datetime) -> None:
    actual = ensure_utc(value)
    assert actual == expected
    assert actual.tzinfo is UTC


def test_credentials_never_expire_by_default() -> None:
    credentials = Credentials(identity="user", secret="secret")
    assert credentials.expiration is None
    assert not credentials.is_expired


def test_credentials_expiration_is_utc() -> None:
    credentials = Credentials(
        identity="user", secret="secret", expiration=datetime(2024, 1, 1)
    )
    assert credentials.expiration == datetime(2024, 1, 1, tzinfo=UTC)


def test_session_expiry() -> None:
    with freeze_time("2024-01-01 00:00:00") as frozen:
        session = AuthSession.create(token="token", lifetime=timedelta(hours=1))
        assert session.issued_at == datetime(2024, 1, 1, tzinfo=UTC)
        assert session.expiration == datetime(2024, 1, 1, 1, tzinfo=UTC)
        assert not session.is_expired

        frozen.tick(timedelta(hours=1))
        assert session.is_expired


def test_session_attributes_are_read_only() -> None:
    attributes = {"api_url": "https://api.example.com"}
    session = AuthSession.create(
        token="secret-token", lifetime=timedelta(hours=1), attributes=attributes
    )
    attributes["api_url"] = "changed"

    assert session.attributes["api_url"] == "https://api.example.com"
    with pytest.raises(TypeError):
        session.attributes["api_url"] = "changed"  # type: ignore
    assert "secret-token" not in repr(session)


def test_sessions_compare_by_identity() -> None:
    now = datetime(2024, 1, 1, tzinfo=UTC)
    first = AuthSession.create(token="t", lifetime=timedelta(hours=1), now=now)
    second = AuthSession.create(token="t", lifetime=timedelta(hours=1), now=now)
    assert first != second
