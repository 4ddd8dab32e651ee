"""
Tests for the token service and password hashing
"""
from datetime import timedelta

import pytest

from src.reports_api.tokens import (
    ACCESS,
    REFRESH,
    InvalidToken,
    TokenService,
    get_token_service,
    hash_password,
    verify_password,
)

CLAIMS = {"userId": 7, "username": "alice", "role": "admin"}


class LogicalClock:
    def __init__(self, now=1_700_000_000.0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, delta: timedelta):
        self.now += delta.total_seconds()


@pytest.fixture
def clock():
    return LogicalClock()


@pytest.fixture
def service(clock):
    return TokenService("unit-secret", access_ttl=timedelta(hours=1), clock=clock)


class TestIssueAndVerify:

    def test_round_trip_returns_identity_claims(self, service):
        token = service.issue_access(CLAIMS)

        assert service.verify(token) == CLAIMS

    def test_refresh_token_verifies_as_refresh(self, service):
        token = service.issue_refresh(CLAIMS)

        assert service.verify(token, kind=REFRESH) == CLAIMS

    def test_empty_secret_rejected(self):
        with pytest.raises(ValueError):
            TokenService("")

    def test_settings_backed_service(self):
        service = get_token_service()

        assert service.access_ttl == timedelta(minutes=1440)
        assert service.refresh_ttl == timedelta(days=7)


class TestRejection:

    def test_zero_ttl_token_is_already_expired(self, service):
        token = service.issue_access(CLAIMS, ttl=timedelta(0))

        with pytest.raises(InvalidToken):
            service.verify(token)

    def test_expired_after_clock_advances(self, service, clock):
        token = service.issue_access(CLAIMS)
        clock.advance(timedelta(minutes=59))
        assert service.verify(token) == CLAIMS

        clock.advance(timedelta(hours=2))

        with pytest.raises(InvalidToken):
            service.verify(token)

    def test_wrong_secret(self, service, clock):
        other = TokenService("another-secret", clock=clock)
        token = other.issue_access(CLAIMS)

        with pytest.raises(InvalidToken):
            service.verify(token)

    def test_tampered_payload(self, service):
        header, _, signature = service.issue_access(CLAIMS).split(".")
        _, forged_payload, _ = service.issue_access({**CLAIMS, "role": "user"}).split(".")

        with pytest.raises(InvalidToken):
            service.verify(".".join([header, forged_payload, signature]))

    def test_malformed_token(self, service):
        with pytest.raises(InvalidToken):
            service.verify("not-a-jwt")

    def test_refresh_token_is_not_an_access_token(self, service):
        token = service.issue_refresh(CLAIMS)

        with pytest.raises(InvalidToken):
            service.verify(token, kind=ACCESS)

    def test_access_token_is_not_a_refresh_token(self, service):
        token = service.issue_access(CLAIMS)

        with pytest.raises(InvalidToken):
            service.verify(token, kind=REFRESH)


class TestPasswords:

    def test_hash_verifies(self):
        hashed = hash_password("s3cret!")

        assert hashed != "s3cret!"
        assert verify_password("s3cret!", hashed)

    def test_wrong_password(self):
        assert not verify_password("guess", hash_password("s3cret!"))

    def test_missing_hash(self):
        assert not verify_password("s3cret!", None)

    def test_plaintext_stored_value_is_rejected(self):
        assert not verify_password("s3cret!", "s3cret!")
