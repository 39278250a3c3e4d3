from datetime import datetime, timedelta, timezone

from sdk_automation.github.types import InstallationRef, InstallationToken, SignedJWT

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def _jwt(**overrides) -> SignedJWT:
    defaults = {
        "token": "header.claims.signature",
        "app_id": 1,
        "issued_at": NOW - timedelta(seconds=60),
        "expires_at": NOW + timedelta(seconds=540),
    }
    defaults.update(overrides)
    return SignedJWT(**defaults)


class TestSignedJWT:
    def test_usable_until_expiry(self):
        signed = _jwt()
        assert signed.is_usable(NOW)
        assert not signed.is_usable(NOW + timedelta(seconds=540))

    def test_not_usable_once_consumed(self):
        signed = _jwt()
        signed.consume()
        assert not signed.is_usable(NOW)


class TestInstallationToken:
    def _token(self) -> InstallationToken:
        return InstallationToken(
            token="ghs_secretvalue",
            expires_at=NOW + timedelta(hours=1),
            installation_id=123,
            repository_full_name="org/python-sdk",
        )

    def test_expires_in(self):
        assert self._token().expires_in(NOW) == 3600

    def test_is_expired(self):
        assert self._token().is_expired(NOW + timedelta(hours=1))
        assert not self._token().is_expired(NOW)

    def test_covers_only_its_repository(self):
        token = self._token()
        assert token.covers("org/python-sdk")
        assert token.covers("Org/Python-SDK")
        assert not token.covers("org/go-sdk")

    def test_repr_is_masked(self):
        assert "ghs_secretvalue" not in repr(self._token())


def test_installation_ref_splits_owner_and_repo():
    ref = InstallationRef(installation_id=1, repository_full_name="org/python-sdk")
    assert ref.owner == "org"
    assert ref.repo == "python-sdk"
