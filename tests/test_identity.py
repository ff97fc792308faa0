"""Tests for identity providers."""

from prepsim.identity import EnvironmentIdentity, StaticIdentity


class TestStaticIdentity:
    def test_user_id(self):
        assert StaticIdentity("alice").current_user_id() == "alice"

    def test_empty_means_signed_out(self):
        assert StaticIdentity("").current_user_id() is None
        assert StaticIdentity(None).current_user_id() is None


class TestEnvironmentIdentity:
    def test_reads_env(self, monkeypatch):
        monkeypatch.setenv("PREPSIM_USER_ID", "bob")
        assert EnvironmentIdentity().current_user_id() == "bob"

    def test_unset(self, monkeypatch):
        monkeypatch.delenv("PREPSIM_USER_ID", raising=False)
        assert EnvironmentIdentity().current_user_id() is None
