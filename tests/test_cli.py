"""Unit tests for the command line entry point."""

from unittest.mock import MagicMock, patch

import pytest

from trafego_dns import cli
from trafego_dns.errors import ProviderAuthError
from trafego_dns.syncer import SyncResult


@pytest.fixture
def env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in ("DNS_PROVIDER", "SYNC_MODE", "TRAEFIK_CONFIG_PATH"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("CLOUDFLARE_TOKEN", "token")
    monkeypatch.setenv("CLOUDFLARE_ZONE", "example.com")
    monkeypatch.setenv("PUBLIC_IP", "203.0.113.10")


class TestMain:
    """Tests for main()."""

    def test_invalid_configuration_exits(self, env, monkeypatch: pytest.MonkeyPatch) -> None:
        """Test configuration errors exit with status 1."""
        monkeypatch.setenv("DNS_PROVIDER", "bind")

        with pytest.raises(SystemExit) as exc_info:
            cli.main([])

        assert exc_info.value.code == 1

    def test_provider_init_failure_exits(self, env) -> None:
        """Test bad provider credentials at startup exit with status 1."""
        provider = MagicMock()
        provider.name = "Cloudflare"
        provider.ensure_initialized.side_effect = ProviderAuthError("invalid token")

        with patch.object(cli, "create_dns_provider", return_value=provider):
            with pytest.raises(SystemExit) as exc_info:
                cli.main(["once"])

        assert exc_info.value.code == 1

    def test_once_mode_runs_single_cycle(self, env) -> None:
        """Test once mode runs one sync and returns on success."""
        syncer = MagicMock()
        syncer.sync_once.return_value = SyncResult()

        with patch.object(cli, "create_dns_provider", return_value=MagicMock()), patch.object(
            cli, "build_syncer", return_value=syncer
        ):
            cli.main(["once"])

        syncer.sync_once.assert_called_once()
        syncer.run_forever.assert_not_called()

    def test_once_mode_failed_cycle_exits(self, env) -> None:
        """Test once mode exits with status 1 when the cycle fails."""
        syncer = MagicMock()
        syncer.sync_once.return_value = SyncResult(error="Traefik unreachable")

        with patch.object(cli, "create_dns_provider", return_value=MagicMock()), patch.object(
            cli, "build_syncer", return_value=syncer
        ):
            with pytest.raises(SystemExit) as exc_info:
                cli.main(["once"])

        assert exc_info.value.code == 1
