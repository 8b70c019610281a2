"""
Test suite for the dyndns2 update server.

Run with: uv run pytest test_dynger_nic.py -v
"""

from unittest.mock import MagicMock

import pytest
from flask.testing import FlaskClient
from pytest_mock import MockerFixture
from werkzeug import test as werkzeug_test

import dynger_nic as nic
from dynger_auth import CredentialVerifier
from dynger_errors import ConfigError, ProviderError, ProviderUnavailable
from dynger_reconcile import RecordReconciler

SECRET_TOKEN = "YXgugRPzoLcz80xGCXnnWZcUFRfZ9Cmo-Iin1MwpjsM"
GOOD_PASSWORD = "NVwJdKNeMuAP-irILTI7Q_xB_XbSFtQXcFwucnCloiY"
HOSTNAME = "to.denkruum.ch"


@pytest.fixture
def reconciler(mocker: MockerFixture) -> MagicMock:
    mock = mocker.MagicMock(spec=RecordReconciler)
    mock.set_address.return_value = True
    return mock


@pytest.fixture
def client(reconciler: MagicMock) -> FlaskClient:
    app = nic.create_app(CredentialVerifier.from_b64(SECRET_TOKEN), reconciler)
    return app.test_client()


def update(client: FlaskClient, **params: str) -> werkzeug_test.TestResponse:
    query = {"hostname": HOSTNAME, "myip": "203.0.113.42"}
    query.update(params)
    return client.get("/nic/update", query_string=query, auth=("vvv", GOOD_PASSWORD))


# =============================================================================
# Configuration Tests
# =============================================================================


class TestLoadConfig:
    """Tests for load_config() function."""

    def test_required_values(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Test loading a minimal configuration."""
        monkeypatch.setenv("DYN_MASTER_SECRET", SECRET_TOKEN)
        monkeypatch.setenv("NOW_API_TKN", "api-token")
        for name in ("DYN_PROVIDER_URL", "DYN_HOST", "DYN_PORT"):
            monkeypatch.delenv(name, raising=False)

        result = nic.load_config()

        assert result == nic.Config(master_secret=SECRET_TOKEN, api_token="api-token")
        assert result.provider_url == "https://api.vercel.com"
        assert result.port == 8080

    def test_optional_values(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Test overriding the optional settings."""
        monkeypatch.setenv("DYN_MASTER_SECRET", SECRET_TOKEN)
        monkeypatch.setenv("NOW_API_TKN", "api-token")
        monkeypatch.setenv("DYN_PROVIDER_URL", "https://dns.test")
        monkeypatch.setenv("DYN_HOST", "0.0.0.0")
        monkeypatch.setenv("DYN_PORT", "9000")

        result = nic.load_config()

        assert result.provider_url == "https://dns.test"
        assert result.host == "0.0.0.0"
        assert result.port == 9000

    def test_missing_master_secret(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Test that a missing master secret is a ConfigError."""
        monkeypatch.setenv("DYN_MASTER_SECRET", "  ")
        monkeypatch.setenv("NOW_API_TKN", "api-token")

        with pytest.raises(ConfigError, match="DYN_MASTER_SECRET"):
            nic.load_config()

    def test_missing_api_token(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Test that a missing API token is a ConfigError."""
        monkeypatch.setenv("DYN_MASTER_SECRET", SECRET_TOKEN)
        monkeypatch.delenv("NOW_API_TKN", raising=False)

        with pytest.raises(ConfigError, match="NOW_API_TKN"):
            nic.load_config()


class TestGetPort:
    """Tests for get_port() function."""

    @pytest.mark.parametrize("value", ["invalid", "0", "70000", "-1"])
    def test_invalid_falls_back(self, monkeypatch: pytest.MonkeyPatch, value: str) -> None:
        """Test fallback to the default port."""
        monkeypatch.setenv("DYN_PORT", value)

        assert nic.get_port() == 8080


class TestGetLogLevel:
    """Tests for get_log_level() function."""

    def test_default(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Test default level when env var not set."""
        monkeypatch.delenv("DYN_LOG_LEVEL", raising=False)

        assert nic.get_log_level() == "INFO"

    def test_case_insensitive(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Test that level names are upper-cased."""
        monkeypatch.setenv("DYN_LOG_LEVEL", "debug")

        assert nic.get_log_level() == "DEBUG"

    def test_invalid(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Test fallback to INFO for unknown levels."""
        monkeypatch.setenv("DYN_LOG_LEVEL", "LOUD")

        assert nic.get_log_level() == "INFO"


# =============================================================================
# Input Validation Tests
# =============================================================================


class TestCheckDomain:
    """Tests for check_domain() function."""

    @pytest.mark.parametrize("name", ["to.denkruum.ch", "a-b.example.com", "x1.y2.org", "localhost"])
    def test_valid(self, name: str) -> None:
        """Test that valid host names pass."""
        nic.check_domain(name)

    @pytest.mark.parametrize(
        "name",
        [
            "",
            "a" * 256,
            ".example.com",
            "a..example.com",
            "example.com.",
            "-a.example.com",
            "a-.example.com",
            "a_b.example.com",
            "exämple.com",
            "example.-com",
            "example.123",
            ("a" * 64) + ".com",
        ],
    )
    def test_invalid(self, name: str) -> None:
        """Test that invalid host names raise ValueError."""
        with pytest.raises(ValueError):
            nic.check_domain(name)


class TestParseIpv4:
    """Tests for parse_ipv4() function."""

    def test_valid(self) -> None:
        assert nic.parse_ipv4(" 203.0.113.42 ") == "203.0.113.42"

    @pytest.mark.parametrize("value", [None, "", "2001:db8::1", "999.1.1.1", "<html>"])
    def test_invalid(self, value: str | None) -> None:
        assert nic.parse_ipv4(value) is None


# =============================================================================
# Handler Tests
# =============================================================================


class TestNicUpdate:
    """Tests for the /nic/update handler."""

    def test_good(self, client: FlaskClient, reconciler: MagicMock) -> None:
        """Test a successful update."""
        response = update(client)

        assert response.status_code == 200
        assert response.get_data(as_text=True) == "good 203.0.113.42"
        reconciler.set_address.assert_called_once_with(HOSTNAME, "203.0.113.42")

    def test_nochg(self, client: FlaskClient, reconciler: MagicMock) -> None:
        """Test an update with an unchanged address."""
        reconciler.set_address.return_value = False

        response = update(client)

        assert response.status_code == 200
        assert response.get_data(as_text=True) == "nochg 203.0.113.42"

    def test_missing_auth(self, client: FlaskClient, reconciler: MagicMock) -> None:
        """Test that requests without Basic auth get a 401 challenge."""
        response = client.get("/nic/update", query_string={"hostname": HOSTNAME})

        assert response.status_code == 401
        assert response.headers["WWW-Authenticate"] == 'Basic realm="Dyn DNS"'
        reconciler.set_address.assert_not_called()

    def test_bearer_auth_rejected(self, client: FlaskClient) -> None:
        """Test that a non-Basic Authorization header gets a 401 challenge."""
        response = client.get(
            "/nic/update",
            query_string={"hostname": HOSTNAME},
            headers={"Authorization": "Bearer abc"},
        )

        assert response.status_code == 401

    def test_badauth(self, client: FlaskClient, reconciler: MagicMock) -> None:
        """Test that a wrong user is refused."""
        response = client.get(
            "/nic/update",
            query_string={"hostname": HOSTNAME, "myip": "203.0.113.42"},
            auth=("vv", GOOD_PASSWORD),
        )

        assert response.get_data(as_text=True) == "badauth"
        reconciler.set_address.assert_not_called()

    def test_badauth_malformed_password(self, client: FlaskClient, reconciler: MagicMock) -> None:
        """Test that a malformed token is just badauth."""
        response = client.get(
            "/nic/update",
            query_string={"hostname": HOSTNAME, "myip": "203.0.113.42"},
            auth=("vvv", "not a token"),
        )

        assert response.status_code == 200
        assert response.get_data(as_text=True) == "badauth"
        reconciler.set_address.assert_not_called()

    def test_notfqdn(self, client: FlaskClient, reconciler: MagicMock) -> None:
        """Test that a bad hostname is refused."""
        response = update(client, hostname="bad_host..ch")

        assert response.get_data(as_text=True) == "notfqdn"
        reconciler.set_address.assert_not_called()

    def test_invalid_myip_uses_remote_address(self, client: FlaskClient, reconciler: MagicMock) -> None:
        """Test fallback to the client's address when myip is unusable."""
        response = client.get(
            "/nic/update",
            query_string={"hostname": HOSTNAME, "myip": "garbage"},
            auth=("vvv", GOOD_PASSWORD),
            environ_base={"REMOTE_ADDR": "198.51.100.7"},
        )

        assert response.get_data(as_text=True) == "good 198.51.100.7"
        reconciler.set_address.assert_called_once_with(HOSTNAME, "198.51.100.7")

    def test_no_ipv4_available(self, client: FlaskClient, reconciler: MagicMock) -> None:
        """Test 911 when neither myip nor the remote address is IPv4."""
        response = client.get(
            "/nic/update",
            query_string={"hostname": HOSTNAME},
            auth=("vvv", GOOD_PASSWORD),
            environ_base={"REMOTE_ADDR": "2001:db8::1"},
        )

        assert response.get_data(as_text=True) == "911"
        reconciler.set_address.assert_not_called()

    @pytest.mark.parametrize(
        "error",
        [
            ProviderUnavailable("connection refused", "list"),
            ProviderError("forbidden", "Not authorized", "create"),
        ],
    )
    def test_provider_failure(self, client: FlaskClient, reconciler: MagicMock, error: Exception) -> None:
        """Test that reconciliation errors map to 911."""
        reconciler.set_address.side_effect = error

        response = update(client)

        assert response.status_code == 200
        assert response.get_data(as_text=True) == "911"


# =============================================================================
# Main Function Tests
# =============================================================================


class TestMain:
    """Tests for main() function."""

    def test_main_missing_config(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Test main() fails without configuration."""
        monkeypatch.setattr(nic, "load_dotenv", lambda x: None)
        monkeypatch.delenv("DYN_MASTER_SECRET", raising=False)
        monkeypatch.delenv("NOW_API_TKN", raising=False)

        assert nic.main() == 1

    def test_main_bad_secret(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Test main() fails with an all-zero master secret."""
        monkeypatch.setattr(nic, "load_dotenv", lambda x: None)
        monkeypatch.setenv("DYN_MASTER_SECRET", "A" * 43)
        monkeypatch.setenv("NOW_API_TKN", "api-token")

        assert nic.main() == 1

    def test_main_runs_server(self, monkeypatch: pytest.MonkeyPatch, mocker: MockerFixture) -> None:
        """Test main() starts the Flask server with the configured address."""
        monkeypatch.setattr(nic, "load_dotenv", lambda x: None)
        monkeypatch.setenv("DYN_MASTER_SECRET", SECRET_TOKEN)
        monkeypatch.setenv("NOW_API_TKN", "api-token")
        monkeypatch.setenv("DYN_HOST", "0.0.0.0")
        monkeypatch.setenv("DYN_PORT", "9000")
        run = mocker.patch("flask.Flask.run")

        assert nic.main() == 0
        run.assert_called_once_with(host="0.0.0.0", port=9000)


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
