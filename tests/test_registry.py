"""Tests for gateway registration and settings-driven setup."""

import httpx
import pytest

from bankpay.config import GatewayAccountSettings, Settings
from bankpay.exceptions import GatewayConfigurationError
from bankpay.gateways.mellat import MellatGateway
from bankpay.gateways.registry import GatewayRegistry, build_registry
from bankpay.gateways.virtual import VirtualGateway
from bankpay.models.payment import GatewayAccount

from tests.helpers import MELLAT_ACCOUNT


class TestGatewayRegistry:
    def test_first_account_is_the_default(self, mellat):
        second = GatewayAccount(gateway="mellat", terminal_id="7654321", user_name="u", user_password="p", name="backup")
        registry = GatewayRegistry()
        registry.register(mellat, (MELLAT_ACCOUNT, second))

        assert registry.get_account("mellat") is MELLAT_ACCOUNT
        assert registry.get_account("mellat", "backup") is second

    def test_resolve(self, registry, mellat):
        adapter, account = registry.resolve("mellat", "main")
        assert adapter is mellat
        assert account is MELLAT_ACCOUNT

    def test_unknown_gateway(self, registry):
        with pytest.raises(GatewayConfigurationError):
            registry.resolve("nowhere")

    def test_unknown_account(self, registry):
        with pytest.raises(GatewayConfigurationError, match="backup"):
            registry.get_account("mellat", "backup")

    def test_gateway_without_accounts(self, mellat):
        registry = GatewayRegistry()
        registry.register(mellat)

        with pytest.raises(GatewayConfigurationError):
            registry.get_account("mellat")

    def test_duplicate_registration(self, registry, virtual):
        with pytest.raises(GatewayConfigurationError):
            registry.register(virtual)

    def test_duplicate_account_name(self, registry):
        with pytest.raises(GatewayConfigurationError):
            registry.add_account(MELLAT_ACCOUNT)

    def test_account_for_unregistered_gateway(self):
        with pytest.raises(GatewayConfigurationError):
            GatewayRegistry().add_account(MELLAT_ACCOUNT)

    @pytest.mark.parametrize(
        "account",
        [
            GatewayAccount(gateway="mellat", terminal_id="abc", user_name="u", user_password="p"),
            GatewayAccount(gateway="mellat", terminal_id="123", user_password="p"),
            GatewayAccount(gateway="mellat", terminal_id="123", user_name="u"),
        ],
    )
    def test_mellat_accounts_are_validated(self, mellat, account):
        registry = GatewayRegistry()
        registry.register(mellat)

        with pytest.raises(GatewayConfigurationError):
            registry.add_account(account)


@pytest.mark.asyncio
async def test_accounts_from_settings():
    """Accounts and result overrides from settings reach the registry."""
    settings = Settings(
        _env_file=None,
        accounts=[
            GatewayAccountSettings(
                gateway="mellat", terminal_id="1234567", user_name="m", user_password="p", name="shop"
            )
        ],
        result_message_overrides={"mellat": {"17": "Cancelled at the bank page."}},
    )

    async with httpx.AsyncClient() as http_client:
        registry = build_registry(settings, http_client)

    assert registry.gateways == ["mellat", "virtual"]
    adapter, account = registry.resolve("mellat")
    assert isinstance(adapter, MellatGateway)
    assert account.name == "shop"
    assert account.terminal_id == "1234567"
    assert adapter.translator.translate("17") == "Cancelled at the bank page."
    assert isinstance(registry.get_adapter("virtual"), VirtualGateway)


@pytest.mark.asyncio
async def test_virtual_gateway_can_be_disabled():
    """The virtual gateway is only registered when enabled."""
    settings = Settings(_env_file=None, virtual_gateway_enabled=False)

    async with httpx.AsyncClient() as http_client:
        registry = build_registry(settings, http_client)

    assert registry.gateways == ["mellat"]


@pytest.mark.asyncio
async def test_invalid_account_in_settings():
    """A malformed account in settings fails at startup."""
    settings = Settings(
        _env_file=None,
        accounts=[GatewayAccountSettings(gateway="mellat", terminal_id="not-a-number")],
    )

    async with httpx.AsyncClient() as http_client:
        with pytest.raises(GatewayConfigurationError):
            build_registry(settings, http_client)


class TestSettings:
    def test_nested_env_values(self, monkeypatch):
        monkeypatch.setenv("MESSAGES__PAYMENT_FAILED", "Ödeme başarısız.")
        monkeypatch.setenv("ACCOUNTS", '[{"gateway": "mellat", "terminal_id": "1", "name": "a"}]')

        settings = Settings(_env_file=None)

        assert settings.messages.payment_failed == "Ödeme başarısız."
        assert settings.gateway_accounts() == [GatewayAccount(gateway="mellat", terminal_id="1", name="a")]
