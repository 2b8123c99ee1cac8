"""
Gateway registry: resolves the adapter and merchant account for an invoice.

Adapters are keyed on their provider identifier. Each provider can hold
several named accounts; an invoice that names no account uses the first
one registered for its gateway.
"""

import logging
from typing import Optional

import httpx

from bankpay.config import Settings
from bankpay.exceptions import GatewayConfigurationError
from bankpay.gateways.base import GatewayAdapter
from bankpay.gateways.mellat import MellatGateway, create_translator
from bankpay.gateways.virtual import VirtualGateway
from bankpay.models.payment import DEFAULT_ACCOUNT_NAME, GatewayAccount

logger = logging.getLogger("bankpay.registry")


class GatewayRegistry:
    def __init__(self):
        self._adapters: dict[str, GatewayAdapter] = {}
        self._accounts: dict[str, dict[str, GatewayAccount]] = {}

    def register(self, adapter: GatewayAdapter, accounts: tuple[GatewayAccount, ...] = ()) -> None:
        if adapter.name in self._adapters:
            raise GatewayConfigurationError(f"Gateway '{adapter.name}' is already registered")
        self._adapters[adapter.name] = adapter
        self._accounts.setdefault(adapter.name, {})
        for account in accounts:
            self.add_account(account)

    def add_account(self, account: GatewayAccount) -> None:
        adapter = self.get_adapter(account.gateway)
        adapter.validate_account(account)
        accounts = self._accounts[account.gateway]
        if account.name in accounts:
            raise GatewayConfigurationError(
                f"Account '{account.name}' is already registered for gateway '{account.gateway}'"
            )
        accounts[account.name] = account

    def get_adapter(self, gateway: str) -> GatewayAdapter:
        adapter = self._adapters.get(gateway)
        if adapter is None:
            raise GatewayConfigurationError(f"Gateway '{gateway}' is not registered")
        return adapter

    def get_account(self, gateway: str, account_name: Optional[str] = None) -> GatewayAccount:
        accounts = self._accounts.get(gateway) or {}
        if not accounts:
            raise GatewayConfigurationError(f"No account is configured for gateway '{gateway}'")
        if account_name is None:
            return next(iter(accounts.values()))
        account = accounts.get(account_name)
        if account is None:
            raise GatewayConfigurationError(f"Gateway '{gateway}' has no account named '{account_name}'")
        return account

    def resolve(self, gateway: str, account_name: Optional[str] = None) -> tuple[GatewayAdapter, GatewayAccount]:
        return self.get_adapter(gateway), self.get_account(gateway, account_name)

    @property
    def gateways(self) -> list[str]:
        return list(self._adapters)


def build_registry(settings: Settings, http_client: httpx.AsyncClient) -> GatewayRegistry:
    """Register every built-in adapter and the accounts found in settings."""
    registry = GatewayRegistry()
    overrides = settings.result_message_overrides

    registry.register(
        MellatGateway(
            http_client,
            create_translator(settings.messages, overrides.get("mellat")),
            max_retries=settings.verify_max_retries,
        )
    )

    if settings.virtual_gateway_enabled:
        virtual = VirtualGateway(messages=settings.messages)
        registry.register(virtual)
        registry.add_account(GatewayAccount(gateway=virtual.name, terminal_id="virtual", name=DEFAULT_ACCOUNT_NAME))

    for account in settings.gateway_accounts():
        registry.add_account(account)

    logger.info("Registered gateways: %s", ", ".join(registry.gateways))
    return registry
