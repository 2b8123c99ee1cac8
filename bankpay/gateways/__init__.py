from bankpay.gateways.base import CallbackParams, GatewayAdapter
from bankpay.gateways.mellat import MellatCumulativeAccount, MellatGateway, use_cumulative_accounts
from bankpay.gateways.registry import GatewayRegistry, build_registry
from bankpay.gateways.virtual import VirtualGateway

__all__ = [
    "CallbackParams",
    "GatewayAdapter",
    "GatewayRegistry",
    "MellatCumulativeAccount",
    "MellatGateway",
    "VirtualGateway",
    "build_registry",
    "use_cumulative_accounts",
]
