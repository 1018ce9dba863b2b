"""Runtime configuration read from environment variables."""

import os
from dataclasses import dataclass, field
from typing import Mapping, Optional

from stellar_sdk import Network

from marginledger.models.asset import AssetType

# Testnet defaults - override via environment variables in production
DEFAULT_RPC_URL = "https://soroban-testnet.stellar.org"
DEFAULT_NETWORK_PASSPHRASE = Network.TESTNET_NETWORK_PASSPHRASE
# Circle's USDC issuer on testnet
DEFAULT_USDC_ISSUER = "GBBD47IF6LWK7P7MDEVSCWR7DPUWV3NY3DTQEVFL4NAT4AQH3ZLLFLA5"

_TRUE_VALUES = {"1", "true", "yes", "on"}


def _split(value: Optional[str]) -> list[str]:
    if not value:
        return []
    return [item.strip() for item in value.split(",") if item.strip()]


@dataclass(frozen=True)
class Settings:
    soroban_rpc_url: str = DEFAULT_RPC_URL
    network_passphrase: str = DEFAULT_NETWORK_PASSPHRASE
    # Account that receives deposits and pays out withdrawals
    protocol_wallet: Optional[str] = None
    # Secret key of the protocol wallet, only needed for automatic payouts
    payout_secret_key: Optional[str] = None
    usdc_issuer: str = DEFAULT_USDC_ISSUER
    supported_assets: frozenset[AssetType] = field(
        default_factory=lambda: frozenset({AssetType.XLM, AssetType.USDC})
    )
    admin_addresses: frozenset[str] = frozenset()
    verify_timeout: float = 20.0
    max_write_attempts: int = 3
    payout_poll_interval: float = 10.0
    auto_payouts: bool = False
    log_level: str = "INFO"

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "Settings":
        env = os.environ if environ is None else environ

        assets = _split(env.get("SUPPORTED_ASSETS"))
        supported = (
            frozenset(AssetType.parse(a) for a in assets)
            if assets
            else frozenset({AssetType.XLM, AssetType.USDC})
        )

        return cls(
            soroban_rpc_url=env.get("SOROBAN_RPC_URL", DEFAULT_RPC_URL),
            network_passphrase=env.get("NETWORK_PASSPHRASE", DEFAULT_NETWORK_PASSPHRASE),
            protocol_wallet=env.get("PROTOCOL_WALLET") or None,
            payout_secret_key=env.get("PAYOUT_SECRET_KEY") or None,
            usdc_issuer=env.get("USDC_ISSUER", DEFAULT_USDC_ISSUER),
            supported_assets=supported,
            admin_addresses=frozenset(_split(env.get("ADMIN_ADDRESSES"))),
            verify_timeout=float(env.get("VERIFY_TIMEOUT_SECONDS", "20")),
            max_write_attempts=int(env.get("MAX_WRITE_ATTEMPTS", "3")),
            payout_poll_interval=float(env.get("PAYOUT_POLL_INTERVAL", "10")),
            auto_payouts=env.get("AUTO_PAYOUTS", "").lower() in _TRUE_VALUES,
            log_level=env.get("LOG_LEVEL", "INFO").upper(),
        )
