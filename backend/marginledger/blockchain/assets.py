from stellar_sdk import Asset

from marginledger.models.asset import AssetType


def to_stellar_asset(asset: AssetType, usdc_issuer: str) -> Asset:
    """Map a ledger asset to the Stellar asset that carries it on-chain."""
    if asset == AssetType.XLM:
        return Asset.native()
    elif asset == AssetType.USDC:
        return Asset("USDC", usdc_issuer)
    else:
        raise ValueError(f"No Stellar asset for {asset}")
