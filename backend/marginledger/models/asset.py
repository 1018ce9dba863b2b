from enum import Enum

from marginledger.errors import UnsupportedAsset


class AssetType(Enum):
    """Collateral assets known to the ledger."""

    XLM = "xlm"  # Network-native token
    USDC = "usdc"  # Stable-value token

    @classmethod
    def parse(cls, value) -> "AssetType":
        """Parse an asset identifier, raising UnsupportedAsset for unknown values."""
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).lower())
        except ValueError:
            raise UnsupportedAsset(f"Unknown asset: {value}") from None
