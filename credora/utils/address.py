# credora/utils/address.py
import re
from web3 import Web3

from credora.exceptions import ValidationError

ADDRESS_RE = re.compile(r"^0x[0-9a-fA-F]{40}$")
EXAMPLE_ADDRESS = "0x742d35Cc6634C0532925a3b8D4C9db96C4b4d8b6"


def is_valid_address(value):
    """True for a 0x-prefixed, 40 hex digit account id (any letter case)."""
    if not isinstance(value, str):
        return False
    return bool(ADDRESS_RE.match(value.strip()))


def normalize_address(value):
    """Normalize to a lowercase 0x-prefixed hex string for stable store keys."""
    if value is None or (isinstance(value, str) and not value.strip()):
        raise ValidationError("Wallet address is required")
    if not is_valid_address(value):
        raise ValidationError("Invalid Ethereum address format")
    return value.strip().lower()


def to_checksum(value):
    return Web3.to_checksum_address(normalize_address(value))
