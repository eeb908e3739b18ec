"""Input checks shared by the ledgers and the vault entry points."""
from vault.errors import ValidationError

ZERO_ADDRESS = "0x" + "0" * 40
MAX_BPS = 10000


def require_address(value: str, what: str = "address") -> str:
    if not value or not isinstance(value, str) or value.strip() == "":
        raise ValidationError(f"{what} must be a non-empty string")
    if value.lower() == ZERO_ADDRESS:
        raise ValidationError(f"{what} must not be the zero address")
    return value


def require_positive(amount: int, what: str = "amount") -> int:
    if isinstance(amount, bool) or not isinstance(amount, int):
        raise ValidationError(f"{what} must be an integer, got {type(amount).__name__}")
    if amount <= 0:
        raise ValidationError(f"{what} must be positive, got {amount}")
    return amount


def require_bps(value: int, what: str = "bps", allow_zero: bool = True) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(f"{what} must be an integer")
    if value < 0 or value > MAX_BPS or (value == 0 and not allow_zero):
        raise ValidationError(f"{what} out of range: {value}")
    return value
