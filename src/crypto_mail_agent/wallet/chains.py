"""Chain definitions and base-unit conversion for supported EVM networks."""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, DecimalException, localcontext

from crypto_mail_agent.errors import InvalidAmount


@dataclass(frozen=True)
class Chain:
    """An EVM-compatible blockchain network."""

    name: str
    chain_id: int
    native_symbol: str
    explorer_url: str
    decimals: int = 18

    def tx_url(self, tx_hash: str) -> str:
        return f"{self.explorer_url}/tx/{tx_hash}"


CHAINS: dict[int, Chain] = {
    11155111: Chain(
        name="Sepolia Testnet",
        chain_id=11155111,
        native_symbol="ETH",
        explorer_url="https://sepolia.etherscan.io",
    ),
    1: Chain(
        name="Ethereum Mainnet",
        chain_id=1,
        native_symbol="ETH",
        explorer_url="https://etherscan.io",
    ),
    137: Chain(
        name="Polygon",
        chain_id=137,
        native_symbol="POL",
        explorer_url="https://polygonscan.com",
    ),
    8453: Chain(
        name="Base",
        chain_id=8453,
        native_symbol="ETH",
        explorer_url="https://basescan.org",
    ),
}


def get_chain(chain_id: int) -> Chain:
    """Get a chain by id. Raises ``KeyError`` if not found."""
    if chain_id not in CHAINS:
        raise KeyError(
            f"Unknown chain id {chain_id}. Available: {list_chain_ids()}"
        )
    return CHAINS[chain_id]


def list_chain_ids() -> list[int]:
    """Return the ids of all supported chains."""
    return list(CHAINS.keys())


# ---------------------------------------------------------------------------
# Base units
# ---------------------------------------------------------------------------


# Largest value an EVM transfer can carry (uint256).
MAX_BASE_UNITS = 2**256 - 1
_MAX_BASE_DIGITS = len(str(MAX_BASE_UNITS))


def to_base_units(amount: str, decimals: int = 18) -> int:
    """Convert a human decimal string (``"0.1"``) to integer base units.

    Exact: the digits are read from the parsed :class:`~decimal.Decimal`
    without any context arithmetic, so nothing is ever rounded. A number
    (rather than a string) is read through its shortest ``repr``, i.e. the
    digits that were actually written, not its binary expansion.

    Raises
    ------
    InvalidAmount
        For non-numeric, non-finite, non-positive, over-precise or
        out-of-range amounts.
    """
    text = str(amount).strip()
    try:
        value = Decimal(text)
    except (DecimalException, ValueError):
        raise InvalidAmount(f"'{amount}' is not a valid amount. Use a number like 0.1") from None

    if not value.is_finite():
        raise InvalidAmount(f"'{amount}' is not a valid amount.")
    if value <= 0:
        raise InvalidAmount("Amount must be greater than zero.")

    _, digits, exponent = value.as_tuple()
    digits = list(digits)
    while exponent < 0 and digits[-1] == 0:
        digits.pop()
        exponent += 1

    if exponent < -decimals:
        raise InvalidAmount(
            f"'{amount}' has more than {decimals} decimal places."
        )
    if len(digits) + exponent + decimals > _MAX_BASE_DIGITS:
        raise InvalidAmount(f"'{amount}' is too large.")

    base_units = int("".join(map(str, digits))) * 10 ** (exponent + decimals)
    if base_units > MAX_BASE_UNITS:
        raise InvalidAmount(f"'{amount}' is too large.")
    return base_units


def format_base_units(value: int, decimals: int = 18) -> str:
    """Render integer base units as a plain decimal string without exponent."""
    with localcontext() as ctx:
        ctx.prec = 80
        text = format(Decimal(value).scaleb(-decimals), "f")
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    return text or "0"
