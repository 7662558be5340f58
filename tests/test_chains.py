import pytest

from crypto_mail_agent.errors import InvalidAmount
from crypto_mail_agent.wallet.chains import (
    MAX_BASE_UNITS,
    format_base_units,
    get_chain,
    list_chain_ids,
    to_base_units,
)


def test_sepolia_is_supported():
    chain = get_chain(11155111)
    assert chain.name == "Sepolia Testnet"
    assert chain.native_symbol == "ETH"
    assert chain.tx_url("0xabc") == "https://sepolia.etherscan.io/tx/0xabc"
    assert 11155111 in list_chain_ids()


def test_unknown_chain_raises_key_error():
    with pytest.raises(KeyError):
        get_chain(424242)


@pytest.mark.parametrize(
    "amount, expected",
    [
        ("0.1", 10**17),
        ("1", 10**18),
        ("1.5", 15 * 10**17),
        ("0.000000000000000001", 1),
        (" 2 ", 2 * 10**18),
    ],
)
def test_to_base_units_is_exact(amount, expected):
    assert to_base_units(amount) == expected


@pytest.mark.parametrize(
    "amount",
    [
        "0",
        "-1",
        "abc",
        "",
        "NaN",
        "Infinity",
        "0.1 ETH",
        "0.0000000000000000001",
        "1." + "0" * 81 + "1",
        "1e-999999",
        "1e999999",
        "9" * 100,
        "1e60",
    ],
)
def test_to_base_units_rejects_bad_amounts(amount):
    with pytest.raises(InvalidAmount):
        to_base_units(amount)


def test_to_base_units_ignores_trailing_zeros():
    assert to_base_units("0.1" + "0" * 100) == 10**17
    assert to_base_units("1.5e0") == 15 * 10**17
    assert to_base_units("2E3") == 2000 * 10**18


def test_to_base_units_upper_bound():
    assert to_base_units(str(MAX_BASE_UNITS), decimals=0) == MAX_BASE_UNITS
    with pytest.raises(InvalidAmount, match="too large"):
        to_base_units(str(MAX_BASE_UNITS + 1), decimals=0)


def test_numbers_are_read_by_their_written_digits():
    assert to_base_units(0.1) == 10**17
    assert to_base_units(0.30000000000000004) == 300_000_000_000_000_040
    assert to_base_units(2) == 2 * 10**18


def test_to_base_units_respects_decimals():
    assert to_base_units("1.25", decimals=6) == 1_250_000
    with pytest.raises(InvalidAmount):
        to_base_units("1.0000001", decimals=6)


def test_format_base_units():
    assert format_base_units(10**17) == "0.1"
    assert format_base_units(10**18) == "1"
    assert format_base_units(0) == "0"
    assert format_base_units(1) == "0.000000000000000001"
    assert format_base_units(123 * 10**18) == "123"
