import pytest

from atpnet.config import htonll, ntohll


def test_htonll_worked_example():
    assert htonll(0x0102030405060708) == 0x0807060504030201


@pytest.mark.parametrize("value", [0, 1, 0xFF, 0x1234, 0xDEADBEEFCAFEBABE, (1 << 64) - 1])
def test_round_trip(value):
    assert ntohll(htonll(value)) == value


@pytest.mark.parametrize("value", [1, 0xABCDEF, 0x0011223344556677])
def test_swap_reverses_bytes(value):
    assert htonll(value).to_bytes(8, "big") == value.to_bytes(8, "little")


def test_bits_above_64_are_dropped():
    value = 0x1122334455667788
    assert htonll(value | (1 << 64)) == htonll(value)


def test_ntohll_matches_htonll():
    value = 0x0A0B0C0D0E0F1011
    assert ntohll(value) == htonll(value)