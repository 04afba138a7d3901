"""
Unit tests for the constant-product swap math.

Tests cover:
- Exact single-hop output for a literal input
- Monotonic output and the never-drains-the-pool bound
- Chained hops and the flash-loan fee
- Base unit conversion
"""

import unittest
from decimal import Decimal

from hypothesis import given
from hypothesis import strategies as st

from triangular_scanner.adapters.v2 import (
    chain_swap_out,
    flash_loan_fee,
    swap_out,
    to_base_units,
    to_units,
)


class TestSwapOut(unittest.TestCase):
    """Single hop x*y=k output."""

    def test_literal_pool(self):
        """1,000 in against (1,000,000 / 500) at 0.3% fee."""
        out = swap_out(Decimal(1000), Decimal(1_000_000), Decimal(500), Decimal("0.003"))
        expected = Decimal(500) * Decimal(997000) / (Decimal(1_000_000_000) + Decimal(997000))
        self.assertEqual(out, expected)
        self.assertTrue(Decimal("0.498") < out < Decimal("0.499"))

    def test_zero_fee_keeps_invariant(self):
        reserve_in, reserve_out = Decimal(1000), Decimal(1000)
        out = swap_out(Decimal(100), reserve_in, reserve_out, Decimal(0))
        k_after = (reserve_in + 100) * (reserve_out - out)
        self.assertAlmostEqual(float(k_after), 1_000_000.0, places=6)

    def test_rejects_invalid_inputs(self):
        with self.assertRaises(ValueError):
            swap_out(Decimal(0), Decimal(1), Decimal(1), Decimal("0.003"))
        with self.assertRaises(ValueError):
            swap_out(Decimal(1), Decimal(0), Decimal(1), Decimal("0.003"))
        with self.assertRaises(ValueError):
            swap_out(Decimal(1), Decimal(1), Decimal(-1), Decimal("0.003"))
        with self.assertRaises(ValueError):
            swap_out(Decimal(1), Decimal(1), Decimal(1), Decimal(1))

    def test_monotonic_in_amount(self):
        reserve_in, reserve_out = Decimal(50_000), Decimal(20)
        previous = Decimal(0)
        for amount in (Decimal("0.001"), Decimal(1), Decimal(100), Decimal(10**6), Decimal(10**12)):
            out = swap_out(amount, reserve_in, reserve_out, Decimal("0.0025"))
            self.assertGreater(out, previous)
            self.assertLess(out, reserve_out)
            previous = out

    @given(
        amount=st.integers(min_value=1, max_value=10**30),
        extra=st.integers(min_value=1, max_value=10**30),
        reserve_in=st.integers(min_value=1, max_value=10**30),
        reserve_out=st.integers(min_value=1, max_value=10**30),
    )
    def test_property_bounded_and_increasing(self, amount, extra, reserve_in, reserve_out):
        fee = Decimal("0.0025")
        small = swap_out(Decimal(amount), Decimal(reserve_in), Decimal(reserve_out), fee)
        large = swap_out(Decimal(amount + extra), Decimal(reserve_in), Decimal(reserve_out), fee)
        self.assertLess(small, Decimal(reserve_out))
        self.assertLess(large, Decimal(reserve_out))
        self.assertLessEqual(small, large)


class TestChainAndFees(unittest.TestCase):

    def test_chain_matches_manual_hops(self):
        fee = Decimal("0.0025")
        hops = [
            (Decimal(1_000_000), Decimal(500_000)),
            (Decimal(500_000), Decimal(1_000_000)),
            (Decimal(1_000_000), Decimal(1_100_000)),
        ]
        manual = Decimal(100)
        for reserve_in, reserve_out in hops:
            manual = swap_out(manual, reserve_in, reserve_out, fee)
        self.assertEqual(chain_swap_out(Decimal(100), hops, fee), manual)

    def test_empty_chain_returns_input(self):
        self.assertEqual(chain_swap_out(Decimal(5), [], Decimal("0.0025")), Decimal(5))

    def test_flash_loan_fee(self):
        self.assertEqual(flash_loan_fee(Decimal(997)), Decimal(3))
        self.assertEqual(flash_loan_fee(Decimal(1000), 9, 10000), Decimal("0.9"))


class TestUnitConversion(unittest.TestCase):

    def test_to_units(self):
        self.assertEqual(to_units(1_500_000, 6), Decimal("1.5"))
        self.assertEqual(to_units(10**18, 18), Decimal(1))

    def test_to_base_units_truncates(self):
        self.assertEqual(to_base_units(Decimal("1.5"), 6), 1_500_000)
        self.assertEqual(to_base_units(Decimal("0.0000019"), 6), 1)
        self.assertEqual(to_base_units(Decimal(100), 18), 100 * 10**18)


if __name__ == "__main__":
    unittest.main()
