"""
DEX adapter modules for different AMM types.
"""

from .v2 import V2ChainClient, chain_swap_out, flash_loan_fee, swap_out

__all__ = ["V2ChainClient", "swap_out", "chain_swap_out", "flash_loan_fee"]
