#!/usr/bin/env python3
"""
Triangular arbitrage scanner runner.

Usage:
    python3 run_scanner.py --config configs/scanner_bsc.yaml
    python3 run_scanner.py --config configs/scanner_bsc.yaml --once --dry-run
"""

import sys

from triangular_scanner.cli import main

if __name__ == "__main__":
    sys.exit(main())
