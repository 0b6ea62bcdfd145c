#!/usr/bin/env python3
"""
Liquidation Watcher - script entry point
========================================

Same as the `liqwatch` console script, runnable from a checkout.

Usage:
    python scripts/run_watcher.py
    python scripts/run_watcher.py --test-mode
    python scripts/run_watcher.py --test-telegram
"""

import sys
from pathlib import Path

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from liqwatch.cli import main


if __name__ == "__main__":
    main()
