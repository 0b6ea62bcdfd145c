"""
Known Accounts
==============

Loading the externally supplied account list used by the full sweep.

Accepted formats:
- plain text, one address per line (blank lines and # comments ignored)
- CSV with an "address" column
"""

import csv
import logging
import re
from pathlib import Path
from typing import List, Optional

logger = logging.getLogger(__name__)

_ADDRESS_RE = re.compile(r"^0x[0-9a-fA-F]{40}$")


def load_known_accounts(filepath: Optional[Path]) -> List[str]:
    """
    Load account addresses from a file.

    Invalid lines are skipped with a warning; a missing file yields an empty
    list so the sweep simply has nothing extra to do.

    Args:
        filepath: Path to the accounts file, or None

    Returns:
        Lowercase addresses in file order, without duplicates
    """
    if filepath is None:
        return []

    path = Path(filepath)
    try:
        with open(path, "r", encoding="utf-8") as f:
            text = f.read()
    except FileNotFoundError:
        logger.warning(f"Known accounts file not found: {path}")
        return []
    except OSError as e:
        logger.error(f"Could not read known accounts file {path}: {e}")
        return []

    lines = text.splitlines()
    header = [h.strip().lower() for h in lines[0].split(",")] if lines else []
    if "address" in header:
        column = header.index("address")
        values = [row[column] if len(row) > column else "" for row in csv.reader(lines[1:])]
    else:
        values = [line.split("#", 1)[0] for line in lines]

    addresses = {}
    skipped = 0
    for value in values:
        value = value.strip()
        if not value:
            continue
        if not _ADDRESS_RE.match(value):
            skipped += 1
            continue
        addresses.setdefault(value.lower(), None)

    if skipped:
        logger.warning(f"Skipped {skipped} invalid entries in {path}")
    logger.info(f"Loaded {len(addresses)} known accounts from {path}")
    return list(addresses)
