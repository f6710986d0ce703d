"""
Test configuration to keep imports stable.

Pytest prepends each test directory to ``sys.path``. We explicitly place the
project root at the front so ``creditledger`` resolves to the checked-in
source even when the package is not installed.
"""
from __future__ import annotations

import sys
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parent
root_str = str(PROJECT_ROOT)

if root_str in sys.path:
    sys.path.remove(root_str)
sys.path.insert(0, root_str)
