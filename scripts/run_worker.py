#!/usr/bin/env python3
"""
Start a dispatch worker without going through main.py.

Usage:
    python scripts/run_worker.py [concurrency]
"""

import sys
from pathlib import Path

# Project root
sys.path.insert(0, str(Path(__file__).parent.parent))

from main import run_worker
from src.logging_config import configure_logging


if __name__ == "__main__":
    configure_logging()
    run_worker(int(sys.argv[1]) if len(sys.argv) > 1 else 4)
