#!/usr/bin/env python3
"""Convenience runner for the track generation CLI.

Usage:
    python run.py generate --points points.csv --user-id 1 --output tracks.xlsx
"""
import logging
import sys

from trackgen.main import main

if __name__ == "__main__":
    if not logging.getLogger().hasHandlers():
        logging.basicConfig(level=logging.INFO, format="[%(asctime)s] %(levelname)s %(name)s: %(message)s")
    sys.exit(main())
