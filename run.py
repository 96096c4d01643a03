#!/usr/bin/env python3
"""Convenience runner for the run tracker.

Usage:
    python run.py sync
    python run.py serve
"""
import sys

from run_tracker.main import main

if __name__ == "__main__":
    sys.exit(main())
