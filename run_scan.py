#!/usr/bin/env python3
"""
SysGuard

Main executable entry point for the hardening baseline audit.
This script runs the CLI and exits with appropriate status codes.

Usage:
    ./run_scan.py [options]
    python3 run_scan.py [options]

Exit Codes:
    0 - Success, all checks passed
    1 - Error occurred during execution
    2 - Failed or unknown checks, cancelled scan, or privilege warnings

Examples:
    # Run with default settings
    sudo ./run_scan.py

    # Run without sudo (some checks will report unknown)
    ./run_scan.py --no-sudo

    # Use the Debian platform profile with eight workers
    sudo ./run_scan.py --profile debian --workers 8

    # Output to file with verbose mode
    sudo ./run_scan.py -o report.json --pretty -v
"""

import sys
from sysguard.cli import main

if __name__ == "__main__":
    sys.exit(main())
