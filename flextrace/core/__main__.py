"""
Allow running the core package as a module.

Usage:
    python -m flextrace.core analyze trace.ndjson

Or via the installed script:
    tracectl analyze trace.ndjson
"""
import sys

from .cli import main

if __name__ == "__main__":
    sys.exit(main())
