#!/usr/bin/env python3
"""
CLI entry point for FlexTrace (direct execution from a checkout).

Equivalent to the installed `tracectl` script.
"""
import sys
from pathlib import Path

# Add project root to sys.path so that 'flextrace' can be imported as a package
_project_root = Path(__file__).parent
sys.path.insert(0, str(_project_root))

from flextrace.core.cli import main  # noqa: E402

if __name__ == "__main__":
    sys.exit(main())
