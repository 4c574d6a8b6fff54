"""Entry point for running glyph_engine as a module.

Usage:
    python -m glyph_engine <command> [options]
"""
from .cli import main

if __name__ == "__main__":
    raise SystemExit(main())
