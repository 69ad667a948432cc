"""StablePay USDC yield vault backend."""

from typing import NoReturn

__version__ = "0.1.0"


def _entry_point() -> NoReturn:
    """Entry point for the stablepay script."""
    import sys

    from stablepay.cli import main

    raise SystemExit(main(sys.argv[1:]))
