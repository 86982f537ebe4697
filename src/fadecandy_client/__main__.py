"""Entrypoint for the Fadecandy client."""

from __future__ import annotations

import sys
from typing import Iterable, Optional

from .cli import main


def run(cli_args: Optional[Iterable[str]] = None) -> None:
    """CLI entrypoint used by setuptools."""

    sys.exit(main(cli_args))


if __name__ == "__main__":
    run()
