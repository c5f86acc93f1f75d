"""Run `aftership-cli` from a source checkout.

Usage:
- `python main.py list-trackings --status InTransit`
- `python main.py doctor run`

Puts `src/` on `sys.path` so `aftership_cli` imports without `pip install -e .`.
"""

from __future__ import annotations

import sys
from pathlib import Path


def main() -> None:
    src = Path(__file__).resolve().parent / "src"
    if str(src) not in sys.path:
        sys.path.insert(0, str(src))

    from aftership_cli.cli.main import run  # noqa: PLC0415

    run()


if __name__ == "__main__":
    main()
