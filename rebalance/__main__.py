"""Module entrypoint for `python -m rebalance`."""

from rebalance.cli import main

if __name__ == "__main__":
    raise SystemExit(main())
