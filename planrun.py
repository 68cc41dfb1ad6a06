"""Entry point: `python -m planrun` / `python planrun.py`."""

from _cli import main

if __name__ == "__main__":
    raise SystemExit(main())
