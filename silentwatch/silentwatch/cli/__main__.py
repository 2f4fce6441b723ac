"""Entry point for `python -m silentwatch.cli` and the `silentwatch` console script."""

from __future__ import annotations

from silentwatch.cli.app import app


def main() -> None:
    app()


if __name__ == "__main__":
    main()
