"""CLI entry point for photoai.cli module.

Enables execution via: python -m photoai.cli --owner <id> --amount <n>
Pack import runs as: python -m photoai.cli.import_packs <file.json>
"""

from photoai.cli.grant_credits import main

if __name__ == "__main__":
    raise SystemExit(main())
