"""CLI command for granting credits to an owner.

Purchases are handled outside this service; operators (or the billing
integration) top up balances through this command.

Usage:
    python -m photoai.cli.grant_credits --owner <owner_id> --amount <n>

Examples:
    # Grant 50 credits
    python -m photoai.cli.grant_credits --owner user_123 --amount 50

    # Verbose logging
    python -m photoai.cli.grant_credits --owner user_123 --amount 50 -v
"""

import asyncio
import sys
from argparse import ArgumentParser, Namespace

import structlog

from photoai.core import timezone  # noqa: F401
from photoai.core.config import Settings, configure_logging
from photoai.core.database import setup_db_session
from photoai.services.exceptions import ServiceError
from photoai.services.ledger import Ledger
from photoai.uow import create_uow_factory

logger = structlog.get_logger()


def parse_args(argv: list[str] | None = None) -> Namespace:
    """Parse command-line arguments."""
    parser = ArgumentParser(description="Grant credits to an owner's account")

    parser.add_argument("--owner", required=True, help="Owner identity (X-User-Id value)")
    parser.add_argument("--amount", type=int, required=True, help="Credits to add (positive)")
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable verbose logging (DEBUG level)",
    )

    return parser.parse_args(argv)


async def grant_credits(uow_factory, owner_id: str, amount: int, ledger: Ledger | None = None) -> int:
    """Add credits and return the resulting balance.

    Raises:
        ValidationError: If amount is not positive
    """
    ledger = ledger or Ledger()
    async with await uow_factory() as uow:
        await ledger.credit(uow, owner_id, amount)
        return await ledger.get_balance(uow, owner_id)


async def async_main(argv: list[str] | None = None) -> int:
    """Main CLI entry point (async).

    Returns:
        Exit code: 0 (success), 1 (error)
    """
    args = parse_args(argv)

    settings = Settings()  # type: ignore[call-arg]
    if args.verbose:
        settings.log_level = "DEBUG"
    configure_logging(settings)

    logger.info("cli.grant_started", owner_id=args.owner, amount=args.amount)

    session_factory = setup_db_session(settings.database_url, settings.db_pool_size)
    uow_factory = create_uow_factory(session_factory)

    try:
        balance = await grant_credits(uow_factory, args.owner, args.amount)
    except ServiceError as e:
        logger.error("cli.grant_rejected", error=str(e), error_type=type(e).__name__)
        print(f"Error: {e}", file=sys.stderr)
        return 1
    except Exception as e:
        logger.error("cli.unexpected_error", error=str(e), error_type=type(e).__name__)
        print(f"\nUnexpected error: {e}", file=sys.stderr)
        return 1

    logger.info("cli.grant_completed", owner_id=args.owner, balance=balance)
    print(f"Granted {args.amount} credits to {args.owner}. New balance: {balance}")
    return 0


def main() -> None:
    """Synchronous entry point for CLI."""
    sys.exit(asyncio.run(async_main()))


if __name__ == "__main__":
    main()
