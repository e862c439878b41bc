"""
Main entry point for the CableDesk client.

This module provides the ``cabledesk`` command-line interface for operators
and agents: logging in, browsing customers and products, recording payments
and adjusting balances against the billing back end.
"""

import sys
import json
import asyncio
import getpass
import argparse
import logging
from dataclasses import asdict, is_dataclass
from datetime import datetime, date
from enum import Enum
from typing import Any, List, Optional

from cabledesk_client.api_client import CableDeskAPIClient
from cabledesk_client.api_service import CableDeskService
from cabledesk_client.auth.token_manager import TokenManager
from cabledesk_client.billing import compute_balance_adjustment
from cabledesk_client.config import ClientConfiguration
from cabledesk_shared.exceptions import (
    CableDeskError, RefreshFailure, NotLoggedInError
)
from cabledesk_shared.logging_config import LogLevel, LogFormat, setup_logging, log_structured_error
from cabledesk_shared.models import Platform

logger = logging.getLogger(__name__)

EXIT_SUCCESS = 0
EXIT_ERROR = 1
EXIT_SESSION = 2
EXIT_INTERRUPTED = 130


def parse_arguments(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        prog="cabledesk",
        description="CableDesk billing client",
        epilog="""
Examples:
  %(prog)s login operator@example.com
  %(prog)s customers list --search Kumar --status active
  %(prog)s collect CUSTOMER_ID 500 --method UPI
  %(prog)s adjust-balance CUSTOMER_ID --to 1200 --note "waived late fee"
  %(prog)s export-customers --output ~/exports/
        """,
        formatter_class=argparse.RawDescriptionHelpFormatter
    )

    config_group = parser.add_argument_group('Configuration')
    config_group.add_argument("--config", type=str, metavar="FILE",
                              help="Path to configuration file")
    config_group.add_argument("--server-url", type=str, metavar="URL",
                              help="Override API base URL")
    config_group.add_argument("--platform", choices=[p.value for p in Platform],
                              help="Override credential platform")

    output_group = parser.add_argument_group('Output')
    output_group.add_argument("--json", action="store_true",
                              help="Print results as JSON")
    output_group.add_argument("--verbose", "-v", action="store_true",
                              help="Enable verbose output")
    output_group.add_argument("--quiet", "-q", action="store_true",
                              help="Suppress non-error output")
    output_group.add_argument("--log-file", type=str, metavar="FILE",
                              help="Also write logs to this file")

    commands = parser.add_subparsers(dest="command", metavar="COMMAND")
    commands.required = True

    login = commands.add_parser("login", help="Log in and store the session")
    login.add_argument("identifier", help="Email address or contact number")
    login.add_argument("--password", help="Password (prompted if omitted)")

    commands.add_parser("logout", help="Clear the stored session")
    commands.add_parser("status", help="Show session status")

    customers = commands.add_parser("customers", help="Browse customers")
    customer_actions = customers.add_subparsers(dest="action", metavar="ACTION")
    customer_actions.required = True
    customer_list = customer_actions.add_parser("list", help="List customers")
    customer_list.add_argument("--page", type=int, default=1)
    customer_list.add_argument("--limit", type=int, default=10)
    customer_list.add_argument("--search")
    customer_list.add_argument("--status", choices=["active", "inactive"])
    customer_list.add_argument("--locality")
    customer_show = customer_actions.add_parser("show", help="Show one customer")
    customer_show.add_argument("customer_id")
    customer_show.add_argument("--transactions", action="store_true",
                               help="Include the customer's ledger")

    export = commands.add_parser("export-customers", help="Download customers as a spreadsheet")
    export.add_argument("--output", metavar="PATH", help="Target file or directory")

    import_ = commands.add_parser("import-customers", help="Upload a customer spreadsheet")
    import_.add_argument("file", help="Spreadsheet to upload")

    adjust = commands.add_parser("adjust-balance", help="Set a customer's balance")
    adjust.add_argument("customer_id")
    adjust.add_argument("--to", dest="new_balance", required=True, type=float,
                        help="Target balance")
    adjust.add_argument("--note")

    collect = commands.add_parser("collect", help="Record a payment")
    collect.add_argument("customer_id")
    collect.add_argument("amount", type=float)
    collect.add_argument("--discount", type=float, default=0)
    collect.add_argument("--method", default="CASH")
    collect.add_argument("--note")

    products = commands.add_parser("products", help="List products")
    products.add_argument("--all", action="store_true", help="Include inactive products")

    args = parser.parse_args(argv)

    if args.quiet and args.verbose:
        parser.error("--quiet and --verbose are mutually exclusive")

    return args


def configure_logging(args: argparse.Namespace, config: ClientConfiguration) -> None:
    """Configure logging from configuration and command line arguments."""
    if args.verbose:
        level = LogLevel.DEBUG
    elif args.quiet or args.json:
        # Keep stderr quiet for scripted use
        level = LogLevel.ERROR
    else:
        try:
            level = LogLevel(config.get_log_level())
        except ValueError:
            level = LogLevel.WARNING

    try:
        log_format = LogFormat(config.get_log_format())
    except ValueError:
        log_format = LogFormat.STANDARD

    setup_logging(
        log_level=level,
        log_format=log_format,
        log_file=args.log_file or config.get_log_file(),
        max_file_size=config.get_log_max_size(),
        backup_count=config.get_log_backup_count()
    )


def _to_jsonable(value: Any) -> Any:
    if is_dataclass(value):
        return _to_jsonable(asdict(value))
    if isinstance(value, dict):
        return {k: _to_jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_to_jsonable(v) for v in value]
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    return value


class CommandRunner:
    """Runs one CLI command against a configured client."""

    def __init__(self, args: argparse.Namespace, config: ClientConfiguration):
        self.args = args
        self.config = config
        self.api_client = CableDeskAPIClient.from_config(config)
        self.token_manager = TokenManager(self.api_client)
        self.service = CableDeskService(self.api_client)

    def output(self, result: Any, text: Optional[str] = None) -> None:
        if self.args.json:
            print(json.dumps(_to_jsonable(result), indent=2))
        elif not self.args.quiet and text is not None:
            print(text)

    def require_session(self) -> None:
        if not self.token_manager.restore_session():
            raise NotLoggedInError("Not logged in. Run 'cabledesk login' first.")

    async def run(self) -> int:
        async with self.api_client:
            handler = getattr(self, f"cmd_{self.args.command.replace('-', '_')}")
            return await handler()

    async def cmd_login(self) -> int:
        password = self.args.password or getpass.getpass("Password: ")
        user = await self.token_manager.login(self.args.identifier, password)
        self.output(user, f"Logged in as {user.name or self.args.identifier} ({user.role.value if user.role else 'unknown'})")
        return EXIT_SUCCESS

    async def cmd_logout(self) -> int:
        self.token_manager.restore_session()
        self.token_manager.logout()
        self.output({'logged_out': True}, "Logged out")
        return EXIT_SUCCESS

    async def cmd_status(self) -> int:
        self.token_manager.restore_session()
        status = self.token_manager.get_status()
        status['server_url'] = self.api_client.base_url
        status['platform'] = self.api_client.platform.value

        if self.args.json:
            self.output(status)
        elif not self.args.quiet:
            print(f"Server: {status['server_url']} ({status['platform']})")
            print(f"Authenticated: {'Yes' if status['authenticated'] else 'No'}")
            if status['authenticated']:
                print(f"Access token: {status['access_token']}")
                if status['expires_at']:
                    suffix = " (expired, will refresh on next call)" if status['expired'] else ""
                    print(f"Expires: {status['expires_at']}{suffix}")
        return EXIT_SUCCESS if status['authenticated'] else EXIT_SESSION

    async def cmd_customers(self) -> int:
        self.require_session()
        if self.args.action == "list":
            page = await self.service.list_customers(
                page=self.args.page,
                limit=self.args.limit,
                search=self.args.search,
                status=self.args.status,
                locality=self.args.locality
            )
            lines = [f"{c.id}  {c.name:<30} {c.contact_number or '-':<14} {c.balance_amount:>10.2f}"
                     for c in page.items]
            lines.append(f"Page {page.pagination.page}/{page.pagination.total_pages} "
                         f"({page.pagination.total} customers)")
            self.output(page, "\n".join(lines))
            return EXIT_SUCCESS

        customer = await self.service.get_customer(self.args.customer_id)
        result = {'customer': customer}
        lines = [
            f"{customer.name} [{customer.customer_code or customer.id}]",
            f"Contact: {customer.contact_number or '-'}",
            f"Locality: {customer.locality or '-'}",
            f"Balance: {customer.balance_amount:.2f}",
            f"Active: {'Yes' if customer.active else 'No'}",
        ]
        if self.args.transactions:
            transactions = await self.service.get_customer_transactions(customer.id)
            result['transactions'] = transactions
            for entry in transactions:
                when = entry.created_at.strftime('%Y-%m-%d') if entry.created_at else '-'
                lines.append(f"  {when}  {(entry.type.value if entry.type else '-'):<10} {entry.amount:>10.2f}  -> {entry.balance_after:.2f}")
        self.output(result, "\n".join(lines))
        return EXIT_SUCCESS

    async def cmd_export_customers(self) -> int:
        self.require_session()
        path = await self.service.export_customers(self.args.output)
        self.output({'path': str(path)}, f"Exported customers to {path}")
        return EXIT_SUCCESS

    async def cmd_import_customers(self) -> int:
        self.require_session()
        result = await self.service.import_customers(self.args.file)
        message = result.get('message') if isinstance(result, dict) else None
        self.output(result, message or "Import complete")
        return EXIT_SUCCESS

    async def cmd_adjust_balance(self) -> int:
        self.require_session()
        customer = await self.service.get_customer(self.args.customer_id)
        adjustment = compute_balance_adjustment(customer.balance_amount, self.args.new_balance, self.args.note)
        result = await self.service.adjust_balance(customer.id, adjustment)
        self.output(result, f"{adjustment.type.value.capitalize()} of {adjustment.amount:.2f} applied to {customer.name}")
        return EXIT_SUCCESS

    async def cmd_collect(self) -> int:
        self.require_session()
        result = await self.service.collect_payment(
            self.args.customer_id,
            self.args.amount,
            discount=self.args.discount,
            method=self.args.method,
            note=self.args.note
        )
        self.output(result, f"Recorded payment of {self.args.amount:.2f}")
        return EXIT_SUCCESS

    async def cmd_products(self) -> int:
        self.require_session()
        products = await self.service.list_products()
        if not self.args.all:
            products = [p for p in products if p.is_active]
        lines = [f"{p.id}  {p.name:<30} {p.customer_price:>8.2f} / "
                 f"{p.billing_interval_value} {p.billing_interval_unit}"
                 for p in products]
        self.output(products, "\n".join(lines) if lines else "No products")
        return EXIT_SUCCESS


async def run_command(args: argparse.Namespace, config: ClientConfiguration) -> int:
    # The client's cookie jar must be created inside the running loop
    return await CommandRunner(args, config).run()


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point for the client."""
    args = parse_arguments(argv)

    try:
        config = ClientConfiguration(args.config)
        if args.server_url:
            config.set_override('server.url', args.server_url)
        if args.platform:
            config.set_override('client.platform', args.platform)
        configure_logging(args, config)

        return asyncio.run(run_command(args, config))

    except KeyboardInterrupt:
        print("\nInterrupted by user", file=sys.stderr)
        return EXIT_INTERRUPTED
    except (RefreshFailure, NotLoggedInError) as e:
        # The terminator has already told the user when a refresh failed
        if not isinstance(e, RefreshFailure):
            print(f"Error: {e.user_message}", file=sys.stderr)
        return EXIT_SESSION
    except CableDeskError as e:
        log_structured_error(logger, e)
        print(f"Error: {e.user_message}", file=sys.stderr)
        return EXIT_ERROR
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_ERROR


if __name__ == "__main__":
    sys.exit(main())
