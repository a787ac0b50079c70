"""Command-line interface for read-only loan inspection."""
from __future__ import annotations

import argparse
import asyncio
import sys
from decimal import Decimal, InvalidOperation

from .config import AppConfig, NetworkConfig, load_config
from .errors import (
    ConfigurationError,
    OriginationError,
    OwnershipError,
    TokenContractError,
)
from .logging_setup import configure_logging
from .models import NetworkContext, TokenInfo, WalletSession, months_to_seconds
from .protocols.lending.parser import format_units, parse_units
from .services import AssetPositionResolver, LoanEconomicsCalculator, PreflightValidator


def _decimal(value: str) -> Decimal:
    try:
        return Decimal(value)
    except InvalidOperation:
        raise argparse.ArgumentTypeError(f"invalid amount: {value!r}") from None


def build_parser() -> argparse.ArgumentParser:
    """Build the argparse CLI parser."""
    parser = argparse.ArgumentParser(
        prog="rwa-lending",
        description="Inspect tokenized-asset positions and loan quotes",
    )
    parser.add_argument(
        "--config",
        default=None,
        help="Path to config.yaml (default: config.yaml in project root)",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: INFO)",
    )

    sub = parser.add_subparsers(dest="command")

    positions = sub.add_parser("positions", help="List an address's asset positions")
    positions.add_argument("address", help="Owner wallet address")
    positions.add_argument("--network", default=None, help="Network name from config")

    quote = sub.add_parser("quote", help="Provisional and ledger loan terms")
    quote.add_argument("amount", type=_decimal, help="Principal in currency units")
    quote.add_argument("months", type=int, help="Loan term in months")
    quote.add_argument("--tier", default="standard", help="Loan tier id")
    quote.add_argument("--network", default=None, help="Network name from config")
    quote.add_argument("--currency", default=None, help="Loan currency symbol")

    preflight = sub.add_parser("preflight", help="Run every origination check")
    preflight.add_argument("address", help="Borrower wallet address")
    preflight.add_argument("token_id", type=int, help="Asset token id")
    preflight.add_argument("amount", type=_decimal, help="Principal in currency units")
    preflight.add_argument("months", type=int, help="Loan term in months")
    preflight.add_argument("--network", default=None, help="Network name from config")
    preflight.add_argument("--currency", default=None, help="Loan currency symbol")

    return parser


def _network(config: AppConfig, name: str | None) -> NetworkConfig:
    if name is None:
        return next(iter(config.networks.values()))
    network = config.networks.get(name)
    if network is None:
        raise ConfigurationError(
            f"Unknown network '{name}' (configured: {', '.join(config.networks)})"
        )
    return network


def _token(network: NetworkContext, symbol: str | None) -> TokenInfo:
    if symbol is None:
        if not network.tokens:
            raise TokenContractError(f"No loan currency configured on {network.name}")
        return network.tokens[0]
    token = network.token(symbol)
    if token is None:
        raise TokenContractError(f"{symbol} is not available on {network.name}")
    return token


async def _positions(config: AppConfig, args: argparse.Namespace) -> None:
    network = _network(config, args.network).to_context()
    session = WalletSession(address=args.address, chain_id=network.chain_id)
    snapshot = await AssetPositionResolver(config.engine).resolve(session, network)

    print(f"Positions for {args.address} on {network.name}: {len(snapshot.positions)}")
    for p in snapshot.positions:
        flags = []
        if p.is_authorized:
            flags.append("authorized")
        if p.is_collateralized:
            flags.append(f"collateral for loan {p.active_loan_id}")
        if p.can_be_collateralized:
            flags.append("eligible")
        print(
            f"  #{p.token_id} {p.name} ({p.asset_type}) "
            f"custody={format_units(p.custody_amount, 18)} "
            f"value=${p.display_value:,.2f} [{', '.join(flags) or 'ineligible'}]"
        )


async def _quote(config: AppConfig, args: argparse.Namespace) -> None:
    network = _network(config, args.network).to_context()
    token = _token(network, args.currency)
    tier = config.tier(args.tier)
    if tier is None:
        raise ConfigurationError(f"Unknown loan tier '{args.tier}'")

    principal = parse_units(args.amount, token.decimals)
    duration = months_to_seconds(args.months)
    calculator = LoanEconomicsCalculator()
    provisional = calculator.estimate(None, principal, duration, tier)
    confirmed = await calculator.recompute(network, principal, duration)

    def fmt(value: int) -> str:
        return f"{format_units(value, token.decimals)} {token.symbol}"

    print(f"{tier.name}: {args.amount} {token.symbol} over {args.months} months")
    print(f"  provisional monthly payment: {fmt(provisional.monthly_payment)}")
    print(f"  confirmed total debt:        {fmt(confirmed.total_debt)}")
    print(f"  confirmed buffer:            {fmt(confirmed.buffer_amount)}")
    print(f"  confirmed monthly payment:   {fmt(confirmed.monthly_payment)}")
    print(f"  interest rate:               {confirmed.interest_rate_bps / 100:.2f}%")
    print(f"  required allowance:          {fmt(confirmed.required_allowance())}")


async def _preflight(config: AppConfig, args: argparse.Namespace) -> None:
    network = _network(config, args.network).to_context()
    token = _token(network, args.currency)
    session = WalletSession(address=args.address, chain_id=network.chain_id)

    snapshot = await AssetPositionResolver(config.engine).resolve(session, network)
    position = snapshot.get(args.token_id)
    if position is None:
        raise OwnershipError(f"Asset #{args.token_id} not found for {args.address}")

    report = await PreflightValidator().validate(
        position,
        network,
        parse_units(args.amount, token.decimals),
        months_to_seconds(args.months),
        token,
        session,
    )
    print(f"Preflight passed for asset #{args.token_id}")
    print(
        f"  required allowance: "
        f"{format_units(report.required_allowance, token.decimals)} {token.symbol}"
    )
    for warning in report.warnings:
        print(f"  warning: {warning}")


_COMMANDS = {
    "positions": _positions,
    "quote": _quote,
    "preflight": _preflight,
}


async def _run(args: argparse.Namespace) -> int:
    """Execute the selected command; return the process exit code."""
    configure_logging(args.log_level)
    config = load_config(args.config)

    try:
        await _COMMANDS[args.command](config, args)
    except OriginationError as e:
        print(f"Error: {e.message}", file=sys.stderr)
        if e.remediation:
            print(f"  {e.remediation}", file=sys.stderr)
        return 1
    return 0


def main() -> None:
    """Entry point."""
    parser = build_parser()
    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        sys.exit(1)

    sys.exit(asyncio.run(_run(args)))
