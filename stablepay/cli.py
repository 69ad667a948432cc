"""CLI and main logic."""

import argparse
import logging
import sys
from dataclasses import replace

from tqdm import tqdm

from stablepay.config import Settings, load_settings
from stablepay.console import print_estimate, print_lock_periods, print_metrics
from stablepay.errors import StablePayError
from stablepay.formatters import to_smallest_unit
from stablepay.yield_model import apy_for_lock_period, estimate_accrued_yield, lock_period_options, parse_lock_period


def parse_args(argv: list[str]) -> argparse.Namespace:
    """Parse command-line arguments."""
    p = argparse.ArgumentParser(prog="stablepay", description="StablePay USDC vault backend.")
    p.add_argument("--rpc-url", default=None, help="Base RPC URL. Default: STABLEPAY_RPC_URL or BASE_RPC_URL.")
    p.add_argument("--database-url", default=None, help="SQLAlchemy database URL. Default: DATABASE_URL.")
    p.add_argument("-v", "--verbose", action="store_true", help="Debug logging.")
    sub = p.add_subparsers(dest="command", required=True)

    serve = sub.add_parser("serve", help="Run the JSON HTTP API.")
    serve.add_argument("--host", default="0.0.0.0")
    serve.add_argument("--port", type=int, default=None, help="Default: PORT or 5000.")

    metrics = sub.add_parser("metrics", help="Print vault metrics for one or more addresses.")
    metrics.add_argument("addresses", nargs="+", metavar="ADDRESS")

    lock = sub.add_parser("lock-periods", help="Print the lock-period APY table.")
    lock.add_argument("--onchain", action="store_true", help="Compare with the vault's getAPYForLockPeriod.")

    est = sub.add_parser("estimate", help="Estimate simple-interest yield for a deposit.")
    est.add_argument("amount", help="Principal in USDC, e.g. 50000 or 125.5")
    est.add_argument("--months", required=True, help="Lock period in months (0.5, 1-12).")
    est.add_argument("--hours", type=int, required=True, help="Elapsed whole hours.")

    sub.add_parser("init-db", help="Create database tables.")
    return p.parse_args(argv)


def _settings(args: argparse.Namespace) -> Settings:
    settings = load_settings()
    overrides = {}
    if args.rpc_url:
        overrides["rpc_url"] = args.rpc_url
    if args.database_url:
        overrides["database_url"] = args.database_url
    if getattr(args, "port", None):
        overrides["port"] = args.port
    if overrides:
        settings = replace(settings, **overrides)
    return settings


def _vault_client(settings: Settings):
    from stablepay.contracts import VaultClient, connect_web3
    from stablepay.rate_limiter import SlidingWindowRateLimiter

    w3 = connect_web3(settings.rpc_url, timeout=settings.http_timeout)
    if not w3.is_connected():
        raise StablePayError(f"failed to connect to RPC at {settings.rpc_url}")
    limiter = SlidingWindowRateLimiter(max_calls=settings.rpc_max_rps)
    return VaultClient(w3, settings.vault_address, settings.usdc_address, limiter)


def cmd_lock_periods(args: argparse.Namespace) -> int:
    options = lock_period_options()
    onchain = None
    if args.onchain:
        client = _vault_client(_settings(args))
        onchain = {}
        for o in tqdm(options, desc="🔗 Reading on-chain APY", unit="period", file=sys.stderr):
            if o.months != int(o.months):
                onchain[o.months] = None
                continue
            try:
                onchain[o.months] = client.onchain_apy_for_lock_period(int(o.months))
            except Exception as ex:  # pylint: disable=broad-exception-caught
                tqdm.write(f"⚠️  getAPYForLockPeriod({o.months:g}) failed: {ex}", file=sys.stderr)
                onchain[o.months] = None
    print_lock_periods(options, onchain)
    return 0


def cmd_estimate(args: argparse.Namespace) -> int:
    months = parse_lock_period(args.months)
    apy = apy_for_lock_period(months)
    principal = to_smallest_unit(args.amount)
    print_estimate(principal, apy, args.hours, estimate_accrued_yield(principal, apy, args.hours))
    return 0


def cmd_metrics(args: argparse.Namespace) -> int:
    from stablepay.metrics import MetricsService
    from stablepay.storage import Storage

    settings = _settings(args)
    client = _vault_client(settings)
    storage = Storage(settings.database_url)
    storage.create_tables()
    service = MetricsService(client, storage.deposits_for)

    with tqdm(total=len(args.addresses), desc="🔗 Reading vault positions", unit="address", file=sys.stderr) as pbar:
        service.prefetch(args.addresses, on_position=lambda _: pbar.update(1))
    results = [(address, service.get_metrics(address)) for address in args.addresses]

    for address, m in results:
        print_metrics(address, m)
    estimated = [a for a, m in results if m.source != "onchain"]
    if estimated:
        print(f"\n⚠️  {len(estimated)} position(s) include local estimates (on-chain read failed)", file=sys.stderr)
    return 0


def cmd_init_db(args: argparse.Namespace) -> int:
    from stablepay.storage import Storage

    settings = _settings(args)
    Storage(settings.database_url).create_tables()
    print(f"✅ Tables created at {settings.database_url}", file=sys.stderr)
    return 0


def cmd_serve(args: argparse.Namespace) -> int:
    from stablepay.kyc import build_providers
    from stablepay.metrics import MetricsPoller, MetricsService
    from stablepay.server import StablePayApp, make_server
    from stablepay.storage import Storage

    settings = _settings(args)
    client = _vault_client(settings)
    storage = Storage(settings.database_url)
    storage.create_tables()
    service = MetricsService(client, storage.deposits_for)
    app = StablePayApp(
        client=client,
        storage=storage,
        metrics=service,
        providers=build_providers(settings),
        inr_exchange_rate=settings.inr_exchange_rate,
        admin_token=settings.admin_api_token,
    )
    poller = MetricsPoller(service)
    poller.start()
    server = make_server(app, args.host, settings.port)
    print(f"🚀 StablePay API on http://{args.host}:{server.server_address[1]}", file=sys.stderr)
    try:
        server.serve_forever()
    except KeyboardInterrupt:
        print("\n👋 Shutting down", file=sys.stderr)
    finally:
        poller.stop()
        server.server_close()
    return 0


COMMANDS = {
    "serve": cmd_serve,
    "metrics": cmd_metrics,
    "lock-periods": cmd_lock_periods,
    "estimate": cmd_estimate,
    "init-db": cmd_init_db,
}


def main(argv: list[str]) -> int:
    """Main entry point."""
    args = parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )
    try:
        return COMMANDS[args.command](args)
    except StablePayError as ex:
        print(f"Error: {ex}", file=sys.stderr)
        return 2
