"""
interfaces/cli.py
──────────────────────────────────────────────────────────────────────────────
Command-line interface for the jurisdiction tax service.

Usage:
  # Quote an order without storing it
  python -m geotax.interfaces.cli price --lon -73.75 --lat 42.65 --subtotal 100

  # Price and store an order
  python -m geotax.interfaces.cli create --lon -73.75 --lat 42.65 --subtotal 100 \
      --timestamp "2024-01-15 10:30:00"

  # Import one or more CSV files (run concurrently, up to the slot limit)
  python -m geotax.interfaces.cli import orders_jan.csv orders_feb.csv

  # Which boundary contains a point?
  python -m geotax.interfaces.cli locate --lon -73.75 --lat 42.65

  # Stored orders
  python -m geotax.interfaces.cli show 42
  python -m geotax.interfaces.cli list --status completed --limit 20 --json
  python -m geotax.interfaces.cli purge --yes

  # Via installed entry-point (pyproject.toml [project.scripts])
  geotax init-db

Exit codes:
  0 — success
  1 — fatal error (configuration, DB, rejected import, etc.)
  2 — argument error
"""
from __future__ import annotations

import argparse
import json
import logging
import sys
from datetime import datetime, timezone
from pathlib import Path

from pydantic import ValidationError

from geotax.config.settings import get_settings
from geotax.domain.exceptions import GeoTaxError, OrderNotFoundError
from geotax.domain.models import ImportResult, Order, OrderFilters, OrderRequest
from geotax.services.container import get_repository, get_resolver, get_service

logger = logging.getLogger(__name__)


def _timestamp(value: str) -> datetime:
    try:
        return datetime.fromisoformat(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid timestamp: {value!r}") from None


# ── Argument parser ────────────────────────────────────────────────────────

def _add_order_args(p: argparse.ArgumentParser) -> None:
    p.add_argument("--lon", type=float, required=True, dest="longitude", help="Longitude (-180..180).")
    p.add_argument("--lat", type=float, required=True, dest="latitude", help="Latitude (-90..90).")
    p.add_argument("--subtotal", "-s", type=float, required=True, help="Pre-tax amount (>= 0).")
    p.add_argument(
        "--timestamp", "-t",
        type=_timestamp,
        default=None,
        help="Order time, ISO format; naive values are UTC. (default: now)",
    )


def _build_parser() -> argparse.ArgumentParser:
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        "--json",
        action="store_true",
        dest="json_output",
        help="Output results as JSON.",
    )
    common.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable debug logging.",
    )

    p = argparse.ArgumentParser(
        prog="geotax",
        description="Resolve sales-tax jurisdictions for orders and import order CSVs.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    sub = p.add_subparsers(dest="command", metavar="COMMAND")

    _add_order_args(sub.add_parser("price", parents=[common], help="Quote an order (not stored)."))
    _add_order_args(sub.add_parser("create", parents=[common], help="Price and store an order."))

    imp = sub.add_parser("import", parents=[common], help="Import order CSV files.")
    imp.add_argument("files", nargs="+", type=Path, metavar="FILE", help="CSV file(s) to import.")

    loc = sub.add_parser("locate", parents=[common], help="Show the jurisdiction containing a point.")
    loc.add_argument("--lon", type=float, required=True, dest="longitude")
    loc.add_argument("--lat", type=float, required=True, dest="latitude")

    show = sub.add_parser("show", parents=[common], help="Show one stored order.")
    show.add_argument("order_id", type=int, metavar="ID")

    lst = sub.add_parser("list", parents=[common], help="List stored orders.")
    lst.add_argument("--status", choices=["completed", "out_of_scope"])
    lst.add_argument("--reporting-code", dest="reporting_code")
    lst.add_argument("--min-amount", type=float, dest="total_amount_min")
    lst.add_argument("--max-amount", type=float, dest="total_amount_max")
    lst.add_argument("--from", type=_timestamp, dest="from_date", metavar="DATE")
    lst.add_argument("--to", type=_timestamp, dest="to_date", metavar="DATE")
    lst.add_argument(
        "--sort-by",
        choices=["id", "created_at", "total_amount", "status"],
        default="created_at",
        dest="sort_by",
    )
    lst.add_argument("--order", choices=["asc", "desc"], default="desc", dest="sort_order")
    lst.add_argument("--limit", "-n", type=int, default=50, help="(default: 50, max 1000)")
    lst.add_argument("--offset", type=int, default=0)

    purge = sub.add_parser("purge", parents=[common], help="Delete ALL stored orders.")
    purge.add_argument("--yes", action="store_true", help="Confirm deletion.")

    sub.add_parser("init-db", parents=[common], help="Create the orders table if missing.")
    return p


# ── Formatting helpers ─────────────────────────────────────────────────────

def _print_json(payload) -> None:
    print(json.dumps(payload, indent=2, ensure_ascii=False))


def _print_order_text(order: Order) -> None:
    """Pretty-print an Order to stdout."""
    print(f"\n{'─' * 60}")
    label = f"#{order.id}" if order.id else "(not stored)"
    print(f"Order  : {label}  |  Status: {order.status.value}")
    print(f"Point  : lon={order.longitude}  lat={order.latitude}")
    print(f"{'─' * 60}")
    print(f"  Subtotal   : {order.total_amount:.2f}")
    print(f"  Tax        : {order.tax_amount:.4f}  (rate {order.composite_tax_rate:.4%})")
    b = order.breakdown
    print(
        f"  Breakdown  : state={b.state_rate:.4%} county={b.county_rate:.4%} "
        f"city={b.city_rate:.4%} special={b.special_rate:.4%}"
    )
    if order.jurisdictions:
        print(f"  Jurisdictions: {', '.join(order.jurisdictions)}")
    if order.reporting_code:
        print(f"  Reporting code: {order.reporting_code}")
    print(f"  Created    : {order.created_at.isoformat()}")
    print()


def _emit_order(order: Order, json_output: bool) -> None:
    if json_output:
        _print_json(order.to_dict())
    else:
        _print_order_text(order)


def _print_import_text(name: str, result: ImportResult) -> None:
    flags = [n for n in ("timed_out", "read_error", "stopped") if getattr(result, n)]
    print(
        f"{name}: processed={result.processed} failed={result.failed} "
        f"completed={result.completed} out_of_scope={result.out_of_scope} "
        f"persisted={result.orders_persisted} batches_failed={result.batches_failed} "
        f"elapsed={result.elapsed_seconds:.2f}s"
        + (f"  [{', '.join(flags)}]" if flags else "")
    )


# ── Commands ───────────────────────────────────────────────────────────────

def _order_request(args: argparse.Namespace) -> OrderRequest:
    return OrderRequest(
        longitude=args.longitude,
        latitude=args.latitude,
        subtotal=args.subtotal,
        timestamp=args.timestamp or datetime.now(timezone.utc),
    )


def _cmd_price(args: argparse.Namespace) -> int:
    order = get_service().price_order(_order_request(args))
    _emit_order(order, args.json_output)
    return 0


def _cmd_create(args: argparse.Namespace) -> int:
    order = get_service().create_order(_order_request(args))
    _emit_order(order, args.json_output)
    return 0


def _cmd_import(args: argparse.Namespace) -> int:
    service = get_service()
    exit_code = 0
    pending = []
    for path in args.files:
        if not path.is_file():
            print(f"ERROR: File not found: {path}", file=sys.stderr)
            exit_code = 2
            continue
        try:
            pending.append((path, service.submit_file(path)))
        except GeoTaxError as exc:
            print(f"ERROR [{path.name}]: {exc}", file=sys.stderr)
            exit_code = 1

    results = {}
    for path, future in pending:
        try:
            results[str(path)] = future.result()
        except Exception as exc:
            logger.exception("Import failed for %s", path)
            print(f"ERROR [{path.name}]: {exc}", file=sys.stderr)
            exit_code = 1

    if args.json_output:
        _print_json({name: r.to_dict() for name, r in results.items()})
    else:
        for name, result in results.items():
            _print_import_text(name, result)
    if any(r.read_error or r.timed_out or r.batches_failed for r in results.values()):
        exit_code = exit_code or 1
    return exit_code


def _cmd_locate(args: argparse.Namespace) -> int:
    resolver = get_resolver()
    feature = resolver.match(args.longitude, args.latitude)
    tax = resolver.resolve(args.longitude, args.latitude)
    payload = {
        "longitude": args.longitude,
        "latitude": args.latitude,
        "feature_index": feature.index if feature else None,
        "name": feature.name if feature else None,
        "tax": tax.model_dump(mode="json") if tax else None,
    }
    if args.json_output:
        _print_json(payload)
    elif feature is None:
        print("No jurisdiction contains this point (out of scope).")
    else:
        rate = f"{tax.composite_rate:.4%}" if tax else "no tax configuration"
        print(f"[{feature.index}] {feature.name}  →  {rate}")
    return 0


def _cmd_show(args: argparse.Namespace) -> int:
    try:
        order = get_service().get_order(args.order_id)
    except OrderNotFoundError as exc:
        print(f"ERROR: {exc}", file=sys.stderr)
        return 1
    _emit_order(order, args.json_output)
    return 0


def _cmd_list(args: argparse.Namespace) -> int:
    filters = OrderFilters(
        status=args.status,
        reporting_code=args.reporting_code,
        total_amount_min=args.total_amount_min,
        total_amount_max=args.total_amount_max,
        from_date=args.from_date,
        to_date=args.to_date,
        sort_by=args.sort_by,
        sort_order=args.sort_order,
        limit=args.limit,
        offset=args.offset,
    )
    page = get_service().list_orders(filters)
    if args.json_output:
        _print_json(page.to_dict())
        return 0

    print(f"{page.total} matching order(s); showing {len(page.orders)} from offset {args.offset}")
    for o in page.orders:
        print(
            f"  #{o.id:<8} {o.created_at:%Y-%m-%d %H:%M:%S}  {o.status.value:<12} "
            f"{o.total_amount:>10.2f}  tax={o.tax_amount:.4f}  {o.reporting_code}"
        )
    return 0


def _cmd_purge(args: argparse.Namespace) -> int:
    if not args.yes:
        print("Refusing to delete all orders without --yes", file=sys.stderr)
        return 2
    deleted = get_service().delete_all_orders()
    if args.json_output:
        _print_json({"deleted": deleted})
    else:
        print(f"Deleted {deleted} order(s).")
    return 0


def _cmd_init_db(args: argparse.Namespace) -> int:
    get_repository().ensure_schema()
    print("Orders schema ready.")
    return 0


_COMMANDS = {
    "price": _cmd_price,
    "create": _cmd_create,
    "import": _cmd_import,
    "locate": _cmd_locate,
    "show": _cmd_show,
    "list": _cmd_list,
    "purge": _cmd_purge,
    "init-db": _cmd_init_db,
}


# ── Main logic ─────────────────────────────────────────────────────────────

def run(args: argparse.Namespace) -> int:
    """Execute the selected subcommand.

    Returns:
        Exit code (0 = success, 1 = error, 2 = bad arguments).
    """
    try:
        return _COMMANDS[args.command](args)
    except ValidationError as exc:
        print(f"ERROR: invalid input:\n{exc}", file=sys.stderr)
        return 2
    except GeoTaxError as exc:
        logger.exception("Command %r failed", args.command)
        print(f"ERROR: {exc}", file=sys.stderr)
        return 1


def main(argv: list[str] | None = None) -> None:
    """Entry point for the geotax console script."""
    parser = _build_parser()
    args = parser.parse_args(argv)

    log_level = logging.DEBUG if getattr(args, "verbose", False) else get_settings().log_level.upper()
    logging.basicConfig(
        level=log_level,
        format="%(asctime)s  %(levelname)-8s  %(name)s  %(message)s",
    )

    if not args.command:
        parser.print_help()
        sys.exit(2)

    sys.exit(run(args))


if __name__ == "__main__":
    main()
