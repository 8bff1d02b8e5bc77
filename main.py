"""
Admin command line for the booking engine.

Usage:
    python main.py init-db
    python main.py --database-url sqlite:///staging.db init-db
    python main.py generate-slots cold_plunge 2026-11-02 --days 7
    python main.py slots cold_plunge 2026-11-02
    python main.py quote sauna --family 2 --extended 15 --zip 90210 --promo FIRST20
    python main.py sweep
    python main.py reconciliation
"""

import argparse
import logging
import sys
from datetime import date, timedelta
from typing import Optional

from booking_engine.config import settings
from booking_engine.engine.availability import AvailabilityStore
from booking_engine.engine.catalog import ServiceCatalog
from booking_engine.engine.pricing import compute_price
from booking_engine.engine.promos import PromoBook
from booking_engine.engine.reconciliation import ReconciliationLog
from booking_engine.errors import BookingError
from booking_engine.integrations.setup_fees import ZipDistanceSetupFees
from booking_engine.persistence.db import build_engine, init_db, make_session_factory
from booking_engine.schemas.booking_schema import AddOns, Address, PriceQuote
from booking_engine.utils import format_cents

logger = logging.getLogger(__name__)


def _parse_date(raw: str) -> date:
    try:
        return date.fromisoformat(raw)
    except ValueError:
        raise argparse.ArgumentTypeError(f"expected YYYY-MM-DD, got {raw!r}") from None


def _resolve_service(catalog: ServiceCatalog, query: str) -> str:
    service_id = catalog.match(query)
    if service_id is None:
        known = ", ".join(s.id for s in catalog.all())
        raise SystemExit(f"Unknown service {query!r}. Known services: {known}")
    return service_id


def format_quote(quote: PriceQuote) -> str:
    lines = [f"Base price:      {format_cents(quote.base_price)}"]
    costs = quote.add_on_costs
    for label, amount in [
        ("Extra visits", costs.extra_visits),
        ("Family members", costs.family_members),
        ("Extended time", costs.extended_time),
    ]:
        if amount:
            lines.append(f"{label + ':':<17}{format_cents(amount)}")
    lines.append(f"Subtotal:        {format_cents(quote.subtotal)}")
    lines.append(f"Setup fee:       {format_cents(quote.setup_fee)}")
    if quote.discount:
        lines.append(f"Discount ({quote.promo_code}): -{format_cents(quote.discount)}")
    lines.append(f"Total:           {format_cents(quote.total)}")
    return "\n".join(lines)


def cmd_init_db(args: argparse.Namespace) -> int:
    init_db(args.engine)
    added = ServiceCatalog(args.sessions).seed()
    if PromoBook(args.sessions).seed_dev_codes():
        logger.info("Development promo codes installed")
    logger.info("Database ready (%d new catalog entries)", added)
    return 0


def cmd_generate_slots(args: argparse.Namespace) -> int:
    catalog = ServiceCatalog(args.sessions)
    service_id = _resolve_service(catalog, args.service)
    store = AvailabilityStore(args.sessions)
    total = 0
    for offset in range(args.days):
        total += store.generate_slots(service_id, args.date + timedelta(days=offset))
    sys.stdout.write(f"Created {total} slot(s) for {service_id}\n")
    return 0


def cmd_slots(args: argparse.Namespace) -> int:
    catalog = ServiceCatalog(args.sessions)
    service_id = _resolve_service(catalog, args.service)
    store = AvailabilityStore(args.sessions)
    result = store.query_slots(service_id, args.date)
    if result.is_closed:
        suggestions = store.suggest_dates(service_id, args.date + timedelta(days=1))
        sys.stdout.write(f"Closed on {args.date.isoformat()} ({result.closure_reason.value}).\n")
        if suggestions:
            sys.stdout.write(
                "Next available: " + ", ".join(d.isoformat() for d in suggestions) + "\n"
            )
        return 0
    if not result.slots:
        sys.stdout.write("No slots configured for this date.\n")
        return 0
    for slot in result.slots:
        sys.stdout.write(
            f"{slot.start_time:%H:%M}-{slot.end_time:%H:%M}  {slot.state.value:<7} {slot.id}\n"
        )
    if result.fully_booked:
        sys.stdout.write("Fully booked.\n")
    return 0


def cmd_quote(args: argparse.Namespace) -> int:
    catalog = ServiceCatalog(args.sessions)
    service = catalog.get(_resolve_service(catalog, args.service))
    add_ons = AddOns(
        extra_visits=args.extra_visits,
        family_members=args.family,
        extended_minutes=args.extended,
    )
    setup_fee = 0
    if args.zip:
        address = Address(street="-", city="-", state="CA", zip_code=args.zip)
        setup_fee = ZipDistanceSetupFees().compute_setup_fee(address)
    promo_book = PromoBook(args.sessions)
    promo = promo_book.resolve(args.promo) if args.promo else None
    quote = compute_price(
        service, add_ons, setup_fee=setup_fee, promo=promo,
        allow_dev_bypass=promo_book.allow_dev_bypass,
    )
    sys.stdout.write(f"{service.name}\n{format_quote(quote)}\n")
    return 0


def cmd_sweep(args: argparse.Namespace) -> int:
    reclaimed = AvailabilityStore(args.sessions).sweep_expired()
    sys.stdout.write(f"Reclaimed {reclaimed} expired hold(s)\n")
    return 0


def cmd_reconciliation(args: argparse.Namespace) -> int:
    records = ReconciliationLog(args.sessions).open_records()
    if not records:
        sys.stdout.write("No open reconciliation records.\n")
    for record in records:
        sys.stdout.write(
            f"{record.id}  {record.kind.value:<25} {record.status.value:<8} "
            f"charge={record.charge_id} amount={format_cents(record.amount)} "
            f"booking={record.booking_id}\n"
        )
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description=f"{settings.business.name} booking engine administration."
    )
    parser.add_argument(
        "--database-url",
        default=settings.database.url,
        help="SQLAlchemy URL of the booking database (default: DATABASE_URL).",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser(
        "init-db", help="Create tables, seed the service catalog and development promo codes."
    )
    p.set_defaults(func=cmd_init_db)

    p = sub.add_parser("generate-slots", help="Create slots across business hours.")
    p.add_argument("service", help="Service id or name, e.g. 'cold_plunge' or 'sauna'.")
    p.add_argument("date", type=_parse_date, help="First date, YYYY-MM-DD.")
    p.add_argument("--days", type=int, default=1, help="Number of consecutive days.")
    p.set_defaults(func=cmd_generate_slots)

    p = sub.add_parser("slots", help="Show slots for a service on a date.")
    p.add_argument("service")
    p.add_argument("date", type=_parse_date)
    p.set_defaults(func=cmd_slots)

    p = sub.add_parser("quote", help="Price a booking without holding anything.")
    p.add_argument("service")
    p.add_argument("--extra-visits", type=int, default=0)
    p.add_argument("--family", type=int, default=0, help="Additional family members.")
    p.add_argument("--extended", type=int, default=0, help="Extended minutes.")
    p.add_argument("--zip", default=None, help="Service address ZIP code for the setup fee.")
    p.add_argument("--promo", default=None, help="Promo code.")
    p.set_defaults(func=cmd_quote)

    p = sub.add_parser("sweep", help="Reopen slots whose holds have expired.")
    p.set_defaults(func=cmd_sweep)

    p = sub.add_parser("reconciliation", help="List open reconciliation records.")
    p.set_defaults(func=cmd_reconciliation)

    return parser


def main(argv: Optional[list[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    args.engine = build_engine(args.database_url)
    args.sessions = make_session_factory(args.engine)
    try:
        return args.func(args)
    except BookingError as e:
        logger.error("%s: %s", e.kind.value, e.message)
        sys.stderr.write(f"Error: {e.message}\n")
        return 1
    finally:
        args.engine.dispose()


if __name__ == "__main__":
    sys.exit(main())
