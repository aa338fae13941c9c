import argparse
import json
import logging
import sys

from slotbook.config import load_settings
from slotbook.domain import BookingError, BookingRequest
from slotbook.google_calendar import build_provider
from slotbook.service import book_timeslot, fetch_availability


def _setup_logging() -> None:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s - %(message)s",
    )


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="slotbook: calendar availability and booking")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("availability", help="Print bookable timeslots as JSON")

    book = sub.add_parser("book", help="Book a timeslot")
    book.add_argument("--timeslot", required=True, help="ISO-8601 start of the slot")
    book.add_argument("--name", required=True)
    book.add_argument("--email", required=True)
    book.add_argument("--phone", default="")
    book.add_argument("--note", default="")
    return parser


def main() -> int:
    args = _build_parser().parse_args()

    _setup_logging()
    settings = load_settings()

    with build_provider(settings) as provider:
        if args.command == "availability":
            try:
                response = fetch_availability(settings, provider)
            except BookingError as e:
                logging.getLogger(__name__).error("Availability query failed (%s: %s)", type(e).__name__, e)
                print(str(e), file=sys.stderr)
                return 1
            print(json.dumps(response, indent=2))
            return 0

        request = BookingRequest(
            slot=args.timeslot,
            name=args.name,
            email=args.email,
            phone=args.phone,
            note=args.note,
        )
        try:
            print(book_timeslot(settings, provider, request))
        except BookingError as e:
            logging.getLogger(__name__).error("Booking failed (%s: %s)", type(e).__name__, e)
            print(str(e), file=sys.stderr)
            return 1
        return 0


if __name__ == "__main__":
    raise SystemExit(main())
