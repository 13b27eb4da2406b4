"""Manual check for a selected backend.

Run the in-memory walkthrough from the repository root with:
  PYTHONPATH=src python scripts/backend_live_check.py --backend memory --run-session

Check a Firebase project (the account must already exist unless --sign-up is given):
  PYTHONPATH=src EVCHARGENET_BACKEND=firebase \
    FIREBASE_PROJECT_ID=... FIREBASE_API_KEY=... \
    EVCHARGENET_EMAIL=... EVCHARGENET_PASSWORD=... \
    python scripts/backend_live_check.py

Start and stop a real session at a station (creates a booking and awards points):
  PYTHONPATH=src EVCHARGENET_BACKEND=firebase ... \
    python scripts/backend_live_check.py --run-session --station-id <id> --charge-seconds 30

Optional environment variables:
  EVCHARGENET_BACKEND
  FIREBASE_PROJECT_ID
  FIREBASE_API_KEY
  EVCHARGENET_EMAIL
  EVCHARGENET_PASSWORD

Debug helpers:
  --log-level DEBUG shows library debug logs.
  --traceback prints full tracebacks on errors.
  --show-email prints account emails unmasked.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
import sys
import traceback

from evchargenet import Client
from evchargenet.exceptions import EVChargeNetError, NoSlotsAvailableError
from evchargenet.models import Booking, Station, StationDraft, User
from evchargenet.service import ChargingService
from evchargenet.state import station_availability

_LOGGER = logging.getLogger(__name__)
_DEMO_PASSWORD = "memory-demo"
_ANSI_STYLES = {
    "reset": "\x1b[0m",
    "bold": "\x1b[1m",
    "red": "\x1b[31m",
    "green": "\x1b[32m",
    "yellow": "\x1b[33m",
    "cyan": "\x1b[36m",
}
_COLOR_ENABLED = False


def _require_value(name: str, value: str | None) -> str:
    if not value:
        print(f"Missing required value: {name}", file=sys.stderr)
        raise SystemExit(2)
    return value


def _style(text: str, color: str | None = None, *, bold: bool = False) -> str:
    if not _COLOR_ENABLED or not color:
        return text
    prefix = _ANSI_STYLES["bold"] if bold else ""
    return f"{prefix}{_ANSI_STYLES[color]}{text}{_ANSI_STYLES['reset']}"


def _format_action(label: str, value: str, *, color: str | None = None) -> str:
    return f"{_style(label, color, bold=True)}: {value}"


def _mask_email(email: str) -> str:
    local, _, domain = email.partition("@")
    if not domain:
        return "***"
    visible = local[:1]
    return f"{visible}***@{domain}"


def _format_station(station: Station) -> str:
    availability = station_availability(station)
    return (
        f"{station.id} | {station.name} ({station.city or '-'}) | "
        f"{station.slots.available}/{station.slots.total} | {availability.value} | "
        f"queue={len(station.queue)}"
    )


def _format_booking(booking: Booking) -> str:
    return (
        f"{booking.id} | station={booking.station_id} | {booking.duration}s | "
        f"{booking.kwh_consumed:.3f} kWh | {booking.cost:.2f}"
    )


def _format_user(user: User, *, show_email: bool) -> str:
    email = user.email if show_email else _mask_email(user.email)
    return (
        f"{user.id} | {email} | role={user.role.value} | "
        f"points={user.profile.loyalty_points} | vehicle={user.profile.vehicle}"
    )


def _print_exception(label: str, exc: Exception, *, trace: bool) -> None:
    styled_label = _style(label, "red", bold=True)
    print(f"{styled_label}: {exc.__class__.__name__}: {exc}", file=sys.stderr)
    if trace:
        traceback.print_exc()


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run a backend check.")
    parser.add_argument("--backend", dest="backend_id", help="Backend id (memory or firebase).")
    parser.add_argument("--project-id", dest="project_id", help="Firebase project id.")
    parser.add_argument("--api-key", dest="api_key", help="Firebase web API key.")
    parser.add_argument("--email", dest="email", help="Account email.")
    parser.add_argument("--password", dest="password", help="Account password.")
    parser.add_argument(
        "--sign-up",
        action="store_true",
        help="Create the account instead of signing in.",
    )
    parser.add_argument(
        "--run-session",
        action="store_true",
        help="Start a charging session, wait, then stop it.",
    )
    parser.add_argument("--station-id", dest="station_id", help="Station for --run-session.")
    parser.add_argument(
        "--charge-seconds",
        type=float,
        default=2.0,
        help="Seconds to keep the session open (default: 2).",
    )
    parser.add_argument(
        "--log-level",
        default="WARNING",
        help="Logging level (default: WARNING).",
    )
    parser.add_argument(
        "--color",
        choices=("auto", "always", "never"),
        default="auto",
        help="Colorize output (default: auto).",
    )
    parser.add_argument("--show-email", action="store_true", help="Print emails unmasked.")
    parser.add_argument("--traceback", action="store_true", help="Print full tracebacks.")
    return parser.parse_args()


async def _seed_memory(service: ChargingService) -> Station:
    return await service.create_station(
        StationDraft(
            name="Demo Plaza",
            city="Pune",
            lat=18.5204,
            lng=73.8567,
            total_slots=1,
            available_slots=1,
            price_per_kwh=18.0,
            amenities=("Cafe", "Restroom"),
            charger_types=("CCS", "Type 2"),
        )
    )


async def _run_memory_queue_demo(service: ChargingService, station: Station) -> None:
    """Second user hits the full station and queues while the first one charges."""
    other = await service.sign_up("second.driver@example.com", _DEMO_PASSWORD)
    try:
        await service.start_session(station.id, other.id)
    except NoSlotsAvailableError as exc:
        print(_format_action("Second driver", exc.user_message or str(exc), color="yellow"))
        position = await service.join_queue(station.id, other.id)
        print(_format_action("Second driver queued", f"#{position}", color="yellow"))


async def _run_session_flow(
    service: ChargingService,
    user: User,
    station_id: str,
    *,
    charge_seconds: float,
    demo_queue: bool,
) -> None:
    session = await service.start_session(station_id, user.id)
    print(_format_action("Session started", f"{session.id} at {session.start_time}", color="green"))
    station = await service.get_station(station_id)
    print(f"- {_format_station(station)}")
    if demo_queue:
        await service.sign_out()
        await _run_memory_queue_demo(service, station)
    await asyncio.sleep(max(0.0, charge_seconds))
    progress = await service.session_progress(session.id)
    print(
        _format_action(
            "Progress",
            f"{progress.elapsed_seconds}s | {progress.kwh_consumed:.3f} kWh | "
            f"{progress.cost:.2f} @ {progress.effective_price:.2f}",
            color="cyan",
        )
    )
    booking = await service.stop_session(session.id)
    print(_format_action("Session stopped", _format_booking(booking), color="green"))
    station = await service.get_station(station_id)
    print(f"- {_format_station(station)}")


async def main() -> int:
    args = _parse_args()
    logging.basicConfig(level=args.log_level.upper())
    global _COLOR_ENABLED
    if args.color == "always":
        _COLOR_ENABLED = True
    elif args.color == "never":
        _COLOR_ENABLED = False
    else:
        _COLOR_ENABLED = sys.stdout.isatty()
    backend_id = args.backend_id or os.getenv("EVCHARGENET_BACKEND") or "memory"
    project_id = args.project_id or os.getenv("FIREBASE_PROJECT_ID")
    api_key = args.api_key or os.getenv("FIREBASE_API_KEY")
    email = args.email or os.getenv("EVCHARGENET_EMAIL")
    password = args.password or os.getenv("EVCHARGENET_PASSWORD")
    is_memory = backend_id == "memory"

    if is_memory:
        email = email or "first.driver@example.com"
        password = password or _DEMO_PASSWORD
    else:
        project_id = _require_value("project_id", project_id)
        api_key = _require_value("api_key", api_key)
    email = _require_value("email", email)
    password = _require_value("password", password)

    try:
        async with Client() as client:
            backends = await client.list_backends()
            print(
                _format_action(
                    "Backends",
                    ", ".join(f"{info.id} (realtime={info.realtime})" for info in backends),
                    color="cyan",
                )
            )
            service = await client.connect(backend_id, project_id=project_id, api_key=api_key)
            try:
                if args.sign_up or is_memory:
                    user = await service.sign_up(email, password)
                else:
                    user = await service.sign_in(email, password)
                print(
                    _format_action(
                        "User",
                        _format_user(user, show_email=args.show_email),
                        color="cyan",
                    )
                )
                station_id = args.station_id
                if is_memory:
                    station_id = (await _seed_memory(service)).id
                stations = await service.list_stations()
                print(_format_action("Stations", str(len(stations)), color="cyan"))
                for station in stations:
                    print(f"- {_format_station(station)}")
                if args.run_session:
                    await _run_session_flow(
                        service,
                        user,
                        _require_value("station_id", station_id),
                        charge_seconds=args.charge_seconds,
                        demo_queue=is_memory,
                    )
                    user = await service.get_user(user.id)
                    print(
                        _format_action(
                            "User",
                            _format_user(user, show_email=args.show_email),
                            color="cyan",
                        )
                    )
                bookings = await service.list_bookings(user.id)
                print(_format_action("Bookings", str(len(bookings)), color="cyan"))
                for booking in bookings:
                    print(f"- {_format_booking(booking)}")
            finally:
                await service.aclose()
    except EVChargeNetError as exc:
        _print_exception("Error", exc, trace=args.traceback)
        if exc.user_message:
            print(exc.user_message, file=sys.stderr)
        return 1
    except Exception as exc:
        _print_exception("Error", exc, trace=args.traceback)
        return 1
    _LOGGER.debug("Backend check finished for %s", backend_id)
    return 0


if __name__ == "__main__":
    raise SystemExit(asyncio.run(main()))
