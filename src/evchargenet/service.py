"""Charging service: sessions, stations, profiles and reviews over a backend."""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from datetime import datetime
from typing import TypeVar

from .accounting import (
    plan_join_queue,
    plan_start_session,
    plan_stop_session,
    queue_position,
)
from .backend.base import BaseIdentityProvider, BaseStore, FieldUpdate, Query, Transaction
from .const import (
    ACTIVE_SESSIONS_COLLECTION,
    BOOKINGS_COLLECTION,
    REVIEWS_COLLECTION,
    STATIONS_COLLECTION,
    USERS_COLLECTION,
)
from .documents import (
    booking_document,
    booking_from_document,
    profile_patch_fields,
    review_document,
    review_from_document,
    session_document,
    session_from_document,
    station_document,
    station_from_document,
    station_patch_fields,
    user_document,
    user_from_document,
)
from .exceptions import (
    BackendError,
    ConfigError,
    ConflictError,
    NotFoundError,
    SessionNotFoundError,
    StationNotFoundError,
    UserNotFoundError,
    ValidationError,
)
from .models import (
    ActiveSession,
    Booking,
    ChargeEstimate,
    Identity,
    ProfilePatch,
    Review,
    SessionProgress,
    Station,
    StationDraft,
    StationFilter,
    StationPatch,
    UsageSummary,
    User,
)
from .pricing import estimate_charge, session_progress
from .state import StationState, filter_stations
from .util import require_id, utc_now

_LOGGER = logging.getLogger(__name__)

T = TypeVar("T")


class ChargingService:
    """Operations a charging app performs against a backend.

    Every change to a station's slot count or queue runs inside a store
    transaction. A transaction that loses a race is re-run against fresh data
    until it commits or the rules reject it, so a full station is reported as
    such and never as a conflict. ``conflict_retries`` caps the re-runs when
    set. Rule violations and backend failures are raised immediately.
    """

    def __init__(
        self,
        store: BaseStore,
        identity: BaseIdentityProvider | None = None,
        *,
        clock: Callable[[], datetime] | None = None,
        conflict_retries: int | None = None,
    ) -> None:
        if store is None:
            raise ValidationError("store is required.")
        self._store = store
        self._identity = identity
        self._clock = clock or utc_now
        self._conflict_retries = None if conflict_retries is None else max(0, conflict_retries)

    @property
    def store(self) -> BaseStore:
        return self._store

    @property
    def identity(self) -> BaseIdentityProvider | None:
        return self._identity

    async def aclose(self) -> None:
        await self._store.aclose()

    # Accounts

    def current_user(self) -> Identity | None:
        if self._identity is None:
            return None
        return self._identity.current_user

    async def sign_up(self, email: str, password: str) -> User:
        """Create an account and its user profile document."""
        identity = await self._require_identity().sign_up(email, password)
        await self._store.create(
            USERS_COLLECTION,
            user_document(identity.email),
            doc_id=identity.uid,
        )
        _LOGGER.info("User %s registered", identity.uid)
        return await self.get_user(identity.uid)

    async def sign_in(self, email: str, password: str) -> User:
        identity = await self._require_identity().sign_in(email, password)
        _LOGGER.info("User %s signed in", identity.uid)
        return await self.get_user(identity.uid)

    async def sign_out(self) -> None:
        await self._require_identity().sign_out()

    def _require_identity(self) -> BaseIdentityProvider:
        if self._identity is None:
            raise ConfigError("No identity provider is configured.")
        return self._identity

    # Stations

    async def get_station(self, station_id: str) -> Station:
        station_id = require_id(station_id, "station_id")
        document = await self._store.get(STATIONS_COLLECTION, station_id)
        if document is None:
            raise StationNotFoundError(f"Station {station_id} does not exist.")
        return station_from_document(document)

    async def list_stations(self, station_filter: StationFilter | None = None) -> list[Station]:
        documents = await self._store.query(Query(STATIONS_COLLECTION))
        stations = sorted(
            (station_from_document(document) for document in documents),
            key=lambda station: (station.name, station.id),
        )
        if station_filter is None:
            return stations
        return filter_stations(stations, station_filter)

    async def create_station(self, draft: StationDraft) -> Station:
        data = station_document(draft)
        station_id = await self._store.create(STATIONS_COLLECTION, data)
        _LOGGER.info("Station %s created", station_id)
        return await self.get_station(station_id)

    async def update_station(self, station_id: str, patch: StationPatch) -> Station:
        station_id = require_id(station_id, "station_id")

        async def apply(transaction: Transaction) -> None:
            document = await transaction.get(STATIONS_COLLECTION, station_id)
            if document is None:
                raise StationNotFoundError(f"Station {station_id} does not exist.")
            station = station_from_document(document)
            fields = station_patch_fields(station, patch)
            transaction.update(STATIONS_COLLECTION, station_id, fields)

        await self._run_atomic("update_station", apply)
        _LOGGER.info("Station %s updated", station_id)
        return await self.get_station(station_id)

    async def delete_station(self, station_id: str) -> None:
        station_id = require_id(station_id, "station_id")
        if await self._store.get(STATIONS_COLLECTION, station_id) is None:
            raise StationNotFoundError(f"Station {station_id} does not exist.")
        await self._store.delete(STATIONS_COLLECTION, station_id)
        _LOGGER.info("Station %s deleted", station_id)

    async def watch_stations(self, state: StationState | None = None) -> StationState:
        """Return a station mirror kept current by the store's change notifications."""
        state = state or StationState()
        await state.attach(self._store)
        return state

    # Charging sessions

    async def start_session(self, station_id: str, user_id: str) -> ActiveSession:
        """Take one slot at ``station_id`` and open a session for ``user_id``."""
        station_id = require_id(station_id, "station_id")
        user_id = require_id(user_id, "user_id")
        _LOGGER.debug("start_session started for station %s", station_id)

        async def start(transaction: Transaction) -> str:
            document = await transaction.get(STATIONS_COLLECTION, station_id)
            station = station_from_document(document) if document is not None else None
            plan = plan_start_session(station, user_id, station_id=station_id)
            transaction.update(
                STATIONS_COLLECTION,
                station_id,
                (FieldUpdate(("slots", "available"), plan.available_after),),
            )
            return transaction.create(
                ACTIVE_SESSIONS_COLLECTION,
                session_document(user_id, station_id),
            )

        session_id = await self._run_atomic("start_session", start)
        _LOGGER.info("User %s started charging at station %s", user_id, station_id)
        return await self.get_session(session_id)

    async def stop_session(self, session_id: str) -> Booking:
        """End a session, free its slot, award loyalty points and record the booking."""
        session_id = require_id(session_id, "session_id")
        _LOGGER.debug("stop_session started for session %s", session_id)

        async def stop(transaction: Transaction) -> str:
            session_doc = await transaction.get(ACTIVE_SESSIONS_COLLECTION, session_id)
            if session_doc is None:
                raise SessionNotFoundError(f"Session {session_id} does not exist.")
            session = session_from_document(session_doc)
            station_doc = await transaction.get(STATIONS_COLLECTION, session.station_id)
            user_doc = await transaction.get(USERS_COLLECTION, session.user_id)
            plan = plan_stop_session(
                session,
                station_from_document(station_doc) if station_doc is not None else None,
                user_from_document(user_doc) if user_doc is not None else None,
                session_id=session_id,
                now=self._clock(),
            )
            transaction.delete(ACTIVE_SESSIONS_COLLECTION, session_id)
            transaction.update(
                STATIONS_COLLECTION,
                plan.station_id,
                (FieldUpdate(("slots", "available"), plan.available_after),),
            )
            transaction.update(
                USERS_COLLECTION,
                plan.user_id,
                (FieldUpdate(("profile", "loyaltyPoints"), plan.loyalty_points_after),),
            )
            return transaction.create(
                BOOKINGS_COLLECTION,
                booking_document(
                    plan.user_id,
                    plan.station_id,
                    duration=plan.duration,
                    kwh_consumed=plan.kwh_consumed,
                    cost=plan.cost,
                ),
            )

        booking_id = await self._run_atomic("stop_session", stop)
        document = await self._store.get(BOOKINGS_COLLECTION, booking_id)
        if document is None:
            raise BackendError(f"Booking {booking_id} was not returned by the backend.")
        booking = booking_from_document(document)
        _LOGGER.info(
            "User %s stopped charging at station %s (%.2f kWh)",
            booking.user_id,
            booking.station_id,
            booking.kwh_consumed,
        )
        return booking

    async def join_queue(self, station_id: str, user_id: str) -> int:
        """Append ``user_id`` to the station queue and return the 1-based position."""
        station_id = require_id(station_id, "station_id")
        user_id = require_id(user_id, "user_id")

        async def join(transaction: Transaction) -> int:
            document = await transaction.get(STATIONS_COLLECTION, station_id)
            station = station_from_document(document) if document is not None else None
            queue = plan_join_queue(station, user_id, station_id=station_id)
            transaction.update(
                STATIONS_COLLECTION,
                station_id,
                (FieldUpdate(("queue",), list(queue)),),
            )
            return len(queue)

        position = await self._run_atomic("join_queue", join)
        _LOGGER.info("User %s joined the queue at station %s (#%s)", user_id, station_id, position)
        return position

    async def queue_position(self, station_id: str, user_id: str) -> int | None:
        """Return the 1-based queue position of ``user_id``, or ``None`` when not queued."""
        station = await self.get_station(station_id)
        return queue_position(station, require_id(user_id, "user_id"))

    async def get_session(self, session_id: str) -> ActiveSession:
        session_id = require_id(session_id, "session_id")
        document = await self._store.get(ACTIVE_SESSIONS_COLLECTION, session_id)
        if document is None:
            raise SessionNotFoundError(f"Session {session_id} does not exist.")
        return session_from_document(document)

    async def list_active_sessions(self, user_id: str) -> list[ActiveSession]:
        user_id = require_id(user_id, "user_id")
        documents = await self._store.query(
            Query(ACTIVE_SESSIONS_COLLECTION, where=(("userId", user_id),))
        )
        sessions = [session_from_document(document) for document in documents]
        return sorted(sessions, key=lambda session: session.start_time)

    async def session_progress(self, session_id: str) -> SessionProgress:
        session = await self.get_session(session_id)
        station = await self.get_station(session.station_id)
        return session_progress(session, station, self._clock())

    # Booking ledger

    async def list_bookings(self, user_id: str) -> list[Booking]:
        """Return the user's completed sessions, newest first."""
        user_id = require_id(user_id, "user_id")
        documents = await self._store.query(
            Query(BOOKINGS_COLLECTION, where=(("userId", user_id),))
        )
        bookings = [booking_from_document(document) for document in documents]
        return sorted(bookings, key=lambda booking: booking.created_at, reverse=True)

    async def usage_summary(self, user_id: str) -> list[UsageSummary]:
        """Per-station totals of the user's bookings, most used station first."""
        return await self._summarize(await self.list_bookings(user_id))

    async def station_usage(self) -> list[UsageSummary]:
        """Per-station totals over every user's bookings, for the admin dashboard."""
        documents = await self._store.query(Query(BOOKINGS_COLLECTION))
        return await self._summarize([booking_from_document(document) for document in documents])

    async def _summarize(self, bookings: list[Booking]) -> list[UsageSummary]:
        names = {station.id: station.name for station in await self.list_stations()}
        totals: dict[str, tuple[int, float, float]] = {}
        for booking in bookings:
            sessions, kwh, cost = totals.get(booking.station_id, (0, 0.0, 0.0))
            totals[booking.station_id] = (
                sessions + 1,
                kwh + booking.kwh_consumed,
                cost + booking.cost,
            )
        summaries = [
            UsageSummary(
                station_id=station_id,
                station_name=names.get(station_id, "Unknown"),
                sessions=sessions,
                kwh_consumed=kwh,
                cost=cost,
            )
            for station_id, (sessions, kwh, cost) in totals.items()
        ]
        return sorted(summaries, key=lambda summary: (-summary.sessions, summary.station_name))

    # Profiles

    async def get_user(self, user_id: str) -> User:
        user_id = require_id(user_id, "user_id")
        document = await self._store.get(USERS_COLLECTION, user_id)
        if document is None:
            raise UserNotFoundError(f"User {user_id} does not exist.")
        return user_from_document(document)

    async def update_profile(self, user_id: str, patch: ProfilePatch) -> User:
        user_id = require_id(user_id, "user_id")
        fields = profile_patch_fields(patch)
        try:
            await self._store.update(USERS_COLLECTION, user_id, fields)
        except NotFoundError as exc:
            raise UserNotFoundError(f"User {user_id} does not exist.") from exc
        return await self.get_user(user_id)

    async def toggle_favorite(self, user_id: str, station_id: str) -> bool:
        """Add or remove a favorite station; return whether it is now a favorite."""
        user_id = require_id(user_id, "user_id")
        station_id = require_id(station_id, "station_id")

        async def toggle(transaction: Transaction) -> bool:
            document = await transaction.get(USERS_COLLECTION, user_id)
            if document is None:
                raise UserNotFoundError(f"User {user_id} does not exist.")
            favorites = list(user_from_document(document).profile.favorites)
            if station_id in favorites:
                favorites.remove(station_id)
                added = False
            else:
                favorites.append(station_id)
                added = True
            transaction.update(
                USERS_COLLECTION,
                user_id,
                (FieldUpdate(("profile", "favorites"), favorites),),
            )
            return added

        return await self._run_atomic("toggle_favorite", toggle)

    async def estimate_charge(
        self,
        user_id: str,
        station_id: str,
        current_soc: int,
        target_soc: int,
    ) -> ChargeEstimate:
        user = await self.get_user(user_id)
        station = await self.get_station(station_id)
        return estimate_charge(user.profile.vehicle, current_soc, target_soc, station)

    # Reviews

    async def add_review(
        self,
        user_id: str,
        username: str,
        station_id: str,
        rating: int,
        text: str,
    ) -> Review:
        user_id = require_id(user_id, "user_id")
        station = await self.get_station(station_id)
        data = review_document(user_id, username or "", station.id, rating, text)
        review_id = await self._store.create(REVIEWS_COLLECTION, data)
        document = await self._store.get(REVIEWS_COLLECTION, review_id)
        if document is None:
            raise BackendError(f"Review {review_id} was not returned by the backend.")
        return review_from_document(document)

    async def list_reviews(self, station_id: str | None = None) -> list[Review]:
        """Return reviews, newest first, optionally for one station."""
        if station_id is None:
            query = Query(REVIEWS_COLLECTION, order_by="createdAt", descending=True)
        else:
            query = Query(REVIEWS_COLLECTION, where=(("stationId", station_id),))
        reviews = [review_from_document(document) for document in await self._store.query(query)]
        return sorted(reviews, key=lambda review: review.created_at, reverse=True)

    async def _run_atomic(
        self,
        action: str,
        fn: Callable[[Transaction], Awaitable[T]],
    ) -> T:
        # Every conflict means a competing transaction committed, so re-runs make progress.
        attempt = 0
        while True:
            try:
                return await self._store.run_atomic(fn)
            except ConflictError:
                attempt += 1
                if self._conflict_retries is not None and attempt > self._conflict_retries:
                    raise
                _LOGGER.warning(
                    "%s lost a transaction race, retrying (attempt %s)",
                    action,
                    attempt + 1,
                )
