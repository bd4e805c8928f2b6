"""Tests for the notification retention sweep."""

import asyncio

import pytest

from db.transaction import transaction
from notifications.retention import NotificationRetentionSweeper
from trip import TripStatus


@pytest.mark.unit
class TestRetentionSweeper:
    def test_run_once_deletes_expired(self, relay, session_factory, clock):
        with session_factory() as session, transaction(session):
            relay.notify(session, "client", "c1", "trip1", "old")
        clock.advance(2 * 3600)
        with session_factory() as session, transaction(session):
            relay.notify(session, "client", "c1", "trip1", "new")

        sweeper = NotificationRetentionSweeper(relay, retention_hours=1, clock=clock)

        assert sweeper.run_once() == 1
        assert [n.message for n in relay.list_for_recipient("client", "c1")] == ["new"]

    def test_open_offer_survives_until_trip_resolves(
        self, relay, lifecycle, clock, place_driver, pickup, destination
    ):
        """A trip whose offer outlived the retention window can still be cancelled."""
        place_driver("d1", 0.5)
        trip = lifecycle.request_trip("c1", pickup, destination)
        clock.advance(25 * 3600)

        sweeper = NotificationRetentionSweeper(relay, retention_hours=24, clock=clock)
        assert sweeper.run_once() == 0

        cancelled = lifecycle.cancel(trip.trip_id, "client")

        assert cancelled.status == TripStatus.CANCELLED
        assert relay.get(trip.offer_notification_id).status == "rejected"

    def test_nothing_to_delete(self, relay, clock):
        sweeper = NotificationRetentionSweeper(relay, clock=clock)
        assert sweeper.run_once() == 0

    async def test_start_and_stop(self, relay, clock):
        sweeper = NotificationRetentionSweeper(relay, interval_seconds=0.01, clock=clock)
        await sweeper.start()
        await asyncio.sleep(0.05)
        await sweeper.stop()
        assert sweeper._task.done()
