"""Tests for lifecycle transitions, reinstatement, loyalty rewards and the payment timeout sweep."""

from datetime import timedelta

import pytest
from bson import ObjectId

from app.core.errors import (
    BookingNotFound, NotAuthorized, BlockedByHigherPriorityUnpaid, InvalidOtp,
    AlreadySettled, PaymentNotPending, InvalidTransition,
)
from app.crud import booking_crud
from app.helpers.booking_helper import DISPLACEMENT_REASON, PAYMENT_TIMEOUT_REASON
from app.models.booking import PaymentUpdateRequest
from app.services.booking_service import BookingService, reached_loyalty_milestone
from app.services.notification_service import BookingEventBroadcaster
from app.services.slot_ledger import SlotLedger
from app.utils.date_utils import utcnow
from conftest import BOOKING_DAY


@pytest.fixture
def events():
    return BookingEventBroadcaster()


@pytest.fixture
def service(db, events):
    return BookingService(db, events=events)


def _stored(db, booking):
    return db.bookings.find_one({"_id": booking["_id"]})


def _coins(db, user):
    return db.users.find_one({"_id": user["_id"]}).get("setkar_coins", 0)


def _titles(db, user):
    return [n["title"] for n in db.notifications.find({"user_id": str(user["_id"])})]


class TestAccessChecks:

    def test_unknown_booking(self, service, barber):
        with pytest.raises(BookingNotFound):
            service.accept(str(ObjectId()), barber)
        with pytest.raises(BookingNotFound):
            service.accept("not-an-id", barber)

    def test_only_the_barber_accepts_declines_starts_completes(self, service, book, barber, customer, make_user):
        booking = book(customer, barber, "Basic")
        other_barber = make_user("barber")
        for action in (service.accept, service.decline, service.complete):
            with pytest.raises(NotAuthorized):
                action(booking["_id"], other_barber)
        with pytest.raises(NotAuthorized):
            service.start(booking["_id"], customer, booking["otp"])

    def test_only_the_customer_cancels(self, service, book, barber, customer, make_user):
        booking = book(customer, barber, "Basic")
        with pytest.raises(NotAuthorized):
            service.cancel(booking["_id"], make_user())
        with pytest.raises(NotAuthorized):
            service.cancel(booking["_id"], barber)
        with pytest.raises(NotAuthorized):
            service.cancel_pending(booking["_id"], make_user())

    def test_otp_only_shown_to_customer(self, service, book, barber, customer, make_user):
        booking = book(customer, barber, "Basic")
        assert service.get_booking(booking["_id"], customer)["otp"] == booking["otp"]
        assert "otp" not in service.get_booking(booking["_id"], barber)
        with pytest.raises(NotAuthorized):
            service.get_booking(booking["_id"], make_user())


class TestLifecycle:

    def test_accept_confirms_and_notifies(self, db, service, book, barber, customer):
        booking = book(customer, barber, "Basic", time="15:30")

        updated = service.accept(booking["_id"], barber)

        assert updated["status"] == "confirmed"
        notice = db.notifications.find_one({"user_id": str(customer["_id"]), "title": "Booking Confirmed"})
        assert notice["message"] == "Your booking with Ravi on November 2, 2026 at 3:30 pm has been confirmed."
        history = db.booking_history.find_one({"booking_id": str(booking["_id"]), "action": "accepted"})
        assert history["old_status"] == "pending" and history["new_status"] == "confirmed"

    def test_accept_requires_pending(self, service, book, barber, customer):
        booking = book(customer, barber, "Basic")
        service.accept(booking["_id"], barber)
        with pytest.raises(InvalidTransition):
            service.accept(booking["_id"], barber)

    def test_start_with_wrong_otp_leaves_status(self, db, service, book, barber, customer):
        booking = book(customer, barber, "Basic")
        service.accept(booking["_id"], barber)

        with pytest.raises(InvalidOtp):
            service.start(booking["_id"], barber, "000000" if booking["otp"] != "000000" else "111111")
        assert _stored(db, booking)["status"] == "confirmed"

        assert service.start(booking["_id"], barber, booking["otp"])["status"] == "started"
        assert "Booking Started" in _titles(db, customer)

    @pytest.mark.parametrize("otp", ["", None, "123456"])
    def test_walk_in_starts_without_otp(self, service, book, barber, otp):
        booking = book(barber, barber, "Basic", offline=True)
        service.accept(booking["_id"], barber)
        assert service.start(booking["_id"], barber, otp)["status"] == "started"

    def test_start_requires_confirmed(self, service, book, barber, customer):
        booking = book(customer, barber, "Basic")
        with pytest.raises(InvalidTransition):
            service.start(booking["_id"], barber, booking["otp"])

    def test_verify_otp(self, service, book, barber, customer):
        booking = book(customer, barber, "Basic")
        assert service.verify_otp(booking["_id"], barber, booking["otp"]) is True
        assert service.verify_otp(booking["_id"], customer, booking["otp"]) is True
        with pytest.raises(InvalidOtp):
            service.verify_otp(booking["_id"], barber, "wrong")

    def test_verify_otp_only_for_parties(self, service, book, barber, customer, make_user):
        booking = book(customer, barber, "Basic")
        outsider = make_user()
        # Outsiders are refused before the code is compared, right or wrong
        with pytest.raises(NotAuthorized):
            service.verify_otp(booking["_id"], outsider, booking["otp"])
        with pytest.raises(NotAuthorized):
            service.verify_otp(booking["_id"], outsider, "wrong")

    def test_complete_walk_in_settles_payment(self, db, service, book, barber):
        booking = book(barber, barber, "Free", offline=True)
        db.bookings.update_one({"_id": booking["_id"]}, {"$set": {"payment_status": "pending"}})
        service.accept(booking["_id"], barber)
        service.start(booking["_id"], barber, "")

        updated = service.complete(booking["_id"], barber)

        assert updated["status"] == "completed"
        assert updated["payment_status"] == "completed"
        assert db.users.find_one({"_id": barber["_id"]})["todays_bookings"] == 1
        notice = db.notifications.find_one({"user_id": str(barber["_id"]), "title": "Booking Completed"})
        assert notice["message"].startswith("Booking for Walk In on November 2, 2026")

    def test_cancelled_booking_cannot_be_cancelled_again(self, service, book, barber, customer):
        booking = book(customer, barber, "Basic")
        service.cancel(booking["_id"], customer)
        with pytest.raises(InvalidTransition):
            service.cancel(booking["_id"], customer)
        with pytest.raises(InvalidTransition):
            service.decline(booking["_id"], barber)


class TestPriorityGuard:

    def test_unpaid_higher_tier_blocks_cancellation(self, db, service, book, make_user, barber):
        basic_customer, free_customer = make_user(), make_user()
        basic = book(basic_customer, barber, "Basic")
        service.accept(basic["_id"], barber)
        free = book(free_customer, barber, "Free")

        with pytest.raises(BlockedByHigherPriorityUnpaid):
            service.cancel(free["_id"], free_customer)
        assert _stored(db, free)["status"] == "pending"

        service.update_payment(basic["_id"], basic_customer, PaymentUpdateRequest(payment_status="completed"))

        assert service.cancel(free["_id"], free_customer)["status"] == "cancelled"

    def test_unpaid_higher_tier_blocks_decline(self, service, book, make_user, barber):
        book(make_user(), barber, "Premium")
        basic = book(make_user(), barber, "Basic")
        with pytest.raises(BlockedByHigherPriorityUnpaid) as excinfo:
            service.decline(basic["_id"], barber)
        assert "decline" in excinfo.value.message

    def test_lower_tier_never_blocks(self, service, book, make_user, barber):
        book(make_user(), barber, "Free")
        premium = book(make_user(), barber, "Premium")
        assert service.decline(premium["_id"], barber)["status"] == "cancelled"

    def test_walk_in_of_same_tier_does_not_block_online(self, service, book, make_user, barber, db):
        walk_in = book(barber, barber, "Basic", offline=True)
        db.bookings.update_one({"_id": walk_in["_id"]}, {"$set": {"payment_status": "pending"}})
        online_customer = make_user()
        online = book(online_customer, barber, "Basic")
        assert service.cancel(online["_id"], online_customer)["status"] == "cancelled"

    def test_started_unpaid_blocks_completion(self, db, service, book, make_user, barber):
        premium = book(make_user(), barber, "Premium")
        service.accept(premium["_id"], barber)
        service.start(premium["_id"], barber, premium["otp"])
        basic = book(make_user(), barber, "Basic")
        service.accept(basic["_id"], barber)
        service.start(basic["_id"], barber, basic["otp"])

        with pytest.raises(BlockedByHigherPriorityUnpaid):
            service.complete(basic["_id"], barber)
        assert _stored(db, basic)["status"] == "started"

    def test_paid_booking_cannot_be_cancelled(self, db, service, book, barber, customer):
        booking = book(customer, barber, "Basic")
        db.bookings.update_one({"_id": booking["_id"]}, {"$set": {"payment_status": "completed"}})
        with pytest.raises(AlreadySettled):
            service.cancel(booking["_id"], customer)
        with pytest.raises(PaymentNotPending):
            service.cancel_pending(booking["_id"], customer)


class TestReinstatement:

    @pytest.fixture
    def displaced_day(self, db, book, make_user):
        """Full day where two Black Premium bookings pushed out Free, then Basic."""
        barber = make_user("barber", name="Ravi", max_appointments_per_day=5)
        customers = {tier: make_user(name=tier) for tier in ("Free", "Basic", "Premium")}
        book(make_user(), barber, "Black Premium")
        book(make_user(), barber, "Black Premium")
        bookings = {tier: book(customers[tier], barber, tier) for tier in ("Premium", "Basic", "Free")}
        first = book(make_user(), barber, "Black Premium")
        second = book(make_user(), barber, "Black Premium")
        assert _stored(db, bookings["Free"])["status"] == "cancelled"
        assert _stored(db, bookings["Basic"])["status"] == "cancelled"
        return barber, customers, bookings, first, second

    def test_declines_reinstate_in_reverse_order(self, db, service, displaced_day):
        barber, customers, bookings, first, second = displaced_day
        assert _coins(db, customers["Basic"]) == 3

        service.decline(second["_id"], barber)

        basic = _stored(db, bookings["Basic"])
        assert basic["status"] == "confirmed"
        assert "cancellation_reason" not in basic
        assert "displaced_by" not in basic
        assert _stored(db, bookings["Free"])["status"] == "cancelled"
        assert _coins(db, customers["Basic"]) == 0
        assert "Booking Reinstated" in _titles(db, customers["Basic"])

        service.decline(first["_id"], barber)

        free = _stored(db, bookings["Free"])
        assert free["status"] == "confirmed"
        assert "cancellation_reason" not in free
        assert SlotLedger(db).admitted_count(str(barber["_id"]), BOOKING_DAY) == 5

    def test_reinstatement_happens_once(self, db, service, displaced_day):
        barber, customers, bookings, first, second = displaced_day
        service.decline(second["_id"], barber)
        assert db.bookings.count_documents({"cancellation_reason": DISPLACEMENT_REASON}) == 1

        service.decline(first["_id"], barber)
        assert db.bookings.count_documents({"cancellation_reason": DISPLACEMENT_REASON}) == 0

    def test_unrelated_cancellation_reinstates_latest_displaced(self, db, service, displaced_day):
        barber, customers, bookings, first, second = displaced_day
        db.bookings.update_many({"appointment_type": "Black Premium"}, {"$set": {"payment_status": "completed"}})

        service.cancel(bookings["Premium"]["_id"], customers["Premium"])

        # Nothing was displaced by the Premium booking; the newest displaced one takes its slot
        assert _stored(db, bookings["Free"])["status"] == "confirmed"
        assert _stored(db, bookings["Basic"])["status"] == "cancelled"

    def test_cancel_pending_reinstates(self, db, service, displaced_day):
        barber, customers, bookings, first, second = displaced_day
        second_customer = db.users.find_one({"_id": ObjectId(_stored(db, second)["user_id"])})

        result = service.cancel_pending(second["_id"], second_customer)

        assert result["status"] == "cancelled"
        assert _stored(db, bookings["Basic"])["status"] == "confirmed"

    def test_cancellation_is_broadcast(self, events, service, displaced_day):
        barber, customers, bookings, first, second = displaced_day
        received = []
        events.subscribe(lambda event, payload: received.append((event, payload["id"])))

        service.decline(second["_id"], barber)

        assert received == [("bookingCancelled", str(second["_id"]))]

    def test_failing_listener_does_not_break_cancellation(self, events, service, displaced_day):
        barber, customers, bookings, first, second = displaced_day

        def broken(event, payload):
            raise RuntimeError("relay down")

        events.subscribe(broken)
        assert service.decline(second["_id"], barber)["status"] == "cancelled"


class TestLoyalty:

    @pytest.mark.parametrize("completed,expected", [(1, False), (9, False), (10, True), (11, False), (20, True)])
    def test_milestones(self, completed, expected):
        assert reached_loyalty_milestone(completed) is expected

    def _complete_one(self, service, book, barber, customer):
        booking = book(customer, barber, "Basic")
        service.accept(booking["_id"], barber)
        service.start(booking["_id"], barber, booking["otp"])
        service.complete(booking["_id"], barber)
        return booking

    def test_tenth_completion_earns_bonus(self, db, service, book, make_user):
        barber = make_user("barber", name="Ravi", max_appointments_per_day=10)
        customer = make_user(completed_bookings=8)

        self._complete_one(service, book, barber, customer)
        assert _coins(db, customer) == 1

        tenth = self._complete_one(service, book, barber, customer)
        assert _coins(db, customer) == 12
        records = list(db.coin_transactions.find({"booking_id": str(tenth["_id"])}))
        assert sorted(r["amount"] for r in records) == [1, 10]
        assert len({r["description"] for r in records}) == 2
        stored_customer = db.users.find_one({"_id": customer["_id"]})
        assert stored_customer["completed_bookings"] == 10
        assert stored_customer["loyalty_rewards_earned"] == 1

        self._complete_one(service, book, barber, customer)
        assert _coins(db, customer) == 13

    def test_completion_notifies_both_sides(self, db, service, book, barber, customer):
        self._complete_one(service, book, barber, customer)
        assert "Booking Completed" in _titles(db, customer)
        assert "Booking Completed" in _titles(db, barber)


class TestPaymentTimeout:

    def test_stale_lookup_only_returns_unpaid_pending(self, db, service, book, barber, customer, make_user):
        stale = book(customer, barber, "Basic")
        accepted = book(make_user(), barber, "Basic")
        service.accept(accepted["_id"], barber)
        walk_in = book(barber, barber, "Free", offline=True)
        later = utcnow() + timedelta(minutes=2)

        found = booking_crud.find_stale_unpaid(db, later)

        assert [b["_id"] for b in found] == [stale["_id"]]
        assert walk_in["_id"] not in [b["_id"] for b in found]
        assert booking_crud.find_stale_unpaid(db, utcnow() - timedelta(minutes=2)) == []

    def test_stale_unpaid_bookings_expire(self, db, service, book, barber, customer, make_user):
        stale = book(customer, barber, "Basic")
        paid_customer = make_user()
        paid = book(paid_customer, barber, "Basic")
        service.update_payment(paid["_id"], paid_customer, PaymentUpdateRequest(payment_status="completed"))

        assert service.expire_stale_bookings(timeout_seconds=60) == 0

        expired = service.expire_stale_bookings(timeout_seconds=60, now=utcnow() + timedelta(minutes=2))

        assert expired == 1
        stored = _stored(db, stale)
        assert stored["status"] == "cancelled"
        assert stored["cancellation_reason"] == PAYMENT_TIMEOUT_REASON
        assert _stored(db, paid)["status"] == "pending"
        assert "Booking Cancelled" in _titles(db, customer)
        assert "Booking Cancelled (Payment Timeout)" in _titles(db, barber)

    def test_expiry_ignores_priority_guard_and_reinstates(self, db, service, book, make_user):
        barber = make_user("barber", name="Ravi", max_appointments_per_day=1)
        free_customer = make_user()
        free = book(free_customer, barber, "Free")
        service.update_payment(free["_id"], free_customer, PaymentUpdateRequest(payment_status="completed"))
        black = book(make_user(), barber, "Black Premium")
        assert _stored(db, free)["status"] == "cancelled"

        expired = service.expire_stale_bookings(timeout_seconds=60, now=utcnow() + timedelta(minutes=2))

        assert expired == 1
        assert _stored(db, black)["status"] == "cancelled"
        assert _stored(db, free)["status"] == "confirmed"

    def test_expiry_is_idempotent(self, service, book, barber, customer):
        book(customer, barber, "Basic")
        later = utcnow() + timedelta(minutes=2)
        assert service.expire_stale_bookings(timeout_seconds=60, now=later) == 1
        assert service.expire_stale_bookings(timeout_seconds=60, now=later) == 0
