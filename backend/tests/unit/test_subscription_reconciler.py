"""Tests for the subscription reconciler.

Covers webhook event handling (idempotence, deletion reset, stale and
unmapped events, missing metadata), pull sync with its degraded path,
checkout-session sync and the internal manual sync.
"""

import json
from datetime import UTC, datetime
from unittest.mock import AsyncMock

import pytest

from textbehind.core.config import settings
from textbehind.core.errors import BillingSyncError, ForbiddenError, NotFoundError, ValidationError
from textbehind.models.user import UserAccount
from textbehind.providers.billing.base import CheckoutSessionInfo, SubscriptionSnapshot
from textbehind.providers.billing.mock_adapter import MockBillingProvider
from textbehind.providers.errors import TransientError
from textbehind.repositories.user_repository import UserRepository
from textbehind.schemas.events import parse_billing_event
from textbehind.schemas.subscription import ManualSyncRequest
from textbehind.services.subscription_reconciler import SubscriptionReconciler
from tests.conftest import TEST_EMAIL, TEST_IDENTITY_ID

_IDENTITY = "user_recon_1"
_CUSTOMER = "cus_recon_1"
_SUBSCRIPTION = "sub_recon_1"
_MONTHLY_PRICE = "price_monthly_recon"
_YEARLY_PRICE = "price_yearly_recon"
_PERIOD_START = 1_760_000_000
_PERIOD_END = 1_762_592_000


@pytest.fixture(autouse=True)
def price_ids(monkeypatch):
    monkeypatch.setattr(settings, "stripe_monthly_price_id", _MONTHLY_PRICE)
    monkeypatch.setattr(settings, "stripe_yearly_price_id", _YEARLY_PRICE)


def _subscription_object(
    *,
    status: str = "active",
    price_id: str = _MONTHLY_PRICE,
    subscription_id: str = _SUBSCRIPTION,
    metadata: dict | None = None,
    cancel_at_period_end: bool = False,
) -> dict:
    return {
        "id": subscription_id,
        "object": "subscription",
        "customer": _CUSTOMER,
        "status": status,
        "cancel_at_period_end": cancel_at_period_end,
        "current_period_start": _PERIOD_START,
        "current_period_end": _PERIOD_END,
        "metadata": {"userId": _IDENTITY} if metadata is None else metadata,
        "items": {"data": [{"id": "si_1", "price": {"id": price_id}}]},
    }


def _event(event_type: str, obj: dict, *, created: int = 1_760_000_100, event_id: str = "evt_1"):
    return parse_billing_event(
        json.dumps(
            {
                "id": event_id,
                "object": "event",
                "type": event_type,
                "created": created,
                "data": {"object": obj},
            }
        )
    )


async def _seed(db, **fields) -> UserAccount:
    values = {
        "external_identity_id": _IDENTITY,
        "subscription_tier": "free",
        "subscription_status": "inactive",
        "usage_count": 0,
        "preferences": {},
    }
    values.update(fields)
    account = UserAccount(**values)
    db.add(account)
    await db.commit()
    return account


async def _reload(db) -> UserAccount:
    account = await UserRepository.get_by_identity_id(db, _IDENTITY, refresh=True)
    assert account is not None
    return account


def _naive(ts: int) -> datetime:
    # SQLite hands DateTime(timezone=True) values back naive
    return datetime.fromtimestamp(ts, tz=UTC).replace(tzinfo=None)


def _billing_state(account: UserAccount) -> tuple:
    return (
        account.subscription_id,
        account.subscription_tier,
        account.subscription_status,
        account.subscription_period_start,
        account.subscription_period_end,
        account.subscription_cancel_at_period_end,
    )


# =============================================================================
# Webhook events
# =============================================================================


class TestSubscriptionEvents:
    @pytest.mark.asyncio
    async def test_updated_event_writes_billing_columns(self, db_session):
        await _seed(db_session)
        reconciler = SubscriptionReconciler(db_session, MockBillingProvider())

        applied = await reconciler.handle_event(
            _event("customer.subscription.updated", _subscription_object(price_id=_YEARLY_PRICE))
        )

        assert applied is True
        account = await _reload(db_session)
        assert account.subscription_id == _SUBSCRIPTION
        assert account.subscription_tier == "yearly"
        assert account.subscription_status == "active"
        assert account.billing_customer_id == _CUSTOMER
        assert account.subscription_period_start.replace(tzinfo=None) == _naive(_PERIOD_START)
        assert account.subscription_period_end.replace(tzinfo=None) == _naive(_PERIOD_END)

    @pytest.mark.asyncio
    async def test_redelivery_is_idempotent(self, db_session):
        await _seed(db_session)
        reconciler = SubscriptionReconciler(db_session, MockBillingProvider())
        event = _event("customer.subscription.updated", _subscription_object())

        await reconciler.handle_event(event)
        first = _billing_state(await _reload(db_session))
        await reconciler.handle_event(event)
        second = _billing_state(await _reload(db_session))

        assert first == second

    @pytest.mark.asyncio
    async def test_unrecognized_price_maps_to_monthly(self, db_session):
        await _seed(db_session)
        reconciler = SubscriptionReconciler(db_session, MockBillingProvider())

        await reconciler.handle_event(
            _event("customer.subscription.updated", _subscription_object(price_id="price_other"))
        )

        assert (await _reload(db_session)).subscription_tier == "monthly"

    @pytest.mark.asyncio
    async def test_status_is_mirrored_verbatim(self, db_session):
        await _seed(db_session)
        reconciler = SubscriptionReconciler(db_session, MockBillingProvider())

        await reconciler.handle_event(
            _event(
                "customer.subscription.updated",
                _subscription_object(status="past_due", cancel_at_period_end=True),
            )
        )

        account = await _reload(db_session)
        assert account.subscription_status == "past_due"
        assert account.subscription_tier == "monthly"
        assert account.subscription_cancel_at_period_end is True

    @pytest.mark.asyncio
    async def test_stale_event_is_rejected(self, db_session):
        await _seed(db_session)
        reconciler = SubscriptionReconciler(db_session, MockBillingProvider())
        await reconciler.handle_event(
            _event(
                "customer.subscription.updated",
                _subscription_object(status="canceled"),
                created=2_000,
                event_id="evt_new",
            )
        )

        applied = await reconciler.handle_event(
            _event(
                "customer.subscription.updated",
                _subscription_object(status="active"),
                created=1_000,
                event_id="evt_old",
            )
        )

        assert applied is False
        assert (await _reload(db_session)).subscription_status == "canceled"

    @pytest.mark.asyncio
    async def test_created_event_creates_missing_account(self, db_session):
        reconciler = SubscriptionReconciler(db_session, MockBillingProvider())

        applied = await reconciler.handle_event(
            _event("customer.subscription.created", _subscription_object())
        )

        assert applied is True
        account = await _reload(db_session)
        assert account.subscription_tier == "monthly"
        assert account.usage_count == 0
        assert account.email is None

    @pytest.mark.asyncio
    async def test_updated_event_does_not_create_account(self, db_session):
        reconciler = SubscriptionReconciler(db_session, MockBillingProvider())

        applied = await reconciler.handle_event(
            _event("customer.subscription.updated", _subscription_object())
        )

        assert applied is False
        assert await UserRepository.get_by_identity_id(db_session, _IDENTITY) is None

    @pytest.mark.asyncio
    async def test_billing_write_preserves_usage(self, db_session):
        await _seed(db_session, usage_count=4)
        reconciler = SubscriptionReconciler(db_session, MockBillingProvider())

        await reconciler.handle_event(
            _event("customer.subscription.updated", _subscription_object())
        )

        assert (await _reload(db_session)).usage_count == 4


class TestSubscriptionDeleted:
    @pytest.mark.asyncio
    async def test_deletion_resets_to_free(self, db_session):
        await _seed(
            db_session,
            billing_customer_id=_CUSTOMER,
            subscription_id=_SUBSCRIPTION,
            subscription_tier="yearly",
            subscription_status="active",
            subscription_period_start=datetime.fromtimestamp(_PERIOD_START, tz=UTC),
            subscription_period_end=datetime.fromtimestamp(_PERIOD_END, tz=UTC),
            subscription_cancel_at_period_end=True,
            usage_count=9,
        )
        reconciler = SubscriptionReconciler(db_session, MockBillingProvider())

        applied = await reconciler.handle_event(
            _event("customer.subscription.deleted", _subscription_object(status="canceled"))
        )

        assert applied is True
        account = await _reload(db_session)
        assert account.subscription_tier == "free"
        assert account.subscription_status == "canceled"
        assert account.subscription_id is None
        assert account.subscription_period_start is None
        assert account.subscription_period_end is None
        assert account.subscription_cancel_at_period_end is False
        assert account.billing_customer_id == _CUSTOMER
        assert account.usage_count == 9

    @pytest.mark.asyncio
    async def test_deletion_of_replaced_subscription_is_ignored(self, db_session):
        await _seed(
            db_session,
            subscription_id="sub_new",
            subscription_tier="yearly",
            subscription_status="active",
        )
        reconciler = SubscriptionReconciler(db_session, MockBillingProvider())

        applied = await reconciler.handle_event(
            _event(
                "customer.subscription.deleted",
                _subscription_object(status="canceled", subscription_id="sub_old"),
            )
        )

        assert applied is False
        account = await _reload(db_session)
        assert account.subscription_tier == "yearly"
        assert account.subscription_id == "sub_new"

    @pytest.mark.asyncio
    async def test_deletion_for_unknown_account(self, db_session):
        reconciler = SubscriptionReconciler(db_session, MockBillingProvider())

        applied = await reconciler.handle_event(
            _event("customer.subscription.deleted", _subscription_object(status="canceled"))
        )

        assert applied is False


class TestCheckoutCompleted:
    @staticmethod
    def _session(metadata: dict | None = None, customer: str | None = _CUSTOMER) -> dict:
        return {
            "id": "cs_test_1",
            "object": "checkout.session",
            "customer": customer,
            "subscription": _SUBSCRIPTION,
            "metadata": {"userId": _IDENTITY} if metadata is None else metadata,
        }

    @pytest.mark.asyncio
    async def test_marks_existing_account_active(self, db_session):
        await _seed(db_session)
        reconciler = SubscriptionReconciler(db_session, MockBillingProvider())

        applied = await reconciler.handle_event(
            _event("checkout.session.completed", self._session())
        )

        assert applied is True
        account = await _reload(db_session)
        assert account.subscription_status == "active"
        assert account.billing_customer_id == _CUSTOMER

    @pytest.mark.asyncio
    async def test_creates_missing_account(self, db_session):
        reconciler = SubscriptionReconciler(db_session, MockBillingProvider())

        await reconciler.handle_event(_event("checkout.session.completed", self._session()))

        account = await _reload(db_session)
        assert account.subscription_tier == "monthly"
        assert account.subscription_status == "active"
        assert account.usage_count == 0

    @pytest.mark.asyncio
    async def test_missing_identity_metadata_is_skipped(self, db_session):
        await _seed(db_session)
        reconciler = SubscriptionReconciler(db_session, MockBillingProvider())

        applied = await reconciler.handle_event(
            _event("checkout.session.completed", self._session(metadata={}))
        )

        assert applied is False
        account = await _reload(db_session)
        assert account.subscription_status == "inactive"
        assert account.billing_customer_id is None

    @pytest.mark.asyncio
    async def test_checkout_does_not_advance_billing_version(self, db_session):
        await _seed(db_session)
        reconciler = SubscriptionReconciler(db_session, MockBillingProvider())

        await reconciler.handle_event(
            _event("checkout.session.completed", self._session(), created=1_760_000_102)
        )

        assert (await _reload(db_session)).billing_synced_at is None

    @pytest.mark.asyncio
    async def test_subscription_created_delivered_after_checkout_still_applies(
        self, db_session
    ):
        # Stripe creates the subscription before the session completes,
        # but the checkout event may arrive first.
        await _seed(db_session)
        reconciler = SubscriptionReconciler(db_session, MockBillingProvider())

        await reconciler.handle_event(
            _event(
                "checkout.session.completed",
                self._session(),
                created=1_760_000_102,
                event_id="evt_checkout",
            )
        )
        applied = await reconciler.handle_event(
            _event(
                "customer.subscription.created",
                _subscription_object(price_id=_YEARLY_PRICE),
                created=1_760_000_100,
                event_id="evt_sub_created",
            )
        )

        assert applied is True
        account = await _reload(db_session)
        assert account.subscription_tier == "yearly"
        assert account.subscription_status == "active"
        assert account.subscription_id == _SUBSCRIPTION
        assert account.subscription_period_end.replace(tzinfo=None) == _naive(_PERIOD_END)
        assert account.billing_synced_at == 1_760_000_100

    @pytest.mark.asyncio
    async def test_subscription_created_after_checkout_created_account(self, db_session):
        reconciler = SubscriptionReconciler(db_session, MockBillingProvider())

        await reconciler.handle_event(
            _event("checkout.session.completed", self._session(), created=1_760_000_102)
        )
        await reconciler.handle_event(
            _event(
                "customer.subscription.created",
                _subscription_object(price_id=_YEARLY_PRICE),
                created=1_760_000_100,
                event_id="evt_sub_created",
            )
        )

        assert (await _reload(db_session)).subscription_tier == "yearly"

    @pytest.mark.asyncio
    async def test_late_checkout_does_not_reactivate_newer_state(self, db_session):
        await _seed(
            db_session,
            subscription_status="canceled",
            billing_synced_at=1_760_000_500,
        )
        reconciler = SubscriptionReconciler(db_session, MockBillingProvider())

        applied = await reconciler.handle_event(
            _event("checkout.session.completed", self._session(), created=1_760_000_102)
        )

        assert applied is False
        account = await _reload(db_session)
        assert account.subscription_status == "canceled"
        assert account.billing_synced_at == 1_760_000_500


class TestOtherEvents:
    @pytest.mark.asyncio
    async def test_missing_metadata_on_subscription_event(self, db_session):
        await _seed(db_session)
        reconciler = SubscriptionReconciler(db_session, MockBillingProvider())

        applied = await reconciler.handle_event(
            _event("customer.subscription.updated", _subscription_object(metadata={}))
        )

        assert applied is False
        assert (await _reload(db_session)).subscription_tier == "free"

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "event_type", ["customer.created", "charge.refunded", "invoice.payment_succeeded"]
    )
    async def test_unmapped_events_do_not_write(self, db_session, event_type):
        await _seed(db_session)
        before = _billing_state(await _reload(db_session))
        reconciler = SubscriptionReconciler(db_session, MockBillingProvider())

        applied = await reconciler.handle_event(
            _event(event_type, {"id": "obj_1", "customer": _CUSTOMER})
        )

        assert applied is False
        assert _billing_state(await _reload(db_session)) == before


# =============================================================================
# Pull sync
# =============================================================================


def _snapshot(**overrides) -> SubscriptionSnapshot:
    values = {
        "id": _SUBSCRIPTION,
        "customer_id": _CUSTOMER,
        "status": "active",
        "price_id": _YEARLY_PRICE,
        "period_start": datetime.fromtimestamp(_PERIOD_START, tz=UTC),
        "period_end": datetime.fromtimestamp(_PERIOD_END, tz=UTC),
        "identity_id": _IDENTITY,
    }
    values.update(overrides)
    return SubscriptionSnapshot(**values)


class TestPullSync:
    @pytest.mark.asyncio
    async def test_applies_latest_subscription(self, db_session):
        await _seed(db_session, billing_customer_id=_CUSTOMER)
        billing = MockBillingProvider()
        billing.subscriptions[_SUBSCRIPTION] = _snapshot()

        result = await SubscriptionReconciler(db_session, billing).pull_sync(_IDENTITY)

        assert result.message == "Subscription synced successfully"
        assert result.account.subscription_tier == "yearly"
        assert result.account.subscription_id == _SUBSCRIPTION

    @pytest.mark.asyncio
    async def test_provider_failure_returns_persisted_state(self, db_session):
        await _seed(
            db_session,
            billing_customer_id=_CUSTOMER,
            subscription_tier="monthly",
            subscription_status="active",
        )
        billing = MockBillingProvider()
        billing.get_latest_subscription = AsyncMock(side_effect=TransientError("timeout"))

        result = await SubscriptionReconciler(db_session, billing).pull_sync(_IDENTITY)

        assert result.message == "Returned last known subscription state"
        assert result.account.subscription_tier == "monthly"
        assert result.account.subscription_status == "active"

    @pytest.mark.asyncio
    async def test_no_customer(self, db_session):
        await _seed(db_session)
        billing = MockBillingProvider()

        result = await SubscriptionReconciler(db_session, billing).pull_sync(_IDENTITY)

        assert result.message == "No billing customer on record"
        assert billing.calls == []

    @pytest.mark.asyncio
    async def test_no_subscription(self, db_session):
        await _seed(db_session, billing_customer_id=_CUSTOMER)

        result = await SubscriptionReconciler(db_session, MockBillingProvider()).pull_sync(
            _IDENTITY
        )

        assert result.message == "No subscription found"
        assert result.account.subscription_tier == "free"

    @pytest.mark.asyncio
    async def test_missing_account(self, db_session):
        with pytest.raises(NotFoundError):
            await SubscriptionReconciler(db_session, MockBillingProvider()).pull_sync(_IDENTITY)


# =============================================================================
# Checkout-session sync
# =============================================================================


class TestSyncCheckoutSession:
    @staticmethod
    def _billing(**session_overrides) -> MockBillingProvider:
        billing = MockBillingProvider()
        session = {
            "id": "cs_1",
            "status": "complete",
            "customer_id": _CUSTOMER,
            "subscription_id": _SUBSCRIPTION,
            "identity_id": _IDENTITY,
        }
        session.update(session_overrides)
        billing.sessions["cs_1"] = CheckoutSessionInfo(**session)
        billing.subscriptions[_SUBSCRIPTION] = _snapshot(price_id=_MONTHLY_PRICE)
        return billing

    @pytest.mark.asyncio
    async def test_syncs_session_and_subscription(self, db_session, mock_identity):
        await _seed(db_session, usage_count=3)
        reconciler = SubscriptionReconciler(db_session, self._billing(), mock_identity)

        result = await reconciler.sync_checkout_session(_IDENTITY, "cs_1")

        assert result.message == "Session and subscription synced successfully"
        assert result.account.billing_customer_id == _CUSTOMER
        assert result.account.subscription_id == _SUBSCRIPTION
        assert result.account.subscription_tier == "monthly"
        assert result.account.usage_count == 3

    @pytest.mark.asyncio
    async def test_session_without_subscription(self, db_session, mock_identity):
        await _seed(db_session)
        billing = self._billing(subscription_id=None)
        reconciler = SubscriptionReconciler(db_session, billing, mock_identity)

        result = await reconciler.sync_checkout_session(_IDENTITY, "cs_1")

        assert result.message == "Session synced successfully"
        assert result.account.subscription_status == "active"

    @pytest.mark.asyncio
    async def test_creates_missing_account_with_profile(self, db_session, mock_identity):
        billing = self._billing(identity_id=TEST_IDENTITY_ID)
        billing.subscriptions[_SUBSCRIPTION] = _snapshot(identity_id=TEST_IDENTITY_ID)
        reconciler = SubscriptionReconciler(db_session, billing, mock_identity)

        result = await reconciler.sync_checkout_session(TEST_IDENTITY_ID, "cs_1")

        assert result.account.email == TEST_EMAIL
        assert result.account.full_name == "Test User"
        assert result.account.subscription_tier == "yearly"

    @pytest.mark.asyncio
    async def test_incomplete_session_is_rejected(self, db_session):
        await _seed(db_session)
        reconciler = SubscriptionReconciler(db_session, self._billing(status="open"))

        with pytest.raises(ValidationError) as exc_info:
            await reconciler.sync_checkout_session(_IDENTITY, "cs_1")

        assert exc_info.value.message == "Session not completed"
        assert exc_info.value.details == [{"status": "open"}]

    @pytest.mark.asyncio
    async def test_session_without_customer_is_rejected(self, db_session):
        await _seed(db_session)
        reconciler = SubscriptionReconciler(db_session, self._billing(customer_id=None))

        with pytest.raises(ValidationError, match="No customer ID found"):
            await reconciler.sync_checkout_session(_IDENTITY, "cs_1")

    @pytest.mark.asyncio
    async def test_foreign_session_is_forbidden(self, db_session):
        await _seed(db_session)
        reconciler = SubscriptionReconciler(
            db_session, self._billing(identity_id="user_someone_else")
        )

        with pytest.raises(ForbiddenError):
            await reconciler.sync_checkout_session(_IDENTITY, "cs_1")

    @pytest.mark.asyncio
    async def test_provider_failure_is_sync_error(self, db_session):
        await _seed(db_session)
        billing = self._billing()
        billing.fail_with = TransientError("connection reset")

        with pytest.raises(BillingSyncError) as exc_info:
            await SubscriptionReconciler(db_session, billing).sync_checkout_session(
                _IDENTITY, "cs_1"
            )

        assert exc_info.value.status_code == 500
        assert exc_info.value.details == [{"details": "connection reset"}]


# =============================================================================
# Manual sync
# =============================================================================


class TestManualSync:
    @pytest.mark.asyncio
    async def test_applies_asserted_state(self, db_session):
        await _seed(db_session, usage_count=2)
        body = ManualSyncRequest(
            subscription_id="sub_manual",
            customer_id="cus_manual",
            status="active",
            plan_type="yearly",
            current_period_start=datetime(2026, 1, 1),
            current_period_end=datetime(2027, 1, 1),
        )

        result = await SubscriptionReconciler(db_session, MockBillingProvider()).manual_sync(
            _IDENTITY, body
        )

        account = result.account
        assert account.subscription_tier == "yearly"
        assert account.subscription_id == "sub_manual"
        assert account.billing_customer_id == "cus_manual"
        assert account.usage_count == 2

    @pytest.mark.asyncio
    async def test_missing_account(self, db_session):
        body = ManualSyncRequest(
            subscription_id="sub_manual",
            customer_id="cus_manual",
            status="active",
            plan_type="monthly",
        )
        with pytest.raises(NotFoundError):
            await SubscriptionReconciler(db_session, MockBillingProvider()).manual_sync(
                _IDENTITY, body
            )
