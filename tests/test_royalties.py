from __future__ import annotations

from datetime import datetime, timezone

import pytest

from stardust_dsp.application.reporting.royalties import (
    DSP_REVENUE,
    PAYMENTS,
    STATEMENTS,
    PaymentProcessor,
    RoyaltyEngine,
    StatementRepository,
)
from stardust_dsp.domain.models import DistributionStatus, RoyaltyMethod, StatementStatus
from stardust_dsp.domain.policies import RoyaltyPolicy
from stardust_dsp.errors import InvalidPeriodError, InvalidRequestError, StatementLockedError
from stardust_dsp.infrastructure.document_stores import InMemoryDocumentStore

NOW = datetime(2026, 4, 2, 9, 0, tzinfo=timezone.utc)


def _clock() -> datetime:
    return NOW


def _catalog(store, *, recorded_revenue: float | None = 1000.0) -> None:
    store.set(
        "tracks",
        "T1",
        {
            "status": "active",
            "masterRights": [{"id": "label-a", "name": "Label A", "type": "label", "share": 100}],
            "publishingRights": [{"id": "pub-x", "name": "Pub X", "type": "publisher", "share": 100}],
        },
    )
    store.set(
        "tracks",
        "T2",
        {"status": "active", "masterRights": [{"id": "label-b", "name": "Label B", "type": "label", "share": 100}]},
    )
    store.set("tracks", "T3", {"status": "taken_down", "masterRights": [{"id": "label-c", "share": 100}]})
    store.set(
        "analytics_daily",
        "2026-03-10_T1",
        {
            "date": "2026-03-10",
            "trackId": "T1",
            "plays": 300,
            "countries": {"US": 200, "GB": 100},
            "dspPlays": {"spotify": 300},
            "listenerPlays": {"u1": 300},
        },
    )
    store.set(
        "analytics_daily",
        "2026-03-11_T2",
        {
            "date": "2026-03-11",
            "trackId": "T2",
            "plays": 100,
            "countries": {"US": 100},
            "dspPlays": {"apple": 100},
            "listenerPlays": {"u2": 100},
        },
    )
    store.set("analytics_daily", "2026-04-01_T2", {"date": "2026-04-01", "trackId": "T2", "plays": 999})
    if recorded_revenue is not None:
        store.set(
            DSP_REVENUE,
            "spotify-2026-03",
            {"period": {"startDate": "2026-03-01", "endDate": "2026-03-31"}, "dsp": "spotify", "amount": recorded_revenue},
        )


def _amounts(statement) -> dict[str, float]:
    return {item.rights_holder_id: item.net_amount for item in statement.distributions}


def test_pro_rata_splits_net_revenue_by_weighted_streams() -> None:
    store = InMemoryDocumentStore()
    _catalog(store)

    statement = RoyaltyEngine(store, clock=_clock).calculate("2026-03", generated_by="test")

    assert statement.total_revenue == 1000.0
    assert statement.platform_fees == pytest.approx(150.0)
    assert statement.net_revenue == pytest.approx(850.0)
    assert statement.revenue_source == "recorded"
    amounts = _amounts(statement)
    assert amounts["label-a"] == pytest.approx(510.0)
    assert amounts["pub-x"] == pytest.approx(127.5)
    assert amounts["label-b"] == pytest.approx(170.0)
    assert "label-c" not in amounts
    assert [item.rights_holder_id for item in statement.distributions] == ["label-a", "label-b", "pub-x"]
    assert sum(item.gross_amount for item in statement.distributions) <= statement.net_revenue

    stored = store.get(STATEMENTS, statement.statement_id)
    assert stored["status"] == "draft"
    assert stored["startDate"] == "2026-03-01" and stored["endDate"] == "2026-03-31"


def test_user_centric_gives_each_listener_equal_weight() -> None:
    store = InMemoryDocumentStore()
    _catalog(store)

    statement = RoyaltyEngine(store, clock=_clock).calculate("2026-03", method="user-centric")

    amounts = _amounts(statement)
    assert amounts["label-a"] == pytest.approx(340.0)
    assert amounts["label-b"] == pytest.approx(340.0)
    assert amounts["pub-x"] == pytest.approx(85.0)
    assert statement.method is RoyaltyMethod.USER_CENTRIC


def test_hybrid_blends_both_methods() -> None:
    store = InMemoryDocumentStore()
    _catalog(store)

    amounts = _amounts(RoyaltyEngine(store, clock=_clock).calculate("2026-03", method=RoyaltyMethod.HYBRID))

    assert amounts["label-a"] == pytest.approx(425.0)
    assert amounts["label-b"] == pytest.approx(255.0)
    assert amounts["pub-x"] == pytest.approx(106.25)


def test_territory_takes_its_share_of_recorded_revenue() -> None:
    store = InMemoryDocumentStore()
    _catalog(store)

    statement = RoyaltyEngine(store, clock=_clock).calculate("2026-03", territory="GB")

    # GB carries 100 of the period's 400 plays
    assert statement.territory == "GB"
    assert statement.total_revenue == pytest.approx(250.0)
    assert statement.net_revenue == pytest.approx(212.5)
    assert _amounts(statement) == {"label-a": pytest.approx(170.0), "pub-x": pytest.approx(42.5)}


def test_territory_estimate_counts_only_that_country_plays() -> None:
    store = InMemoryDocumentStore()
    _catalog(store, recorded_revenue=None)

    statement = RoyaltyEngine(store, clock=_clock).calculate("2026-03", territory="GB")

    # 100 of T1's 300 spotify plays at 0.003
    assert statement.revenue_source == "estimated"
    assert statement.total_revenue == pytest.approx(0.3)


def test_territory_user_centric_uses_per_country_listeners() -> None:
    store = InMemoryDocumentStore()
    _catalog(store)
    store.update(
        "analytics_daily",
        "2026-03-10_T1",
        {"countryListenerPlays": {"US": {"u1": 150, "u4": 50}, "GB": {"u3": 100}}},
    )

    statement = RoyaltyEngine(store, clock=_clock).calculate("2026-03", territory="US", method="user-centric")

    # u1 and u4 from T1's US plays, u2 scaled from T2; 637.5 net over three listeners
    assert statement.net_revenue == pytest.approx(637.5)
    amounts = _amounts(statement)
    assert amounts["label-a"] == pytest.approx(340.0)
    assert amounts["pub-x"] == pytest.approx(85.0)
    assert amounts["label-b"] == pytest.approx(212.5)


@pytest.mark.parametrize("method", ["pro-rata", "user-centric", "hybrid"])
@pytest.mark.parametrize("territory", [None, "US", "GB"])
@pytest.mark.parametrize("minimum_payment", [10.0, 150.0])
def test_payable_amounts_never_exceed_net_revenue(method, territory, minimum_payment) -> None:
    store = InMemoryDocumentStore()
    _catalog(store)
    policy = RoyaltyPolicy(policy_id="royalty-test", minimum_payment=minimum_payment)

    statement = RoyaltyEngine(store, policy=policy, clock=_clock).calculate(
        "2026-03", territory=territory, method=method
    )

    payable = sum(item.net_amount for item in statement.distributions if item.status is not DistributionStatus.HELD)
    assert statement.distributions
    assert payable <= statement.net_revenue + 1e-6
    assert payable + statement.total_held <= statement.net_revenue + 1e-6
    if minimum_payment > 10.0:
        assert any(item.status is DistributionStatus.HELD for item in statement.distributions)


@pytest.mark.parametrize("method", ["pro-rata", "user-centric", "hybrid"])
def test_territory_statements_together_stay_within_worldwide_net(method) -> None:
    store = InMemoryDocumentStore()
    _catalog(store)
    engine = RoyaltyEngine(store, clock=_clock)

    worldwide = engine.calculate("2026-03", method=method)
    territories = [engine.calculate("2026-03", territory=code, method=method) for code in ("US", "GB")]

    assert sum(item.net_revenue for item in territories) == pytest.approx(worldwide.net_revenue)
    assert sum(item.total_distributed for item in territories) <= worldwide.net_revenue + 1e-6


def test_estimated_revenue_and_minimum_payment_threshold() -> None:
    store = InMemoryDocumentStore()
    _catalog(store, recorded_revenue=None)

    statement = RoyaltyEngine(store, clock=_clock).calculate("2026-03")

    # 300 spotify plays at 0.003 plus 100 apple plays at 0.0075, less 15%
    assert statement.revenue_source == "estimated"
    assert statement.total_revenue == pytest.approx(1.65)
    assert all(item.status is DistributionStatus.HELD for item in statement.distributions)
    assert all(item.net_amount == 0.0 for item in statement.distributions)
    assert statement.total_distributed == 0.0
    assert statement.total_held == pytest.approx(sum(item.gross_amount for item in statement.distributions))
    assert statement.distributions[0].held_reason == "Below minimum threshold"


def test_over_allocated_shares_are_scaled_down() -> None:
    store = InMemoryDocumentStore()
    _catalog(store)
    store.update(
        "tracks",
        "T2",
        {"masterRights": [{"id": "label-b", "share": 100}, {"id": "label-d", "share": 100}]},
    )

    amounts = _amounts(RoyaltyEngine(store, clock=_clock).calculate("2026-03"))

    assert amounts["label-b"] == pytest.approx(85.0)
    assert amounts["label-d"] == pytest.approx(85.0)


def test_invalid_period_and_method_are_rejected() -> None:
    engine = RoyaltyEngine(InMemoryDocumentStore(), clock=_clock)

    with pytest.raises(InvalidPeriodError):
        engine.calculate("March")
    with pytest.raises(InvalidRequestError) as exc_info:
        engine.calculate("2026-03", method="fair-share")
    assert exc_info.value.code == "invalid_method"


def test_payments_scheduled_for_approved_statement_and_statement_locks() -> None:
    store = InMemoryDocumentStore()
    _catalog(store)
    statement = RoyaltyEngine(store, clock=_clock).calculate("2026-03")
    statements = StatementRepository(store)

    approved = statements.approve(statement.statement_id)
    assert approved.status is StatementStatus.APPROVED

    results = PaymentProcessor(store, clock=_clock).process_approved()

    assert {item["rightsHolderId"] for item in results} == {"label-a", "label-b", "pub-x"}
    assert all(item["status"] == "scheduled" for item in results)
    payment = store.get(PAYMENTS, results[0]["paymentId"])
    assert payment["currency"] == "USD"
    assert payment["scheduledDate"] == "2026-05-02T09:00:00+00:00"

    paid = statements.get(statement.statement_id)
    assert paid.status is StatementStatus.PAID
    assert paid.payment_status == "completed"
    assert all(item.payment_id for item in paid.distributions)

    with pytest.raises(StatementLockedError):
        statements.approve(statement.statement_id)
    with pytest.raises(StatementLockedError):
        statements.save(paid)
    assert PaymentProcessor(store, clock=_clock).process_approved() == []


def test_draft_statements_are_not_paid() -> None:
    store = InMemoryDocumentStore()
    _catalog(store)
    RoyaltyEngine(store, clock=_clock).calculate("2026-03")

    assert PaymentProcessor(store, clock=_clock).process_approved() == []
    assert store.query(PAYMENTS) == []
