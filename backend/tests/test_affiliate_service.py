from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

import pytest

from exceptions import NotFoundError, PayoutBatchError
from models.referral import Referral
from services.affiliate_service import (
    AffiliateService,
    batch_totals,
    compute_commission_amount_cents,
    compute_payable_at,
    derive_referral_status,
    summarize_referrals,
)

NOW = datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc)


def _referral(db, referrer, amount, status="PAYABLE", currency="usd", referred=None, payable_days_ago=1):
    r = Referral(
        referrer_id=referrer.id,
        referred_user_id=referred.id if referred else None,
        referred_name=referred.name if referred else "Someone",
        referred_email=referred.email if referred else "someone@example.com",
        status=status,
        signed_up_at=NOW - timedelta(days=60),
        qualified_at=NOW - timedelta(days=30 + payable_days_ago),
        payable_at=NOW - timedelta(days=payable_days_ago),
        commission_amount_cents=amount,
        currency=currency,
    )
    db.add(r)
    db.commit()
    db.refresh(r)
    return r


# ------------------------------------------------------------------
# Pure helpers
# ------------------------------------------------------------------
def test_payable_at_adds_hold_days():
    assert compute_payable_at(NOW, 30) == NOW + timedelta(days=30)
    assert compute_payable_at(None, 30) is None


def test_commission_amounts():
    assert compute_commission_amount_cents(10_000, "PERCENT", 0.3) == 3000
    assert compute_commission_amount_cents(10_000, "PERCENT", 30) == 3000
    assert compute_commission_amount_cents(999, "PERCENT", 0.1) == 99
    assert compute_commission_amount_cents(10_000, "FIXED", 1500) == 1500
    assert compute_commission_amount_cents(0, "PERCENT", 0.3) == 0


def test_derive_status_precedence():
    base = dict(status="SIGNED_UP", paid_at=None, payable_at=None, qualified_at=None,
                trial_started_at=None, signed_up_at=NOW)
    assert derive_referral_status(SimpleNamespace(**base), now=NOW) == "SIGNED_UP"
    assert derive_referral_status(SimpleNamespace(**base), "trial", NOW) == "TRIAL"
    assert derive_referral_status(SimpleNamespace(**{**base, "qualified_at": NOW}), now=NOW) == "QUALIFIED"
    payable = {**base, "qualified_at": NOW, "payable_at": NOW - timedelta(seconds=1)}
    assert derive_referral_status(SimpleNamespace(**payable), now=NOW) == "PAYABLE"
    not_due = {**base, "qualified_at": NOW, "payable_at": NOW + timedelta(days=1)}
    assert derive_referral_status(SimpleNamespace(**not_due), now=NOW) == "QUALIFIED"
    assert derive_referral_status(SimpleNamespace(**{**payable, "paid_at": NOW}), now=NOW) == "PAID"
    assert derive_referral_status(SimpleNamespace(**{**payable, "status": "VOID"}), now=NOW) == "VOID"


def test_summarize_referrals_counts():
    rows = [
        SimpleNamespace(referred_user_id=1, status="SIGNED_UP", commission_amount_cents=None),
        SimpleNamespace(referred_user_id=2, status="QUALIFIED", commission_amount_cents=500),
        SimpleNamespace(referred_user_id=3, status="PAYABLE", commission_amount_cents=700),
        SimpleNamespace(referred_user_id=4, status="PAID", commission_amount_cents=900),
        SimpleNamespace(referred_user_id=None, status="PENDING", commission_amount_cents=None),
    ]
    assert summarize_referrals(rows) == {
        "total_signups": 4,
        "qualified": 3,
        "payable": 1,
        "paid_total_cents": 900,
    }


def test_batch_totals_rejects_empty_and_mixed_currency():
    with pytest.raises(PayoutBatchError):
        batch_totals([])
    rows = [
        SimpleNamespace(currency="usd", commission_amount_cents=100, payable_at=NOW),
        SimpleNamespace(currency="eur", commission_amount_cents=100, payable_at=NOW),
    ]
    with pytest.raises(PayoutBatchError):
        batch_totals(rows)


def test_batch_totals_due_at_is_latest_payable():
    rows = [
        SimpleNamespace(currency="usd", commission_amount_cents=100, payable_at=NOW - timedelta(days=3)),
        SimpleNamespace(currency="usd", commission_amount_cents=250, payable_at=NOW - timedelta(days=1)),
    ]
    totals = batch_totals(rows)
    assert totals["total_amount_cents"] == 350
    assert totals["due_at"] == NOW - timedelta(days=1)


# ------------------------------------------------------------------
# Persistence
# ------------------------------------------------------------------
def test_create_batch_totals_and_links(db, make_user):
    referrer = make_user()
    rows = [_referral(db, referrer, amount) for amount in (1000, 2000, 1500)]

    batch = AffiliateService.create_payout_batch(db, referrer.id, now=NOW)

    assert batch.status == "READY"
    assert batch.total_amount_cents == 4500
    assert batch.currency == "usd"
    for r in rows:
        db.refresh(r)
        assert r.payout_batch_id == batch.id


def test_create_batch_skips_already_batched(db, make_user):
    referrer = make_user()
    _referral(db, referrer, 1000)
    AffiliateService.create_payout_batch(db, referrer.id, now=NOW)

    with pytest.raises(PayoutBatchError):
        AffiliateService.create_payout_batch(db, referrer.id, now=NOW)


def test_create_batch_mixed_currency_fails(db, make_user):
    referrer = make_user()
    _referral(db, referrer, 1000, currency="usd")
    _referral(db, referrer, 1000, currency="eur")

    with pytest.raises(PayoutBatchError):
        AffiliateService.create_payout_batch(db, referrer.id, now=NOW)


def test_create_batch_subset(db, make_user):
    referrer = make_user()
    a = _referral(db, referrer, 1000)
    _referral(db, referrer, 2000)

    batch = AffiliateService.create_payout_batch(db, referrer.id, [a.id], now=NOW)
    assert batch.total_amount_cents == 1000


def test_mark_paid_is_terminal(db, make_user):
    referrer = make_user()
    admin = make_user(is_admin=True)
    r = _referral(db, referrer, 1000)
    batch = AffiliateService.create_payout_batch(db, referrer.id, now=NOW)

    paid = AffiliateService.mark_batch_paid(db, batch.id, admin.id, now=NOW)
    assert paid.status == "PAID"
    assert paid.paid_by_user_id == admin.id
    db.refresh(r)
    assert r.status == "PAID"
    assert r.paid_at is not None

    with pytest.raises(PayoutBatchError):
        AffiliateService.mark_batch_paid(db, batch.id, admin.id, now=NOW)


def test_mark_paid_unknown_batch(db):
    with pytest.raises(NotFoundError):
        AffiliateService.mark_batch_paid(db, 999, None, now=NOW)


def test_promote_payable_job(db, make_user):
    referrer = make_user()
    due = _referral(db, referrer, 1000, status="QUALIFIED", payable_days_ago=1)
    not_due = _referral(db, referrer, 1000, status="QUALIFIED", payable_days_ago=-5)

    result = AffiliateService.promote_payable(db, now=NOW)

    assert result == {"processed": 2, "updated": 1}
    db.refresh(due)
    db.refresh(not_due)
    assert due.status == "PAYABLE"
    assert not_due.status == "QUALIFIED"


def test_qualify_referral_sets_commission_and_hold(db, make_user):
    referrer = make_user()
    referred = make_user()
    db.add(Referral(referrer_id=referrer.id, referred_user_id=referred.id, status="SIGNED_UP", signed_up_at=NOW))
    db.commit()

    r = AffiliateService.qualify_referral(db, referred.id, NOW, 10_000, "usd", now=NOW)

    assert r.status == "QUALIFIED"
    assert r.commission_amount_cents == 3000
    assert r.hold_days == 30
    assert r.payable_at.replace(tzinfo=timezone.utc) == NOW + timedelta(days=30)


def test_list_affiliates_sorted_by_signups(db, make_user):
    quiet = make_user()
    busy = make_user()
    _referral(db, quiet, 100, referred=make_user())
    for _ in range(2):
        _referral(db, busy, 100, referred=make_user())

    rows = AffiliateService.list_affiliates(db)
    assert [row["referrer"]["id"] for row in rows] == [busy.id, quiet.id]
    assert rows[0]["stats"]["total_signups"] == 2


def test_export_csv(db, make_user):
    referrer = make_user(name="Ada Affiliate", email="ada@example.com")
    referred = make_user(name="Bob Buyer", email="bob@example.com")
    _referral(db, referrer, 1234, referred=referred)
    batch = AffiliateService.create_payout_batch(db, referrer.id, now=NOW)

    content = AffiliateService.export_batch_csv(db, batch.id)
    lines = content.strip().split("\n")

    assert lines[0].startswith("Affiliate Name,Affiliate Email,Referral Id")
    assert len(lines) == 2
    assert lines[1].startswith("Ada Affiliate,ada@example.com,")
    assert "Bob Buyer" in lines[1]
    assert lines[1].endswith(",12.34,usd")


def test_export_csv_unknown_batch(db):
    with pytest.raises(NotFoundError):
        AffiliateService.export_batch_csv(db, 42)


def test_qualify_after_hold_elapsed_is_payable(db, make_user):
    referrer = make_user()
    referred = make_user()
    db.add(Referral(referrer_id=referrer.id, referred_user_id=referred.id, status="SIGNED_UP", signed_up_at=NOW))
    db.commit()

    r = AffiliateService.qualify_referral(db, referred.id, NOW - timedelta(days=45), 10_000, now=NOW)
    assert r.status == "PAYABLE"


def test_qualify_ignores_void_referral(db, make_user):
    referrer = make_user()
    referred = make_user()
    db.add(Referral(referrer_id=referrer.id, referred_user_id=referred.id, status="VOID"))
    db.commit()

    assert AffiliateService.qualify_referral(db, referred.id, NOW, 10_000, now=NOW) is None


def test_void_refund_inside_hold(db, make_user):
    referrer = make_user()
    referred = make_user()
    r = _referral(db, referrer, 1000, status="QUALIFIED", referred=referred, payable_days_ago=-10)

    voided = AffiliateService.void_referral_if_in_hold(db, referred.id, NOW, "refund")

    assert voided.id == r.id
    assert voided.status == "VOID"
    assert voided.void_reason == "refund"
    # a voided referral is never promoted
    AffiliateService.promote_payable(db, now=NOW + timedelta(days=30))
    db.refresh(r)
    assert r.status == "VOID"


def test_void_before_qualification(db, make_user):
    referrer = make_user()
    referred = make_user()
    db.add(Referral(referrer_id=referrer.id, referred_user_id=referred.id, status="TRIAL", signed_up_at=NOW))
    db.commit()

    assert AffiliateService.void_referral_if_in_hold(db, referred.id, NOW, "chargeback").status == "VOID"


def test_void_after_hold_or_paid_is_ignored(db, make_user):
    referrer = make_user()
    after_hold = make_user()
    paid = make_user()
    r1 = _referral(db, referrer, 1000, status="PAYABLE", referred=after_hold, payable_days_ago=1)
    r2 = _referral(db, referrer, 1000, status="PAID", referred=paid, payable_days_ago=-10)

    assert AffiliateService.void_referral_if_in_hold(db, after_hold.id, NOW, "refund") is None
    assert AffiliateService.void_referral_if_in_hold(db, paid.id, NOW, "refund") is None
    assert AffiliateService.void_referral_if_in_hold(db, 9999, NOW, "refund") is None
    db.refresh(r1)
    db.refresh(r2)
    assert (r1.status, r2.status) == ("PAYABLE", "PAID")


def test_list_referrer_referrals(db, make_user):
    referrer = make_user(name="Ada Affiliate")
    referred = make_user(name="Bob Buyer", email="bob@example.com")
    _referral(db, referrer, 1000, referred=referred)
    _referral(db, make_user(), 500)

    result = AffiliateService.list_referrer_referrals(db, referrer.id)

    assert result["referrer"]["name"] == "Ada Affiliate"
    assert len(result["referrals"]) == 1
    assert result["referrals"][0]["referred_email"] == "bob@example.com"
    assert result["referrals"][0]["commission_amount_cents"] == 1000


def test_list_referrer_referrals_unknown(db):
    with pytest.raises(NotFoundError):
        AffiliateService.list_referrer_referrals(db, 404)
