from models import Business, DebtInstrument, EarnoutTerms, GameState
from waterfall import pay_instrument, run_collection_waterfall


def make_business(business_id="biz-1", ebitda=1000, **overrides):
    fields = dict(
        id=business_id, name="Test Co", sector_id="agency", sub_type="Digital Agency",
        revenue=ebitda * 5, ebitda=ebitda, ebitda_margin=0.20, quality=3,
        organic_growth_rate=0.05, margin_drift=0.0,
        acquisition_ebitda=ebitda, acquisition_multiple=4.0, peak_ebitda=ebitda,
    )
    fields.update(overrides)
    return Business(**fields)


def test_healthy_collection_adds_after_tax_fcf():
    state = GameState(seed=1, cash=1000, businesses=[make_business()])
    new_state, report = run_collection_waterfall(state)
    assert report.pre_tax_fcf == 970
    assert report.tax.tax == 300
    assert new_state.cash == 1670
    assert not report.insolvent
    assert not new_state.requires_restructuring
    assert state.cash == 1000


def test_interest_paid_before_principal_and_cash_never_negative():
    # leverage 10x is a covenant breach, so the loan carries the 2% penalty
    state = GameState(
        seed=1, cash=0, businesses=[make_business()],
        holdco_loan=DebtInstrument(balance=10_000, rate=0.07, rounds_remaining=2),
    )
    new_state, report = run_collection_waterfall(state)
    assert report.tax.tax == 30
    assert report.holdco_interest_paid == 900
    assert report.holdco_principal_paid == 40
    assert report.shortfalls == {"holdco_loan": 4960}
    assert new_state.cash == 0
    assert new_state.holdco_loan.balance == 9960
    assert new_state.total_interest_paid == 900
    assert report.insolvent
    assert new_state.requires_restructuring
    assert not new_state.game_over


def test_second_insolvency_is_bankruptcy():
    state = GameState(
        seed=1, cash=0, businesses=[make_business()], has_restructured=True,
        holdco_loan=DebtInstrument(balance=10_000, rate=0.07, rounds_remaining=2),
    )
    new_state, _ = run_collection_waterfall(state)
    assert new_state.bankrupt
    assert new_state.game_over


def test_opco_debt_paid_in_portfolio_order():
    first = make_business("biz-1", seller_note=DebtInstrument(balance=4000, rate=0.05, rounds_remaining=4))
    second = make_business("biz-2", ebitda=0, seller_note=DebtInstrument(balance=4000, rate=0.05, rounds_remaining=4))
    state = GameState(seed=1, cash=500, businesses=[first, second])
    new_state, report = run_collection_waterfall(state)
    assert new_state.businesses[0].seller_note.balance == 3000
    assert "biz-1:seller_note" not in report.shortfalls
    assert report.shortfalls.get("biz-2:seller_note", 0) > 0
    assert new_state.cash == 0


def test_earnout_paid_when_target_met():
    business = make_business(
        ebitda=1200, acquisition_ebitda=1000,
        earnout=EarnoutTerms(remaining=500, target_growth=0.10, rounds_remaining=4, baseline_ebitda=1000),
    )
    state = GameState(seed=1, cash=1000, businesses=[business])
    new_state, report = run_collection_waterfall(state)
    assert report.earnouts_paid == 500
    assert new_state.businesses[0].earnout.remaining == 0
    assert new_state.cash == 1000 + 1164 - 360 - 500


def test_expired_earnout_is_forfeited():
    business = make_business(
        earnout=EarnoutTerms(remaining=500, target_growth=0.10, rounds_remaining=1, baseline_ebitda=1000),
    )
    state = GameState(seed=1, cash=1000, businesses=[business])
    new_state, report = run_collection_waterfall(state)
    assert report.earnouts_paid == 0
    assert report.earnouts_forfeited == 500
    assert not new_state.businesses[0].earnout.active
    assert not report.insolvent


def test_pay_instrument_caps_at_cash():
    loan = DebtInstrument(balance=1000, rate=0.10, rounds_remaining=4)
    cash, interest, principal, shortfall = pay_instrument(loan, 120)
    assert (cash, interest, principal, shortfall) == (0, 100, 20, 230)
    assert loan.balance == 980
    assert loan.rounds_remaining == 3
