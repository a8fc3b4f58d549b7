"""Minimum-bid arithmetic and client-side bid checks."""

from decimal import Decimal

import pytest

from pujar import pricing
from pujar.core import AuctionStatus
from pujar.pricing import BidProblem, DialogMode

from conftest import RIVAL_ID, VIEWER_ID, make_lot, make_subscription

CENT = Decimal("0.01")
STEP = Decimal("10000")


def codes(problems):
    return [p.code for p in problems]


class TestQuote:
    def test_no_bids_minimum_is_base_price(self):
        q = pricing.quote(make_lot(precio_base="100000.00"), VIEWER_ID, STEP)
        assert q.has_existing_bids is False
        assert q.current_top_amount == 0
        assert q.minimum_next_bid == Decimal("100000")
        assert q.is_leader is False

    @pytest.mark.parametrize("increment", [CENT, STEP])
    def test_existing_bid_adds_increment(self, increment):
        lot = make_lot(ultima_puja={"monto": "250000", "id_usuario": RIVAL_ID})
        q = pricing.quote(lot, VIEWER_ID, increment)
        assert q.has_existing_bids is True
        assert q.minimum_next_bid == Decimal("250000") + increment

    def test_winning_amount_used_when_no_last_bid(self):
        lot = make_lot(monto_ganador_lote="180000.50", id_ganador=RIVAL_ID)
        q = pricing.quote(lot, VIEWER_ID, CENT)
        assert q.current_top_amount == Decimal("180000.50")
        assert q.minimum_next_bid == Decimal("180000.51")

    def test_last_bid_wins_over_winning_amount(self):
        lot = make_lot(ultima_puja={"monto": 300000}, monto_ganador_lote="250000")
        assert pricing.current_top_amount(lot) == Decimal("300000")

    def test_leader_detection(self):
        lot = make_lot(ultima_puja={"monto": "250000"}, id_ganador=VIEWER_ID)
        assert pricing.quote(lot, VIEWER_ID, CENT).is_leader is True
        assert pricing.quote(lot, RIVAL_ID, CENT).is_leader is False

    def test_winner_without_bids_is_not_leader(self):
        lot = make_lot(id_ganador=VIEWER_ID)
        assert pricing.quote(lot, VIEWER_ID, CENT).is_leader is False

    @pytest.mark.parametrize("base", [None, "0", "0.00"])
    def test_missing_or_zero_base_price_is_invalid(self, base):
        q = pricing.quote(make_lot(precio_base=base), VIEWER_ID, CENT)
        assert q.lot_is_valid is False
        problems = pricing.check_bid(
            q, Decimal("5"), AuctionStatus.ACTIVE, make_subscription()
        )
        assert BidProblem.INVALID_LOT in codes(problems)


class TestParseAmount:
    @pytest.mark.parametrize(
        "raw", [None, "", "   ", "abc", "12,5", "NaN", "Infinity", "1e400", "-1e400"]
    )
    def test_unusable_input(self, raw):
        assert pricing.parse_amount(raw) is None

    @pytest.mark.parametrize(
        "raw,expected",
        [("260000", Decimal("260000")), (" 1.50 ", Decimal("1.50")), (42, Decimal(42))],
    )
    def test_numbers(self, raw, expected):
        assert pricing.parse_amount(raw) == expected

    def test_bump_adds_step_and_treats_blank_as_zero(self):
        assert pricing.bump("250000", STEP) == Decimal("260000")
        assert pricing.bump("", Decimal("100000")) == Decimal("100000")


class TestCheckBid:
    def test_scenario_a_base_price_is_inclusive(self):
        q = pricing.quote(make_lot(precio_base="100000"), VIEWER_ID, STEP)
        sub = make_subscription(tokens=1)
        assert q.minimum_next_bid == Decimal("100000")
        assert pricing.check_bid(q, Decimal("100000"), AuctionStatus.ACTIVE, sub) == []
        problems = pricing.check_bid(q, Decimal("99999"), AuctionStatus.ACTIVE, sub)
        assert codes(problems) == [BidProblem.BELOW_MINIMUM]

    def test_scenario_b_message_names_minimum(self):
        lot = make_lot(ultima_puja={"monto": "250000", "id_usuario": RIVAL_ID}, id_ganador=RIVAL_ID)
        q = pricing.quote(lot, VIEWER_ID, STEP)
        assert q.minimum_next_bid == Decimal("260000")
        problems = pricing.check_bid(
            q, Decimal("255000"), AuctionStatus.ACTIVE, make_subscription()
        )
        assert codes(problems) == [BidProblem.BELOW_MINIMUM]
        assert "260000" in problems[0].message

    def test_scenario_c_leader_needs_no_token(self):
        lot = make_lot(ultima_puja={"monto": "250000", "id_usuario": VIEWER_ID}, id_ganador=VIEWER_ID)
        q = pricing.quote(lot, VIEWER_ID, CENT)
        assert q.is_leader is True
        problems = pricing.check_bid(
            q, Decimal("251000"), AuctionStatus.ACTIVE, make_subscription(tokens=0)
        )
        assert problems == []

    def test_scenario_d_closed_lot_refuses_everything(self):
        lot = make_lot(estado_subasta="finalizada", id_ganador=VIEWER_ID,
                       ultima_puja={"monto": "250000"})
        q = pricing.quote(lot, VIEWER_ID, CENT)
        problems = pricing.check_bid(
            q, Decimal("999999"), lot.estado_subasta, make_subscription(tokens=5)
        )
        assert BidProblem.LOT_NOT_ACTIVE in codes(problems)

    def test_pending_lot_refused(self):
        q = pricing.quote(make_lot(estado_subasta="pendiente"), VIEWER_ID, CENT)
        problems = pricing.check_bid(
            q, Decimal("100000"), AuctionStatus.PENDING, make_subscription()
        )
        assert codes(problems) == [BidProblem.LOT_NOT_ACTIVE]

    @pytest.mark.parametrize("amount", [Decimal("100000"), Decimal("5000000")])
    def test_non_leader_without_tokens_is_blocked_at_any_amount(self, amount):
        q = pricing.quote(make_lot(), VIEWER_ID, CENT)
        problems = pricing.check_bid(q, amount, AuctionStatus.ACTIVE, make_subscription(tokens=0))
        assert codes(problems) == [BidProblem.NO_TOKENS]

    def test_non_subscriber_is_blocked(self):
        q = pricing.quote(make_lot(), VIEWER_ID, CENT)
        problems = pricing.check_bid(q, Decimal("100000"), AuctionStatus.ACTIVE, None)
        assert codes(problems) == [BidProblem.NOT_SUBSCRIBED]

    def test_inactive_subscription_counts_as_none(self):
        q = pricing.quote(make_lot(), VIEWER_ID, CENT)
        sub = make_subscription(tokens=3, activo=False)
        problems = pricing.check_bid(q, Decimal("100000"), AuctionStatus.ACTIVE, sub)
        assert codes(problems) == [BidProblem.NOT_SUBSCRIBED]

    def test_invalid_and_negative_amounts(self):
        q = pricing.quote(make_lot(), VIEWER_ID, CENT)
        sub = make_subscription()
        assert codes(pricing.check_bid(q, None, AuctionStatus.ACTIVE, sub)) == [
            BidProblem.INVALID_AMOUNT
        ]
        assert codes(pricing.check_bid(q, Decimal("-1"), AuctionStatus.ACTIVE, sub)) == [
            BidProblem.NOT_POSITIVE
        ]


class TestPositionAndMode:
    def test_viewer_position_picks_highest_own_bid(self):
        lot = make_lot(
            id_ganador=RIVAL_ID,
            pujas=[
                {"id": 1, "id_usuario": VIEWER_ID, "monto_puja": "150000", "estado_puja": "cubierto_por_puja"},
                {"id": 2, "id_usuario": VIEWER_ID, "monto_puja": "170000", "estado_puja": "activa"},
                {"id": 3, "id_usuario": RIVAL_ID, "monto_puja": "200000"},
            ],
        )
        pos = pricing.viewer_position(lot, VIEWER_ID)
        assert pos.bid_id == 2
        assert pos.amount == Decimal("170000")
        assert pos.is_leading is False

    def test_no_position_without_own_bids(self):
        assert pricing.viewer_position(make_lot(), VIEWER_ID) is None
        assert pricing.viewer_position(make_lot(), None) is None

    def test_dialog_modes_and_token_notice(self):
        leader = pricing.quote(
            make_lot(ultima_puja={"monto": "1"}, id_ganador=VIEWER_ID), VIEWER_ID, CENT
        )
        other = pricing.quote(make_lot(), VIEWER_ID, CENT)
        assert pricing.dialog_mode(leader, participating=True) is DialogMode.DEFEND
        assert pricing.dialog_mode(other, participating=True) is DialogMode.OUTBID
        assert pricing.dialog_mode(other, participating=False) is DialogMode.FIRST
        assert "no token" in pricing.token_notice(DialogMode.DEFEND)
        assert "1 token" in pricing.token_notice(DialogMode.OUTBID)
