"""Tests for lending, repayment and the loan ledger."""
import pytest

from conftest import make_model, place_ant
from credit import CreditRule
from decisions import CallbackDecisionProvider
from errors import InvariantError
from reproduction import ReproductionRule
from rules import Sex


def credit_model(*extra_rules):
    credit = CreditRule(interest_rate=0.1, duration=10)
    return credit, make_model([credit, *extra_rules])


def lender_and_borrower(model):
    # too old to have children: may lend half of its wealth
    lender = place_ant(model, (2, 2), sugar=20, age=60, sex=Sex.MALE)
    # fertile by age, below its endowment, with positive income
    borrower = place_ant(model, (2, 3), sugar=6, age=20, sex=Sex.FEMALE, init_endowment=10, metabolism=1)
    return lender, borrower


class TestEligibility:
    def test_old_agents_lend_half_their_wealth(self):
        credit, model = credit_model()
        lender, _ = lender_and_borrower(model)
        assert credit.amount_available(lender) == 10

    def test_fertile_agents_lend_their_excess_income(self):
        credit, model = credit_model()
        ant = place_ant(model, (0, 0), sugar=30, age=20, init_endowment=10, metabolism=1)
        assert credit.amount_available(ant) == 19

    def test_child_amount_overrides_reserve(self):
        credit = CreditRule(child_amount=25)
        model = make_model([credit])
        ant = place_ant(model, (0, 0), sugar=30, age=20, init_endowment=10, metabolism=1)
        assert credit.amount_available(ant) == 4

    def test_amount_required(self):
        credit, model = credit_model()
        _, borrower = lender_and_borrower(model)
        assert credit.amount_required(borrower) == 4

    def test_children_do_not_borrow(self):
        credit, model = credit_model()
        ant = place_ant(model, (0, 0), sugar=6, age=5, init_endowment=10)
        assert credit.amount_required(ant) == 0


class TestLending:
    def test_neighbours_originate_a_loan(self):
        credit, model = credit_model()
        lender, borrower = lender_and_borrower(model)
        credit.apply_to_agent(borrower)
        assert lender.sugar == 16
        assert borrower.sugar == 10
        assert len(model.ledger) == 1
        loan, = model.ledger
        assert (loan.lender_id, loan.borrower_id, loan.amount) == (lender.unique_id, borrower.unique_id, 4)
        assert loan.due == model.steps + 10
        assert borrower.loans_owed == {lender.unique_id: [loan.loan_id]}
        assert lender.loans_given == {borrower.unique_id: [loan.loan_id]}
        assert model.loans_originated == 1
        model.ledger.check()

    def test_lender_offers_to_neighbours(self):
        credit, model = credit_model()
        lender, borrower = lender_and_borrower(model)
        credit.apply_to_agent(lender)
        assert borrower.sugar == 10
        assert model.ledger.total_owed(borrower) == 4

    def test_unaffordable_loan_is_refused(self):
        _, model = credit_model()
        lender, borrower = lender_and_borrower(model)
        assert model.ledger.originate(lender, borrower, 50, due=10, rate=0.1) is None
        assert model.ledger.originate(lender, borrower, 0, due=10, rate=0.1) is None
        assert len(model.ledger) == 0

    def test_provider_chooses_counterparts(self):
        credit, model = credit_model()
        lender, borrower = lender_and_borrower(model)
        provider = CallbackDecisionProvider(
            credit=lambda ctx: {"act": True, "counterparts": [c["id"] for c in ctx["eligible_lenders"]]})
        model.decision_provider = provider
        credit.apply_to_agent(borrower)
        assert len(model.ledger) == 1
        rule, context = provider.calls[0]
        assert context["amount_required"] == 4
        assert context["role"] == "borrower"

    def test_provider_declines(self):
        credit, model = credit_model()
        _, borrower = lender_and_borrower(model)
        model.decision_provider = CallbackDecisionProvider(credit=lambda ctx: {"act": False})
        credit.apply_to_agent(borrower)
        assert len(model.ledger) == 0


class TestRepayment:
    def test_full_repayment_nets_interest(self):
        credit, model = credit_model()
        lender, borrower = lender_and_borrower(model)
        model.ledger.originate(lender, borrower, 4, due=model.steps, rate=0.1)
        credit.repay(borrower)
        assert len(model.ledger) == 0
        assert lender.sugar == pytest.approx(20 + 4 * 0.1)
        assert borrower.sugar == pytest.approx(10 - 4.4)
        assert borrower.loans_owed == {}
        assert lender.loans_given == {}

    def test_partial_repayment_rolls_over(self):
        credit, model = credit_model()
        lender, borrower = lender_and_borrower(model)
        model.ledger.originate(lender, borrower, 4, due=model.steps, rate=0.1)
        borrower.sugar = 2
        credit.repay(borrower)
        loan, = model.ledger
        assert loan.amount == pytest.approx(3.4)
        assert loan.due == model.steps + 10
        assert borrower.sugar == 1
        assert lender.sugar == 17
        model.ledger.check()

    def test_loans_not_yet_due_are_kept(self):
        credit, model = credit_model()
        lender, borrower = lender_and_borrower(model)
        model.ledger.originate(lender, borrower, 4, due=model.steps + 5, rate=0.1)
        credit.repay(borrower)
        assert len(model.ledger) == 1


class TestDeath:
    def test_borrower_death_writes_off_the_loan(self):
        credit, model = credit_model()
        lender, borrower = lender_and_borrower(model)
        credit.apply_to_agent(borrower)
        borrower.die("starvation")
        assert len(model.ledger) == 0
        assert lender.loans_given == {}

    def test_lender_death_without_heirs_forgives(self):
        credit, model = credit_model()
        lender, borrower = lender_and_borrower(model)
        credit.apply_to_agent(borrower)
        lender.die("age")
        assert len(model.ledger) == 0
        assert borrower.loans_owed == {}

    def test_lender_death_passes_loans_to_children(self):
        credit, model = credit_model(ReproductionRule())
        lender, borrower = lender_and_borrower(model)
        child = place_ant(model, (0, 0))
        lender.children.append(child.unique_id)
        credit.apply_to_agent(borrower)
        lender.die("age")
        loan, = model.ledger
        assert loan.lender_id == child.unique_id
        assert loan.amount == 4
        assert borrower.loans_owed == {child.unique_id: [loan.loan_id]}
        model.ledger.check()

    def test_check_detects_one_sided_loans(self):
        credit, model = credit_model()
        lender, borrower = lender_and_borrower(model)
        credit.apply_to_agent(borrower)
        borrower.loans_owed.clear()
        with pytest.raises(InvariantError):
            model.ledger.check()
