"""
Credit rule L_{dr}: lending and borrowing between neighbours.

Loans live in a single ledger owned by the model. Agents only keep the ids of their loans, keyed by counterparty,
so both sides of a loan always refer to the same record.
"""
from __future__ import annotations

import itertools
import logging
from dataclasses import dataclass
from typing import Any, Iterator, TYPE_CHECKING

from decisions import CreditDecision
from errors import ConfigurationError, InvariantError
from rules import AgentRule, Phase

if TYPE_CHECKING:
    from core import SugarScape, Ant

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Loan:
    loan_id: int
    lender_id: int
    borrower_id: int
    amount: float
    due: int
    rate: float

    @property
    def amount_due(self) -> float:
        return self.amount * (1 + self.rate)


class LoanLedger:
    def __init__(self, model: SugarScape):
        self.model = model
        self.loans: dict[int, Loan] = {}
        self._ids = itertools.count()

    def __len__(self):
        return len(self.loans)

    def __iter__(self) -> Iterator[Loan]:
        return iter(list(self.loans.values()))

    def __contains__(self, loan: Loan):
        return loan.loan_id in self.loans

    def originate(self, lender: Ant, borrower: Ant, amount: float, due: int, rate: float) -> Loan | None:
        """Transfer `amount` from lender to borrower and record the loan. Nothing happens for unaffordable amounts."""
        if amount <= 0 or amount > lender.sugar:
            return None
        lender.sugar -= amount
        borrower.sugar += amount
        self.model.loans_originated += 1
        return self.book(lender, borrower, amount, due, rate)

    def book(self, lender: Ant, borrower: Ant, amount: float, due: int, rate: float) -> Loan:
        loan = Loan(next(self._ids), lender.unique_id, borrower.unique_id, amount, due, rate)
        self.loans[loan.loan_id] = loan
        lender.loans_given.setdefault(borrower.unique_id, []).append(loan.loan_id)
        borrower.loans_owed.setdefault(lender.unique_id, []).append(loan.loan_id)
        return loan

    @staticmethod
    def _drop_id(index: dict[int, list[int]], counterparty: int, loan_id: int):
        ids = index.get(counterparty)
        if ids is None or loan_id not in ids:
            return
        ids.remove(loan_id)
        if not ids:
            del index[counterparty]

    def settle(self, loan: Loan):
        """Remove `loan` from the ledger and from both parties, whether it was repaid or forgiven."""
        self.loans.pop(loan.loan_id, None)
        lender = self.model.get_ant(loan.lender_id)
        borrower = self.model.get_ant(loan.borrower_id)
        if lender is not None:
            self._drop_id(lender.loans_given, loan.borrower_id, loan.loan_id)
        if borrower is not None:
            self._drop_id(borrower.loans_owed, loan.lender_id, loan.loan_id)

    def rollover(self, loan: Loan, amount: float, due: int, rate: float) -> Loan:
        self.settle(loan)
        lender = self.model.get_ant(loan.lender_id)
        borrower = self.model.get_ant(loan.borrower_id)
        return self.book(lender, borrower, amount, due, rate)

    def given_by(self, ant: Ant) -> list[Loan]:
        return [self.loans[i] for ids in ant.loans_given.values() for i in ids if i in self.loans]

    def owed_by(self, ant: Ant) -> list[Loan]:
        return [self.loans[i] for ids in ant.loans_owed.values() for i in ids if i in self.loans]

    def total_owed(self, ant: Ant) -> float:
        return sum(loan.amount for loan in self.owed_by(ant))

    def due_loans(self, ant: Ant, step: int) -> list[Loan]:
        return sorted((loan for loan in self.owed_by(ant) if loan.due <= step), key=lambda loan: loan.loan_id)

    def release(self, ant: Ant, heirs: list[Ant]):
        """
        Clear every loan of a dead agent. Loans it gave are copied to each heir (a fresh loan with the same
        principal, rate and due date) or forgiven when there are none; loans it owed are written off.
        """
        for loan in self.given_by(ant):
            self.settle(loan)
            borrower = self.model.get_ant(loan.borrower_id)
            if borrower is None:
                continue
            for heir in heirs:
                if heir is not borrower:
                    self.book(heir, borrower, loan.amount, loan.due, loan.rate)
        for loan in self.owed_by(ant):
            self.settle(loan)
        ant.loans_given.clear()
        ant.loans_owed.clear()

    def check(self):
        """Raise InvariantError unless every loan is recorded on both sides and every recorded id is a loan."""
        for loan in self.loans.values():
            lender = self.model.get_ant(loan.lender_id)
            borrower = self.model.get_ant(loan.borrower_id)
            if lender is None or borrower is None:
                raise InvariantError(f"Loan {loan.loan_id} refers to a dead agent")
            if loan.loan_id not in lender.loans_given.get(loan.borrower_id, []):
                raise InvariantError(f"Loan {loan.loan_id} missing from lender {lender.unique_id}")
            if loan.loan_id not in borrower.loans_owed.get(loan.lender_id, []):
                raise InvariantError(f"Loan {loan.loan_id} missing from borrower {borrower.unique_id}")
        for ant in self.model.agents:
            for ids in list(ant.loans_given.values()) + list(ant.loans_owed.values()):
                for loan_id in ids:
                    if loan_id not in self.loans:
                        raise InvariantError(f"Agent {ant.unique_id} holds unknown loan {loan_id}")


class CreditRule(AgentRule):
    """
    Agent credit rule L_{dr}:
    - An agent is a potential lender if it is too old to have children, in which case the maximum amount it may lend
    is one-half of its current wealth;
    - An agent is a potential lender if it is of childbearing age and has wealth in excess of the amount necessary to
    have children, in which case the maximum amount it may lend is the excess wealth;
    - An agent is a potential borrower if it is of childbearing age and has insufficient wealth to have a child and
    has income (resources gathered, minus metabolism, minus other loan obligations) in the present period making it
    credit-worthy for a loan written at terms specified by the lender;
    - If a potential borrower and a potential lender are neighbors then a loan is originated with a duration of d
    years at the rate of r percent, and the face value of the loan amount is transferred from the lender to the
    borrower;
    - At the time of the loan due date, if the borrower has the money then the loan is paid off. Otherwise, the
    borrower pays back one-half of its wealth and a new loan is originated for the remaining sum;
    - If the borrower on an active loan dies before the due date then the lender simply takes a loss;
    - If the lender on an active loan dies before the due date then the borrower is not required to pay back the
    loan, unless inheritance rule I is active, in which case the lender's children now become the borrower's
    creditors.
    (p. 131-132)
    """
    phase = Phase.CREDIT

    def __init__(self, interest_rate: float = 0.1, duration: int = 10, child_amount: float | None = None):
        super().__init__()
        if interest_rate < 0 or duration < 1:
            raise ConfigurationError("interest_rate must be >= 0 and duration >= 1")
        self.interest_rate = interest_rate
        self.duration = duration
        self.child_amount = child_amount

    def income(self, ant: Ant) -> float:
        return max(ant.sugar - ant.metabolism - self.model.ledger.total_owed(ant), 0.0)

    def amount_available(self, ant: Ant) -> float:
        _, last_fertile = ant.fertility_window
        if ant.age > last_fertile:
            return max(ant.sugar / 2, 0.0)
        if not ant.is_fertile():
            return 0.0
        reserve = ant.init_endowment if self.child_amount is None else self.child_amount
        return max(self.income(ant) - reserve, 0.0)

    def amount_required(self, ant: Ant) -> float:
        if ant.is_fertile_by_age() and ant.sugar < ant.init_endowment and self.income(ant) > 0:
            return max(ant.init_endowment - ant.sugar, 0.0)
        return 0.0

    def apply_to_agent(self, ant: Ant):
        self.repay(ant)
        if self.model.strict_decisions:
            self.decided_credit(ant)
        elif self.amount_required(ant) > 0:
            self.borrow(ant, self._shuffled(ant.neighbors()))
        elif self.amount_available(ant) > 0:
            self.lend(ant, self._shuffled(ant.neighbors()))

    def _shuffled(self, ants: list[Ant]) -> list[Ant]:
        self.model.random.shuffle(ants)
        return ants

    def make_loan(self, lender: Ant, borrower: Ant, amount: float) -> bool:
        loan = self.model.ledger.originate(lender, borrower, amount, self.model.steps + self.duration,
                                           self.interest_rate)
        if loan is not None:
            logger.debug("Loan %s: %s lends %.2f to %s, due %s", loan.loan_id, lender.unique_id, amount,
                         borrower.unique_id, loan.due)
        return loan is not None

    def borrow(self, borrower: Ant, lenders: list[Ant]):
        needed = self.amount_required(borrower)
        for lender in lenders:
            if needed <= 0:
                break
            amount = min(self.amount_available(lender), needed)
            if amount > 0 and self.make_loan(lender, borrower, amount):
                needed -= amount

    def lend(self, lender: Ant, borrowers: list[Ant]):
        available = self.amount_available(lender)
        for borrower in borrowers:
            if available <= 0:
                break
            amount = min(self.amount_required(borrower), available)
            if amount > 0 and self.make_loan(lender, borrower, amount):
                available -= amount

    def repay(self, borrower: Ant):
        ledger = self.model.ledger
        now = self.model.steps
        for loan in ledger.due_loans(borrower, now):
            lender = self.model.get_ant(loan.lender_id)
            if lender is None:
                ledger.settle(loan)
                continue
            due = loan.amount_due
            if borrower.sugar >= due:
                borrower.sugar -= due
                lender.sugar += due
                ledger.settle(loan)
            else:
                payment = max(borrower.sugar / 2, 0.0)
                borrower.sugar -= payment
                lender.sugar += payment
                ledger.rollover(loan, due - payment, now + self.duration, self.interest_rate)
                logger.debug("Loan %s rolled over with %.2f outstanding", loan.loan_id, due - payment)

    def decided_credit(self, ant: Ant):
        required = self.amount_required(ant)
        available = self.amount_available(ant)
        if required > 0:
            candidates = [nb for nb in ant.neighbors() if self.amount_available(nb) > 0]
        elif available > 0:
            candidates = [nb for nb in ant.neighbors() if self.amount_required(nb) > 0]
        else:
            return
        if not candidates:
            return
        decision: CreditDecision = self.model.decide("credit", ant,
                                                     self.build_context(ant, required, available, candidates))
        if not decision.act:
            return
        by_id = {nb.unique_id: nb for nb in candidates}
        chosen = [by_id[i] for i in dict.fromkeys(decision.counterparts) if i in by_id]
        if required > 0:
            self.borrow(ant, chosen)
        else:
            self.lend(ant, chosen)

    def build_context(self, ant: Ant, required: float, available: float,
                      candidates: list[Ant]) -> dict[str, Any]:
        role = "borrower" if required > 0 else "lender"
        context = ant.context()
        context.update({
            "role": role,
            "amount_required": round(required, 2),
            "amount_available": round(available, 2),
            "interest_rate": self.interest_rate,
            "duration": self.duration,
            "outstanding_debt": round(self.model.ledger.total_owed(ant), 2),
        })
        context["eligible_lenders" if role == "borrower" else "eligible_borrowers"] = [
            {"id": nb.unique_id, "sugar": round(nb.sugar, 2), "age": nb.age,
             "can_lend": round(self.amount_available(nb), 2),
             "needs": round(self.amount_required(nb), 2)}
            for nb in candidates
        ]
        return context

    def handle_death(self, ant: Ant, cause: str):
        heirs = self.model.living_children(ant) if self.model.reproduction_enabled else []
        self.model.ledger.release(ant, heirs)
