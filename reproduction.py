from __future__ import annotations

import logging
import math

from mesa.discrete_space import Cell

from core import Ant
from decisions import ReproductionDecision
from errors import DecisionValidationError, InvariantError
from rules import AgentRule, Phase, Sex

logger = logging.getLogger(__name__)


def max_matings(ant: Ant) -> int:
    """How many times the agent can halve its way through its initial endowment: floor(log2(sugar / e0)) + 1."""
    if ant.init_endowment <= 0 or ant.sugar <= 0:
        return 0
    return max(math.floor(math.log2(ant.sugar / ant.init_endowment)) + 1, 0)


class ReproductionRule(AgentRule):
    """
    Agent sex rule S:
    - Select a neighboring agent at random;
    - If the neighboring agent is of the opposite sex and if both agents are fertile and at least one of the agents
    has an empty neighboring site then a newborn is produced by crossing over the parents' genetic and cultural
    characteristics;
    - Repeat for all neighbors.
    (p. 56)

    A newborn starts with half of each parent's initial endowment, taken from the parents.
    """
    phase = Phase.LIFE
    breeds = True

    def apply_to_agent(self, ant: Ant):
        if not ant.is_fertile():
            return
        partners = self.eligible_partners(ant)
        n_matings = max_matings(ant)
        if not partners or n_matings == 0:
            return
        if self.model.strict_decisions:
            chosen = self.decided_partners(ant, partners, n_matings)
        else:
            chosen = self.model.random.sample(partners, k=min(n_matings, len(partners)))
        for partner in chosen:
            self.mate(ant, partner)

    @staticmethod
    def eligible_partners(ant: Ant) -> list[Ant]:
        return [nb for nb in ant.neighbors() if nb.sex != ant.sex and nb.is_fertile()]

    @staticmethod
    def free_cells(ant: Ant, partner: Ant) -> list[Cell]:
        cells = {cell.coordinate: cell for cell in ant.empty_neighbor_cells() + partner.empty_neighbor_cells()}
        return list(cells.values())

    def decided_partners(self, ant: Ant, partners: list[Ant], n_matings: int) -> list[Ant]:
        context = ant.context()
        context["max_partners"] = n_matings
        context["eligible_partners"] = [
            {"id": p.unique_id, "sugar": round(p.sugar, 2), "age": p.age, "sex": p.sex.value,
             "vision": p.vision, "metabolism": p.metabolism, "tribe": p.tribe.value,
             "free_cells": len(self.free_cells(ant, p))}
            for p in partners
        ]
        decision: ReproductionDecision = self.model.decide("reproduction", ant, context)
        if not decision.reproduce:
            return []
        if len(decision.partner_ids) > n_matings:
            raise DecisionValidationError(f"At most {n_matings} partners allowed", rule="reproduction",
                                          agent_id=ant.unique_id, field="partner_ids", value=decision.partner_ids)
        by_id = {p.unique_id: p for p in partners}
        return [by_id[i] for i in dict.fromkeys(decision.partner_ids) if i in by_id]

    def mate(self, ant: Ant, partner: Ant) -> Ant | None:
        if not (ant.alive and partner.alive and ant.is_fertile() and partner.is_fertile()):
            return None
        cells = self.free_cells(ant, partner)
        if not cells:
            return None
        return self.create_child(ant, partner, self.model.random.choice(cells))

    def create_child(self, mother: Ant, father: Ant, cell: Cell) -> Ant:
        if len(mother.culture) != len(father.culture):
            raise InvariantError(f"Parents {mother.unique_id} and {father.unique_id} have different culture lengths")
        rng = self.model.random
        contributions = mother.init_endowment / 2, father.init_endowment / 2
        mother.sugar -= contributions[0]
        father.sugar -= contributions[1]
        gene = {trait: rng.choice((mother.gene[trait], father.gene[trait]))
                for trait in ("metabolism", "vision", "max_age")}
        gene["sex"] = rng.choice((Sex.MALE, Sex.FEMALE))
        gene["init_endowment"] = sum(contributions)
        child = Ant(self.model, cell, culture=mother.culture.crossover(father.culture, rng),
                    immunity=mother.immunity.crossover(father.immunity, rng), **gene)
        mother.children.append(child.unique_id)
        father.children.append(child.unique_id)
        self.model.births += 1
        logger.debug("Agents %s and %s had child %s", mother.unique_id, father.unique_id, child.unique_id)
        return child
