from __future__ import annotations

import logging
from typing import Any, Literal, NamedTuple, TYPE_CHECKING

from mesa.discrete_space import Cell

from culture import culturally_different
from decisions import CombatDecision
from errors import ConfigurationError
from rules import MovementRule

if TYPE_CHECKING:
    from core import Ant

logger = logging.getLogger(__name__)


class Target(NamedTuple):
    cell: Cell
    victim: Ant
    reward: float
    distance: float


class CombatRule(MovementRule):
    """
    Combat rule C_a:
    - Look out as far as vision permits in the four principal lattice directions;
    - Throw out all sites occupied by members of the agent's own tribe;
    - Throw out all sites occupied by members of different tribes who are wealthier than the agent;
    - The reward of each remaining site is given by the resource level at the site plus, if it is occupied, the
    minimum of a and the occupant's wealth;
    - Throw out all sites that are vulnerable to retaliation;
    - Select the nearest position having maximum reward and go there;
    - Gather the resources at the site plus the minimum of a and the occupant's wealth, if the site was occupied;
    - If the site was occupied, then the former occupant is considered "killed" - permanently removed from play.
    (p. 83)

    Agents with no one to attack fall back to ordinary movement.
    """

    def __init__(self, combat_limit: float = 50, metric: Literal['euclidean', 'manhattan'] = 'euclidean'):
        super().__init__(metric)
        if combat_limit < 0:
            raise ConfigurationError(f"combat_limit must be >= 0, got {combat_limit}")
        self.combat_limit = combat_limit

    def apply_to_agent(self, ant: Ant):
        if ant.acted:
            return
        targets = self.find_targets(ant)
        if self.model.strict_decisions:
            decision: CombatDecision = self.model.decide("combat", ant, self.build_combat_context(ant, targets))
            chosen = None
            if decision.attack:
                chosen = next((t for t in targets if t.victim.unique_id == decision.target_id), None)
                if chosen is None:
                    logger.debug("Agent %s: %s is not an eligible victim", ant.unique_id, decision.target_id)
        else:
            chosen = self.choose(targets)
        if chosen is None:
            super().apply_to_agent(ant)
            return
        self.attack(ant, chosen)

    def find_targets(self, attacker: Ant) -> list[Target]:
        targets = []
        for cell in self.model.cardinal_cells(attacker.cell, attacker.vision):
            if cell.is_empty:
                continue
            victim = cell.agents[0]
            if not culturally_different(attacker, victim) or victim.sugar >= attacker.sugar:
                continue
            reward = cell.sugar_level + min(victim.sugar, self.combat_limit)
            if reward <= 0:
                continue
            if self.exposed_to_retaliation(attacker, victim, cell, attacker.sugar + reward):
                continue
            targets.append(Target(cell, victim, reward, self.cell_dist(attacker.cell, cell)))
        return targets

    def exposed_to_retaliation(self, attacker: Ant, victim: Ant, cell: Cell, future_sugar: float) -> bool:
        """True when a wealthier agent of another tribe would see the attacker at `cell`."""
        for other in self.model.agents:
            if other is attacker or other is victim:
                continue
            if not culturally_different(attacker, other) or other.sugar <= future_sugar:
                continue
            if self.model.in_cardinal_view(other.cell, cell, other.vision):
                return True
        return False

    def choose(self, targets: list[Target]) -> Target | None:
        if not targets:
            return None
        max_reward = max(t.reward for t in targets)
        richest = [t for t in targets if t.reward == max_reward]
        shortest_dist = min(t.distance for t in richest)
        return self.model.random.choice([t for t in richest if t.distance == shortest_dist])

    def attack(self, attacker: Ant, target: Target):
        victim = target.victim
        stolen = min(victim.sugar, self.combat_limit)
        victim.sugar -= stolen
        victim.die("combat", successor=attacker)
        attacker.forage(target.cell)
        attacker.sugar += stolen
        attacker.acted = True
        self.model.combat_kills += 1
        self.model.combat_sugar_stolen += stolen
        logger.debug("Agent %s killed %s and took %.2f sugar", attacker.unique_id, victim.unique_id, stolen)

    def build_combat_context(self, ant: Ant, targets: list[Target]) -> dict[str, Any]:
        context = ant.context()
        context["combat_limit"] = self.combat_limit
        context["eligible_targets"] = [
            {"id": t.victim.unique_id, "position": list(t.cell.coordinate), "sugar": round(t.victim.sugar, 2),
             "tribe": t.victim.tribe.value, "reward": round(t.reward, 2), "distance": round(t.distance, 2)}
            for t in targets
        ]
        return context
