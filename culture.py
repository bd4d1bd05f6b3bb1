from __future__ import annotations

import enum
import logging
from typing import TYPE_CHECKING

import numpy as np

from bitset import BitVector
from decisions import CultureDecision
from errors import DecisionValidationError, InvariantError
from rules import AgentRule, Phase

if TYPE_CHECKING:
    from core import Ant

logger = logging.getLogger(__name__)


class Tribe(enum.Enum):
    BLUE = "blue"
    RED = "red"


def tribe(culture: BitVector) -> Tribe:
    """Group membership rule: blue when zeros outnumber ones, red otherwise. (p. 73)"""
    ones = culture.count()
    return Tribe.BLUE if len(culture) - ones > ones else Tribe.RED


def culturally_different(a: Ant, b: Ant) -> bool:
    return tribe(a.culture) != tribe(b.culture)


class CultureRule(AgentRule):
    """
    Cultural transmission rule (tag-flipping):
    - For each neighbor (four principal directions), a tag is randomly selected;
    - If the neighbor agrees with the agent at that tag position, no change is made; if they disagree, the neighbor's
    tag is flipped to agree with the agent's tag.
    (p. 73)
    """
    phase = Phase.CULTURE

    def apply_to_agent(self, ant: Ant):
        neighbors = ant.neighbors()
        if not neighbors:
            return
        for neighbor in neighbors:
            if len(neighbor.culture) != len(ant.culture):
                raise InvariantError(f"Culture lengths differ: agent {ant.unique_id} has {len(ant.culture)}, "
                                     f"agent {neighbor.unique_id} has {len(neighbor.culture)}")
        if self.model.strict_decisions:
            self.decided_spread(ant, neighbors)
        else:
            for neighbor in neighbors:
                self.transmit(ant, neighbor, self.model.random.randrange(len(ant.culture)))

    @staticmethod
    def transmit(ant: Ant, neighbor: Ant, index: int):
        if neighbor.culture[index] != ant.culture[index]:
            neighbor.culture[index] = ant.culture[index]

    def decided_spread(self, ant: Ant, neighbors: list[Ant]):
        context = ant.context()
        context["culture_length"] = len(ant.culture)
        context["neighbours"] = [
            {"id": nb.unique_id, "culture": nb.culture.to_list(), "tribe": nb.tribe.value} for nb in neighbors
        ]
        decision: CultureDecision = self.model.decide("culture", ant, context)
        if not decision.spread:
            return
        by_id = {nb.unique_id: nb for nb in neighbors}
        for transmission in decision.transmissions:
            if transmission.bit_index >= len(ant.culture):
                raise DecisionValidationError(f"bit_index must be below {len(ant.culture)}", rule="culture",
                                              agent_id=ant.unique_id, field="transmissions.bit_index",
                                              value=transmission.bit_index)
            neighbor = by_id.get(transmission.target_id)
            if neighbor is None:
                logger.debug("Agent %s: culture target %s is not a neighbour", ant.unique_id,
                             transmission.target_id)
                continue
            self.transmit(ant, neighbor, transmission.bit_index)


def culture_matrix(model) -> np.ndarray:
    if len(model.agents) == 0:
        return np.zeros((0, model.culture_length), dtype=bool)
    return np.array([ant.culture.bits for ant in model.agents], dtype=bool)


def tribe_shares(model) -> dict[str, float]:
    n = len(model.agents)
    blues = sum(1 for ant in model.agents if ant.tribe is Tribe.BLUE)
    if n == 0:
        return {Tribe.BLUE.value: 0.0, Tribe.RED.value: 0.0}
    return {Tribe.BLUE.value: blues / n, Tribe.RED.value: (n - blues) / n}


def cultural_entropy(model) -> float:
    """Mean binary entropy of the tag positions across the population, 0 for a homogeneous culture."""
    cultures = culture_matrix(model)
    if cultures.size == 0:
        return 0.0
    p = cultures.mean(axis=0)
    with np.errstate(divide="ignore", invalid="ignore"):
        h = -(p * np.log2(p) + (1 - p) * np.log2(1 - p))
    return float(np.nan_to_num(h).mean())


def unique_cultures(model) -> int:
    cultures = culture_matrix(model)
    if cultures.size == 0:
        return 0
    return len(np.unique(cultures, axis=0))


def mean_hamming_distance(model) -> float:
    cultures = culture_matrix(model).astype(int)
    n = len(cultures)
    if n < 2:
        return 0.0
    # pairwise disagreements per position: ones * zeros
    ones = cultures.sum(axis=0)
    return float((ones * (n - ones)).sum() / (n * (n - 1) / 2))
