from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from bitset import BitVector
from errors import ConfigurationError
from rules import AgentRule

if TYPE_CHECKING:
    from core import Ant

logger = logging.getLogger(__name__)


class DiseaseRule(AgentRule):
    """
    Agent disease transmission rule E: For each neighbor, a disease that currently afflicts the agent is selected at
    random and given to the neighbor. (p. 144)

    Agent immune response rule: If the disease is a substring of the immune system then end (the agent is immune),
    else (the agent is infected) go to the following step. The substring in the agent immune system having the
    smallest Hamming distance from the disease is selected and the first bit at which it is different from the
    disease string is changed to match the disease. (p. 144)

    Every disease an agent is not yet immune to costs it one unit of sugar per step.
    """

    def __init__(self, n_diseases: int = 10, disease_length_rng: tuple[int, int] = (2, 10),
                 initial_infections: int = 1):
        super().__init__()
        low, high = disease_length_rng
        if n_diseases < 0 or low < 1 or high < low or initial_infections < 0:
            raise ConfigurationError("Invalid disease parameters")
        self.n_diseases = n_diseases
        self.disease_length_rng = disease_length_rng
        self.initial_infections = initial_infections
        self.diseases: list[BitVector] = []

    def bind_model(self, model):
        super().bind_model(model)
        _, high = self.disease_length_rng
        if high >= model.immunity_length:
            raise ConfigurationError(f"Diseases must be shorter than the immune system ({model.immunity_length})")
        rng = model.random
        self.diseases = [BitVector.random(rng.randint(*self.disease_length_rng), rng) for _ in range(self.n_diseases)]

    def setup_ant(self, ant: Ant):
        k = min(self.initial_infections, len(self.diseases))
        ant.diseases.extend(disease.copy() for disease in self.model.random.sample(self.diseases, k=k))

    def apply_to_agents(self):
        self.transmit()
        self.immune_response()

    def transmit(self):
        rng = self.model.random
        for ant in list(self.model.agents):
            for neighbor in ant.neighbors():
                if not neighbor.diseases:
                    continue
                disease = rng.choice(neighbor.diseases)
                if disease not in ant.diseases:
                    ant.diseases.append(disease.copy())

    @staticmethod
    def respond(ant: Ant) -> int:
        """Adapt the immune system once per disease and return how many diseases are still not contained."""
        for disease in ant.diseases:
            ant.immunity.mutate_toward(disease)
        return sum(1 for disease in ant.diseases if not ant.immunity.contains(disease))

    def immune_response(self):
        for ant in list(self.model.agents):
            ant.sugar -= self.respond(ant)
