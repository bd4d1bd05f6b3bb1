from __future__ import annotations

import dataclasses
import logging
from collections import Counter
from typing import Literal, Sequence, Any, Callable, Union

import mesa
import numpy as np
from mesa.discrete_space import CellAgent, Cell, OrthogonalVonNeumannGrid, PropertyLayer

from bitset import BitVector
from credit import LoanLedger
from culture import Tribe, tribe
from decisions import Decision, DecisionProvider, request_decision
from errors import ConfigurationError, InvariantError
from rules import ER, AR, RuleSet, GeneGenerator, PollutionRule, Sex

logger = logging.getLogger(__name__)

DEFAULT_FERTILITY = {Sex.MALE: (12, 50), Sex.FEMALE: (12, 40)}


def sugar_caps(dimensions: tuple[int, int], peaks: Sequence[tuple[int, int]], max_sugar: int,
               peak_diameter: int) -> np.ndarray:
    """Capacity of every site: max_sugar minus the rounded distance to the closest peak in steps of peak_diameter."""
    if not peaks:
        raise ConfigurationError("At least one sugar peak is required")
    if peak_diameter < 1:
        raise ConfigurationError(f"peak_diameter must be >= 1, got {peak_diameter}")
    xs, ys = np.indices(dimensions)
    dists = np.min([np.rint(np.hypot(xs - px, ys - py)) for px, py in peaks], axis=0)
    return np.maximum(0, max_sugar - dists // peak_diameter).astype(float)


class Ant(CellAgent):
    def __init__(self, model: SugarScape, cell: Cell, *, culture: BitVector, immunity: BitVector,
                 traits: Any = None, **gene: Any):
        self.gene = gene
        super().__init__(model)
        self.model: SugarScape = model
        if len(culture) != model.culture_length:
            raise InvariantError(f"Culture of length {len(culture)}, expected {model.culture_length}")
        if self.vision < 1 or self.metabolism < 1:
            raise ConfigurationError(f"Invalid genes vision={self.vision}, metabolism={self.metabolism}")
        self.cell = cell
        self.sugar = float(self.init_endowment)
        self.age = 0
        self.culture = culture
        self.immunity = immunity
        self.traits = traits
        self.diseases: list[BitVector] = []
        self.children: list[int] = []
        # counterparty id -> loan ids held in the model's ledger
        self.loans_given: dict[int, list[int]] = {}
        self.loans_owed: dict[int, list[int]] = {}
        self.total_inheritance_received = 0.0
        self.alive = True
        self.acted = False
        model.registry[self.unique_id] = self

    def __getattr__(self, item):
        gene = self.__dict__.get("gene")
        if gene is not None and item in gene:
            return gene[item]
        raise AttributeError(f"{type(self).__name__!r} object has no attribute {item!r}")

    @property
    def tribe(self) -> Tribe:
        return tribe(self.culture)

    @property
    def fertility_window(self) -> tuple[int, int]:
        return self.model.fertility_windows[self.sex]

    def is_fertile_by_age(self) -> bool:
        low, high = self.fertility_window
        return low <= self.age <= high

    def is_fertile(self) -> bool:
        return self.is_fertile_by_age() and self.sugar >= self.init_endowment

    def neighbors(self) -> list[Ant]:
        """Agents on the von Neumann adjacent cells."""
        return [agent for cell in self.cell.neighborhood for agent in cell.agents]

    def empty_neighbor_cells(self) -> list[Cell]:
        return [cell for cell in self.cell.neighborhood if cell.is_empty]

    def reset_tick(self):
        self.acted = False

    def die(self, cause: str = "starvation", successor: Ant | None = None):
        """
        Remove the agent and let the model process the death. When `successor` is given it takes over the vacated
        cell before the death is processed, so the cell cannot be handed to a replacement agent.
        """
        cell = self.cell
        self.alive = False
        self.remove()
        if successor is not None:
            successor.move_to(cell)
        self.model.handle_death(self, cause)

    def check_death(self) -> bool:
        if self.sugar <= 0:
            self.die("starvation")
        elif self.age >= self.max_age:
            self.die("age")
        return not self.alive

    def collect(self) -> float:
        """
        Sugar collected but not eaten - what an agent gathers beyond its metabolism - is added to the agent's sugar
        holdings. (p. 24)
        """
        collected = self.cell.sugar_level
        self.sugar += collected
        self.cell.sugar_level = 0
        return collected

    def eat(self):
        """
        The agent's metabolism is simply the amount of sugar it burns per time step, or iteration. (p. 24)

        If at any time the agent's sugar wealth falls to zero or below - that is, it has been unable to accumulate
        enough sugar to satisfy its metabolic demands - then we say that the agent has starved to death, and it is
        removed from the sugarscape. (p. 25)
        """
        self.sugar -= self.metabolism

    def forage(self, dest: Cell) -> float:
        if dest is not self.cell:
            self.move_to(dest)
        collected = self.collect()
        self.eat()
        self.age += 1
        self.model.pollute(self.cell, collected, self.metabolism)
        return collected

    def context(self) -> dict[str, Any]:
        """JSON-serialisable description of the agent handed to decision providers."""
        context = {
            "agent_id": self.unique_id,
            "position": list(self.cell.coordinate),
            "sugar": round(self.sugar, 2),
            "age": self.age,
            "max_age": self.max_age,
            "vision": self.vision,
            "metabolism": self.metabolism,
            "sex": self.sex.value,
            "culture": self.culture.to_list(),
            "tribe": self.tribe.value,
        }
        if self.traits is not None:
            context["traits"] = dataclasses.asdict(self.traits) if dataclasses.is_dataclass(self.traits) \
                else self.traits
        return context


class SugarScape(mesa.Model):
    def __init__(self, rules: tuple[Sequence[ER], Sequence[AR]], *,
                 decision_provider: DecisionProvider | None = None,
                 mode: Literal["norm", "uniform"] = "uniform",
                 metabolism_rng: tuple[int, int] = (1, 4),
                 vision_rng: tuple[int, int] = (1, 6),
                 init_endowment_rng: tuple[int, int] = (5, 25),
                 max_age_rng: tuple[int, int] = (60, 100),
                 dimensions: tuple[int, int] = (50, 50),
                 sugar_peaks: Sequence[tuple[int, int]] = ((10, 40), (40, 10)),
                 max_sugar: int = 4,
                 peak_diameter: int = 4,
                 sugar_map: np.ndarray | None = None,
                 torus: bool = False,
                 culture_length: int = 11,
                 immunity_length: int = 32,
                 fertility_windows: dict[Sex, tuple[int, int]] | None = None,
                 model_reporters: dict[str, Union[str, Callable[[mesa.Model], Any], list]] = None,
                 agent_reporters: dict[str, Union[str, Callable[[mesa.Model], Any], list]] = None,
                 n_agents=400, seed=None):

        super().__init__(seed=seed)
        if sugar_map is None:
            if min(dimensions) < 1:
                raise ConfigurationError(f"Grid dimensions must be positive, got {dimensions}")
            sugar_map = sugar_caps(dimensions, sugar_peaks, max_sugar, peak_diameter)
        sugar_map = np.asarray(sugar_map, dtype=float)
        if sugar_map.ndim != 2 or (sugar_map < 0).any():
            raise ConfigurationError("sugar_map must be a 2d array of non-negative capacities")
        self.grid = OrthogonalVonNeumannGrid(sugar_map.shape, torus=torus, capacity=1, random=self.random)

        self.culture_length = culture_length
        self.immunity_length = immunity_length
        self.fertility_windows = {**DEFAULT_FERTILITY, **(fertility_windows or {})}
        self.gene_gen = GeneGenerator(self.random, mode, metabolism_rng=metabolism_rng, vision_rng=vision_rng,
                                      init_endowment_rng=init_endowment_rng, max_age_rng=max_age_rng,
                                      culture_length=culture_length, immunity_length=immunity_length)
        self.decision_provider = decision_provider
        self.n_agents = n_agents
        self.registry: dict[int, Ant] = {}
        self.ledger = LoanLedger(self)

        self.deaths = 0
        self.births = 0
        self.deaths_by_cause: Counter[str] = Counter()
        self.lifespan_by_cause: Counter[str] = Counter()
        self.combat_kills = 0
        self.combat_sugar_stolen = 0.0
        self.total_inheritances = 0
        self.total_inheritance_value = 0.0
        self.loans_originated = 0

        self.grid.add_property_layer(PropertyLayer.from_data("sugar_cap", sugar_map.copy()))
        self.grid.add_property_layer(PropertyLayer.from_data("sugar_level", sugar_map.copy()))
        self.grid.add_property_layer(PropertyLayer.from_data("pollution", np.zeros_like(sugar_map)))

        model_reporters, agent_reporters = self.setup_reporters(model_reporters, agent_reporters)
        self.datacollector = mesa.DataCollector(model_reporters, agent_reporters)

        self.rules = RuleSet(self, *rules)
        self.pollution_rule = self.rules.find(PollutionRule)
        self.reproduction_enabled = any(rule.breeds for rule in self.rules.agent_rules)
        self.rules.setup_gene_generator(self.gene_gen)
        self.generate_ants(self.n_agents)
        logger.info("Sugarscape %sx%s created with %d agents", *self.grid.dimensions, len(self.agents))

    def setup_reporters(self, model_reporters, agent_reporters):
        model_reporters = model_reporters or {}
        agent_reporters = agent_reporters or {}
        model_reporters.update({"population": lambda m: len(m.agents), "gini": self.gini, "deaths": "deaths",
                                "births": "births", "combat_kills": "combat_kills", "morans_i": self.morans_i})
        agent_reporters.update({"metabolism": "metabolism", "vision": "vision", "sugar": "sugar"})
        return model_reporters, agent_reporters

    def generate_ants(self, n_agents) -> list[Ant]:
        empties = self.grid.empties.cells
        if n_agents > len(empties):
            logger.warning("Only %d empty cells left for %d new agents", len(empties), n_agents)
            n_agents = len(empties)
        cells = self.random.sample(empties, k=n_agents)
        genes = self.gene_gen.generate_genes(n_agents)
        ants = []
        for i, cell in enumerate(cells):
            ant = Ant(self, cell, **{name: values[i] for name, values in genes.items()})
            self.rules.setup_ant(ant)
            ants.append(ant)
        return ants

    def step(self):
        self.deaths = 0
        self.rules.apply_to_model(self.steps)
        self.datacollector.collect(self)

    def handle_death(self, agent: Ant, cause: str):
        self.deaths += 1
        self.deaths_by_cause[cause] += 1
        self.lifespan_by_cause[cause] += agent.age
        self.registry.pop(agent.unique_id, None)
        logger.debug("Agent %s died of %s at age %s", agent.unique_id, cause, agent.age)
        self.rules.handle_death(self.steps, agent, cause)

    def get_ant(self, unique_id: int) -> Ant | None:
        return self.registry.get(unique_id)

    def living_children(self, ant: Ant) -> list[Ant]:
        return [self.registry[child] for child in ant.children if child in self.registry]

    @property
    def strict_decisions(self) -> bool:
        return self.decision_provider is not None

    def decide(self, rule: str, ant: Ant, context: dict[str, Any]) -> Decision:
        return request_decision(self.decision_provider, rule, ant.unique_id, context)

    def welfare(self, cell: Cell) -> float:
        if self.pollution_rule is None:
            return float(cell.sugar_level)
        return cell.sugar_level / (1 + cell.pollution)

    def pollute(self, cell: Cell, sugar: float, metabolism: float):
        if self.pollution_rule is not None:
            self.pollution_rule.produce(cell, sugar, metabolism)

    def axis_dist(self, u1: int, u2: int, size: int) -> int:
        diff = abs(u1 - u2)
        return min(diff, size - diff) if self.grid.torus else diff

    def cardinal_cells(self, cell: Cell, radius: int) -> list[Cell]:
        """Cells along the four principal lattice directions, up to `radius` steps away."""
        width, height = self.grid.dimensions
        x, y = cell.coordinate
        cells = {}
        for dx, dy in ((1, 0), (-1, 0), (0, 1), (0, -1)):
            for step in range(1, radius + 1):
                nx, ny = x + dx * step, y + dy * step
                if self.grid.torus:
                    nx, ny = nx % width, ny % height
                elif not (0 <= nx < width and 0 <= ny < height):
                    break
                if (nx, ny) != (x, y):
                    cells.setdefault((nx, ny), self.grid[(nx, ny)])
        return list(cells.values())

    def in_cardinal_view(self, origin: Cell, target: Cell, radius: int) -> bool:
        width, height = self.grid.dimensions
        (x1, y1), (x2, y2) = origin.coordinate, target.coordinate
        dx, dy = self.axis_dist(x1, x2, width), self.axis_dist(y1, y2, height)
        return (dx == 0 and 0 < dy <= radius) or (dy == 0 and 0 < dx <= radius)

    def counters(self) -> dict[str, Any]:
        return {
            "step": self.steps,
            "population": len(self.agents),
            "births": self.births,
            "deaths_by_cause": dict(self.deaths_by_cause),
            "lifespan_by_cause": dict(self.lifespan_by_cause),
            "combat_kills": self.combat_kills,
            "combat_sugar_stolen": self.combat_sugar_stolen,
            "total_inheritances": self.total_inheritances,
            "total_inheritance_value": self.total_inheritance_value,
            "loans_originated": self.loans_originated,
            "outstanding_loans": len(self.ledger),
        }

    def sugar_snapshot(self) -> np.ndarray:
        return self.grid.sugar_level.data.copy()

    def pollution_snapshot(self) -> np.ndarray:
        return self.grid.pollution.data.copy()

    @staticmethod
    def gini(model: SugarScape):
        wealths = np.sort(np.array(model.agents.get("sugar"), dtype=float))
        n = wealths.size
        if n == 0 or wealths.sum() == 0:
            return 0.0
        weights = np.linspace(n - 0.5, 0.5, n)
        B = np.dot(wealths, weights) / n / wealths.sum()
        return 1 - 2 * B

    @staticmethod
    def morans_i(model: SugarScape):
        """
        Moran's I of agent wealth over von Neumann adjacency: positive when rich agents sit next to rich ones,
        negative when rich and poor alternate, 0 without any adjacent pair.
        """
        ants = list(model.agents)
        if not ants:
            return 0.0
        mean = sum(ant.sugar for ant in ants) / len(ants)
        numerator = denominator = n_pairs = 0.0
        for ant in ants:
            deviation = ant.sugar - mean
            denominator += deviation ** 2
            for neighbor in ant.neighbors():
                numerator += deviation * (neighbor.sugar - mean)
                n_pairs += 1
        if n_pairs == 0 or denominator == 0:
            return 0.0
        return len(ants) / n_pairs * numerator / denominator
