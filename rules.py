from __future__ import annotations

import enum
import logging
import math
from typing import Literal, TypeVar, Sequence, Any, TYPE_CHECKING

import numpy as np
from mesa.discrete_space import Cell

from bitset import BitVector
from decisions import MovementDecision
from errors import ConfigurationError

if TYPE_CHECKING:
    import random

    from core import SugarScape, Ant

logger = logging.getLogger(__name__)


class Sex(enum.Enum):
    MALE = "male"
    FEMALE = "female"


class GeneGenerator:
    """
    Each agent has a genetic endowment consisting of a sugar metabolism and a level of vision. (p. 23-24)

    Metabolism is uniformly distributed with a minimum of 1 and a maximum of 4. (p. 24)

    Vision is initially distributed uniformly across agents with values ranging from 1 to 6, unless stated otherwise.
    All agents are given some initial endowment of sugar, which they carry with them as they move about the sugarscape
    (p. 24).

    Sex, the cultural tag and the immune system are drawn here as well, so that every new agent that is not born from
    parents comes out of one place and one random stream.
    """
    def __init__(self, random: random.Random, mode: Literal["norm", "uniform"] = "uniform", *,
                 metabolism_rng: tuple[int, int] = (1, 4),
                 vision_rng: tuple[int, int] = (1, 6),
                 init_endowment_rng: tuple[int, int] = (5, 25),
                 max_age_rng: tuple[int, int] = (60, 100),
                 culture_length: int = 11,
                 immunity_length: int = 32):
        if mode not in ("norm", "uniform"):
            raise ConfigurationError(f"Unknown gene sampling mode {mode!r}")
        if culture_length < 1 or culture_length % 2 == 0:
            raise ConfigurationError(f"Culture length must be a positive odd number, got {culture_length}")
        if immunity_length < 1:
            raise ConfigurationError(f"Immunity length must be positive, got {immunity_length}")
        self.random = random
        self.mode = mode
        self.culture_length = culture_length
        self.immunity_length = immunity_length
        self.trait_ranges = {}
        self.set_trait("metabolism", metabolism_rng)
        self.set_trait("vision", vision_rng)
        self.set_trait("init_endowment", init_endowment_rng)
        self.set_trait("max_age", max_age_rng)

    def set_trait(self, trait_name: str, val_range: tuple[int, int], minimum: int = 1):
        low, high = val_range
        if low < minimum or high < low:
            raise ConfigurationError(f"Invalid range {val_range} for {trait_name}")
        self.trait_ranges[trait_name] = (int(low), int(high))

    def get_random_vals(self, val_range: tuple[int, int], n_agents: int) -> list[int]:
        low, high = val_range
        if self.mode == "norm":
            mean = (low + high) / 2
            std = (high - low) / 6
            return [max(low, round(self.random.gauss(mean, std))) for _ in range(n_agents)]
        return [self.random.randint(low, high) for _ in range(n_agents)]

    def generate_genes(self, n_agents: int = 1) -> dict[str, list[Any]]:
        gene = {trait: self.get_random_vals(val_range, n_agents) for trait, val_range in self.trait_ranges.items()}
        gene["sex"] = [self.random.choice((Sex.MALE, Sex.FEMALE)) for _ in range(n_agents)]
        gene["culture"] = [BitVector.random(self.culture_length, self.random) for _ in range(n_agents)]
        gene["immunity"] = [BitVector.random(self.immunity_length, self.random) for _ in range(n_agents)]
        return gene


class Phase(enum.IntEnum):
    """Slots of the per-agent pass, executed in this order for every agent."""
    MOVE = 0
    LIFE = 1
    CULTURE = 2
    CREDIT = 3


class Rule:
    def __init__(self, offset: int = 0):
        self.offset = offset
        self._model = None

    def is_active(self, step: int) -> bool:
        return step >= self.offset

    @property
    def model(self) -> SugarScape:
        if self._model is not None:
            return self._model
        raise ValueError("Model has not been set yet.")

    def bind_model(self, model):
        self._model = model


class EnvRule(Rule):
    priority = 0

    def __init__(self):
        super().__init__()

    def apply_to_env(self):
        pass


class AgentRule(Rule):
    # None: the rule takes no part in the per-agent pass
    phase: Phase | None = None
    death_order = 0
    breeds = False

    def __init__(self):
        super().__init__()

    def apply_to_agent(self, ant: Ant):
        pass

    def apply_to_agents(self):
        """Model-wide pass, run once after every agent finished its per-agent pass."""
        pass

    def handle_death(self, ant: Ant, cause: str):
        pass

    def setup_genes(self, gene_generator: GeneGenerator):
        pass

    def setup_ant(self, ant: Ant):
        pass


ER = TypeVar('ER', bound=EnvRule)
AR = TypeVar('AR', bound=AgentRule)


class RuleSet:
    """
    Tick orchestrator.

    Environment rules run first (growback, then pollution diffusion). Agents are then shuffled once and each one
    runs, in order: combat or movement, the death check, reproduction, culture, credit. Finally the model-wide
    agent passes (disease) run.
    """
    def __init__(self, model, env_rules: Sequence[ER], agent_rules: Sequence[AR]):
        if any(not isinstance(env_rule, EnvRule) for env_rule in env_rules):
            raise TypeError("The first arg of RuleSet must contain only EnvRules")
        self.env_rules = sorted(env_rules, key=lambda rule: rule.priority)

        if any(not isinstance(agent_rule, AgentRule) for agent_rule in agent_rules):
            raise TypeError("The second arg of RuleSet must contain only AgentRules")
        self.agent_rules = list(agent_rules)
        if any(isinstance(rule, ReplacementRule) for rule in agent_rules) and any(r.breeds for r in agent_rules):
            raise ConfigurationError("ReplacementRule cannot be combined with a reproduction rule")

        self.model = model
        for rule in self.env_rules + self.agent_rules:
            rule.bind_model(model)

    def find(self, rule_type: type[Rule]) -> Rule | None:
        return next((rule for rule in self.env_rules + self.agent_rules if isinstance(rule, rule_type)), None)

    def _phase_rules(self, step: int, phases: set[Phase]) -> list[AgentRule]:
        rules = [rule for rule in self.agent_rules if rule.phase in phases and rule.is_active(step)]
        return sorted(rules, key=lambda rule: rule.phase)

    def apply_to_model(self, step: int):
        for env_rule in self.env_rules:
            if env_rule.is_active(step):
                env_rule.apply_to_env()

        movers = self._phase_rules(step, {Phase.MOVE})
        others = self._phase_rules(step, {Phase.LIFE, Phase.CULTURE, Phase.CREDIT})

        ants = list(self.model.agents)
        self.model.random.shuffle(ants)
        for ant in ants:
            ant.reset_tick()
        for ant in ants:
            if not ant.alive:
                continue
            for rule in movers:
                rule.apply_to_agent(ant)
            if not ant.alive or ant.check_death():
                continue
            for rule in others:
                if not ant.alive:
                    break
                rule.apply_to_agent(ant)

        for agent_rule in self.agent_rules:
            if agent_rule.is_active(step):
                agent_rule.apply_to_agents()

    def setup_gene_generator(self, gene_generator: GeneGenerator):
        for agent_rule in self.agent_rules:
            agent_rule.setup_genes(gene_generator)

    def setup_ant(self, ant: Ant):
        for agent_rule in self.agent_rules:
            agent_rule.setup_ant(ant)

    def handle_death(self, step: int, agent: Ant, cause: str):
        for agent_rule in sorted(self.agent_rules, key=lambda rule: rule.death_order):
            if agent_rule.is_active(step):
                agent_rule.handle_death(agent, cause)


class GrowbackRule(EnvRule):
    """
    Sugarscape growback rule G_a: At each lattice position, sugar grows back at a rate of a units per time interval
    up to the capacity at that position. (p. 23)
    """
    def __init__(self, alpha: int | float):
        super().__init__()
        self.alpha = alpha

    def growth(self) -> np.ndarray | float:
        return self.alpha

    def apply_to_env(self):
        caps = self.model.grid.sugar_cap.data
        levels = self.model.grid.sugar_level.data
        levels += self.growth()
        np.clip(levels, 0, caps, out=levels)


class SeasonalGrowbackRule(GrowbackRule):
    """
    Seasonal growback rule S_{a,b,g}: Initially it is summer in the top half of the sugarscape and winter in the
    bottom half. Then, every g time periods the seasons flip. For each site, if the season is summer then sugar grows
    back at a rate of a units per time interval; if the season is winter then the growback rate is a / b units per
    time interval. (p. 44)
    """
    def __init__(self, alpha: int | float, season_duration: int = 20, winter_divisor: int | float = 4):
        super().__init__(alpha)
        if season_duration < 1 or winter_divisor <= 0:
            raise ConfigurationError("season_duration must be >= 1 and winter_divisor > 0")
        self.season_duration = season_duration
        self.winter_divisor = winter_divisor
        self.summer_top = True
        self.season_steps = 0

    def growth(self) -> np.ndarray:
        _, height = self.model.grid.dimensions
        rates = np.full(self.model.grid.dimensions, self.alpha / self.winter_divisor)
        top = (slice(None), slice(0, height // 2))
        bottom = (slice(None), slice(height // 2, None))
        rates[top if self.summer_top else bottom] = self.alpha
        return rates

    def apply_to_env(self):
        super().apply_to_env()
        self.season_steps += 1
        if self.season_steps >= self.season_duration:
            self.summer_top = not self.summer_top
            self.season_steps = 0


class PollutionRule(EnvRule):
    """
    Pollution formation rule P_{a,b}: When sugar quantity s is gathered from the sugarscape, an amount of production
    pollution is generated in quantity a*s. When sugar amount m is consumed (metabolized), consumption pollution is
    generated according to b*m. (p. 47)

    Pollution diffusion rule D_a: Each a time periods and at each site, compute the pollution flux, the average
    pollution level over all von Neumann neighboring sites. Each site's flux becomes its new pollution level. (p. 48)
    """
    priority = 1

    def __init__(self, production_rate: float = 1.0, consumption_rate: float = 1.0, diffusion_interval: int = 10):
        super().__init__()
        if diffusion_interval < 1:
            raise ConfigurationError(f"diffusion_interval must be >= 1, got {diffusion_interval}")
        self.production_rate = production_rate
        self.consumption_rate = consumption_rate
        self.diffusion_interval = diffusion_interval
        self.steps_since_diffusion = 0

    def produce(self, cell: Cell, sugar: float, metabolism: float):
        cell.pollution += self.production_rate * sugar + self.consumption_rate * metabolism

    def apply_to_env(self):
        self.steps_since_diffusion += 1
        if self.steps_since_diffusion >= self.diffusion_interval:
            self.diffuse()
            self.steps_since_diffusion = 0

    def diffuse(self):
        grid = self.model.grid
        pollution = grid.pollution.data
        if grid.torus:
            total = sum(np.roll(pollution, shift, axis) for axis in (0, 1) for shift in (1, -1))
            pollution[...] = total / 4
            return
        padded = np.pad(pollution, 1)
        inside = np.pad(np.ones_like(pollution), 1)
        total = padded[:-2, 1:-1] + padded[2:, 1:-1] + padded[1:-1, :-2] + padded[1:-1, 2:]
        counts = inside[:-2, 1:-1] + inside[2:, 1:-1] + inside[1:-1, :-2] + inside[1:-1, 2:]
        pollution[...] = np.divide(total, counts, out=pollution.copy(), where=counts > 0)


class MovementRule(AgentRule):
    phase = Phase.MOVE

    def __init__(self, metric: Literal['euclidean', 'manhattan'] = 'euclidean'):
        """
        Agent movement rule M :
        - Look out as far as vision permits in the four principal lattice directions and identify the unoccupied site(s)
        having the most sugar;
        - If the greatest sugar value appearson multiple sites then select the nearest one;
        - Move to this site;
        - Collect all the sugar at this new position
        (p. 25)

        With pollution active the value of a site is its welfare, sugar / (1 + pollution).
        """
        super().__init__()
        metrics = {'euclidean': math.hypot, 'manhattan': self._manhattan_dist}
        if metric not in metrics:
            raise ConfigurationError(f"Unknown distance metric {metric!r}")
        self.metric = metric
        self.dist_2d = metrics[metric]

        self.width = None
        self.height = None
        self.dist_1d = None

    def bind_model(self, model):
        super().bind_model(model)
        grid = self.model.grid
        self.width, self.height = grid.dimensions
        self.dist_1d = self._toroidal_dist if grid.torus else self._linear_dist

    @staticmethod
    def _linear_dist(u1, u2, _u_tot):
        return abs(u1 - u2)

    @staticmethod
    def _toroidal_dist(u1, u2, u_tot):
        diff = abs(u1 - u2)
        return min(diff, abs(u_tot - diff))

    @staticmethod
    def _manhattan_dist(dx, dy):
        return abs(dx) + abs(dy)

    def cell_dist(self, cell1: Cell, cell2: Cell) -> float:
        x1, y1 = cell1.coordinate
        x2, y2 = cell2.coordinate
        dx = self.dist_1d(x1, x2, self.width)
        dy = self.dist_1d(y1, y2, self.height)
        return self.dist_2d(dx, dy)

    def apply_to_agent(self, ant: Ant):
        if ant.acted:
            return
        if self.model.strict_decisions:
            self.decided_move(ant)
        else:
            ant.forage(self.find_dest(ant))
        ant.acted = True

    def candidate_sites(self, ant: Ant) -> list[tuple[Cell, float, float]]:
        """(cell, value, distance) for the agent's own cell and every empty cell within vision."""
        sites = [(ant.cell, self.model.welfare(ant.cell), 0.0)]
        for cell in ant.cell.get_neighborhood(radius=ant.vision):
            if cell.is_empty:
                sites.append((cell, self.model.welfare(cell), self.cell_dist(ant.cell, cell)))
        return sites

    def find_dest(self, ant: Ant) -> Cell:
        sites = self.candidate_sites(ant)

        max_value = max(value for _, value, _ in sites)
        valuable = [(cell, dist) for cell, value, dist in sites if value == max_value]

        shortest_dist = min(dist for _, dist in valuable)
        near_dests = [cell for cell, dist in valuable if dist == shortest_dist]

        return self.model.random.choice(near_dests)

    def decided_move(self, ant: Ant):
        decision: MovementDecision = self.model.decide("movement", ant, self.build_context(ant))
        dest = self.legal_target(ant, decision.target) if decision.move else None
        if dest is None:
            logger.debug("Agent %s stays idle (decision %s)", ant.unique_id, decision)
        ant.forage(dest or ant.cell)

    def legal_target(self, ant: Ant, target: tuple[int, int] | None) -> Cell | None:
        """The target cell when it is in bounds, empty and within vision, None otherwise."""
        if target is None:
            return None
        x, y = target
        if not (0 <= x < self.width and 0 <= y < self.height):
            return None
        cell = self.model.grid[(x, y)]
        if not cell.is_empty:
            return None
        visible = {c.coordinate for c in ant.cell.get_neighborhood(radius=ant.vision)}
        return cell if cell.coordinate in visible else None

    def build_context(self, ant: Ant) -> dict[str, Any]:
        sites = sorted(self.candidate_sites(ant), key=lambda site: (-site[1], site[2]))
        context = ant.context()
        context["visible_cells"] = [
            {"position": list(cell.coordinate), "value": round(value, 2), "distance": round(dist, 2)}
            for cell, value, dist in sites
        ]
        context["neighbours"] = [
            {"id": other.unique_id, "sugar": round(other.sugar, 2), "age": other.age, "sex": other.sex.value,
             "position": list(other.cell.coordinate)}
            for cell in ant.cell.get_neighborhood(radius=ant.vision) for other in cell.agents
        ]
        return context


class ReplacementRule(AgentRule):
    """
    Agent replacement rule R [a, b]: When an agent dies it is replaced by an agent of age 0 having random genetic
    attributes, random position on the sugarscape, random initial endowment, and a maximum age randomly selected from
    the range [a, b]. (p. 32-33)
    """
    death_order = 1

    def __init__(self, a, b):
        super().__init__()
        self.max_age_range = (a, b)

    def setup_genes(self, gene_generator: GeneGenerator):
        gene_generator.set_trait("max_age", self.max_age_range)

    def handle_death(self, ant, cause):
        for new_ant in self.model.generate_ants(1):
            logger.debug("Agent %s replaced by %s", ant.unique_id, new_ant.unique_id)
