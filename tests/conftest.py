"""
Shared test configuration.

Models built here start without random agents on an explicit sugar map, so every test places exactly the agents it
needs with `place_ant`.
"""
import numpy as np
import pytest

from bitset import BitVector
from core import Ant, SugarScape
from rules import Sex


def make_model(agent_rules=(), env_rules=(), sugar_map=None, **kwargs) -> SugarScape:
    if sugar_map is None:
        sugar_map = np.zeros((5, 5))
    kwargs.setdefault("seed", 1)
    kwargs.setdefault("n_agents", 0)
    return SugarScape((list(env_rules), list(agent_rules)), sugar_map=sugar_map, **kwargs)


def place_ant(model, pos, *, sugar=None, age=0, metabolism=1, vision=1, max_age=100, init_endowment=10,
              sex=Sex.MALE, culture=None, immunity=None, traits=None) -> Ant:
    if culture is None:
        culture = BitVector([False] * model.culture_length)
    if immunity is None:
        immunity = BitVector([False] * model.immunity_length)
    ant = Ant(model, model.grid[pos], culture=culture, immunity=immunity, traits=traits, metabolism=metabolism,
              vision=vision, max_age=max_age, init_endowment=init_endowment, sex=sex)
    if sugar is not None:
        ant.sugar = sugar
    ant.age = age
    return ant


def red(model) -> BitVector:
    return BitVector([True] * model.culture_length)


@pytest.fixture
def model_factory():
    return make_model


@pytest.fixture
def ant_factory():
    return place_ant
