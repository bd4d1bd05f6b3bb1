"""Tests for disease transmission and immune response."""
import pytest

from bitset import BitVector
from conftest import make_model, place_ant
from disease import DiseaseRule
from errors import ConfigurationError


def disease_model(**kwargs):
    rule = DiseaseRule(n_diseases=1, disease_length_rng=(3, 3), initial_infections=0, **kwargs)
    return rule, make_model([rule])


class TestImmuneResponse:
    def test_immune_system_learns_disease(self):
        rule, model = disease_model()
        ant = place_ant(model, (2, 2), sugar=10)
        disease = BitVector.from_string("111")
        ant.diseases.append(disease)
        distances = []
        for _ in range(4):
            rule.immune_response()
            distances.append(ant.immunity.nearest_window(disease)[1])
        assert distances == [2, 1, 0, 0]
        assert ant.immunity.contains(disease)
        assert ant.sugar == 8

    def test_contained_disease_costs_nothing(self):
        rule, model = disease_model()
        immunity = BitVector.from_string("0" * 20 + "101" + "0" * 9)
        ant = place_ant(model, (2, 2), sugar=10, immunity=immunity)
        ant.diseases.append(BitVector.from_string("101"))
        rule.immune_response()
        assert ant.sugar == 10
        assert ant.immunity == immunity


class TestTransmission:
    def test_neighbour_catches_a_copy(self):
        rule, model = disease_model()
        sick = place_ant(model, (2, 2))
        healthy = place_ant(model, (2, 3))
        disease = BitVector.from_string("110")
        sick.diseases.append(disease)
        rule.transmit()
        assert healthy.diseases == [disease]
        assert healthy.diseases[0] is not disease

    def test_no_duplicate_infections(self):
        rule, model = disease_model()
        sick = place_ant(model, (2, 2))
        other = place_ant(model, (2, 3))
        sick.diseases.append(BitVector.from_string("110"))
        other.diseases.append(BitVector.from_string("110"))
        rule.transmit()
        assert len(sick.diseases) == 1
        assert len(other.diseases) == 1

    def test_distant_agents_stay_healthy(self):
        rule, model = disease_model()
        sick = place_ant(model, (0, 0))
        healthy = place_ant(model, (4, 4))
        sick.diseases.append(BitVector.from_string("110"))
        rule.transmit()
        assert healthy.diseases == []


class TestSetup:
    def test_new_agents_are_infected(self):
        rule = DiseaseRule(n_diseases=3, disease_length_rng=(2, 5), initial_infections=2)
        model = make_model([rule], n_agents=5)
        assert len(rule.diseases) == 3
        assert all(2 <= len(d) <= 5 for d in rule.diseases)
        assert all(len(ant.diseases) == 2 for ant in model.agents)

    def test_diseases_must_fit_the_immune_system(self):
        with pytest.raises(ConfigurationError):
            make_model([DiseaseRule(disease_length_rng=(2, 40))])

    def test_invalid_parameters(self):
        with pytest.raises(ConfigurationError):
            DiseaseRule(n_diseases=-1)
