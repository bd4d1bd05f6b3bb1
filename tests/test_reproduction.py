"""Tests for agent reproduction."""
import numpy as np
import pytest

from conftest import make_model, place_ant
from decisions import CallbackDecisionProvider
from errors import DecisionValidationError
from reproduction import ReproductionRule, max_matings
from rules import Sex


def couple(model, **kwargs):
    male = place_ant(model, (2, 2), sugar=10, age=20, sex=Sex.MALE, init_endowment=10, **kwargs)
    female = place_ant(model, (2, 3), sugar=10, age=20, sex=Sex.FEMALE, init_endowment=10, **kwargs)
    return male, female


class TestMaxMatings:
    @pytest.mark.parametrize("sugar, expected", [(10, 1), (20, 2), (40, 3), (5, 0), (0, 0)])
    def test_halvings_of_endowment(self, sugar, expected, model_factory, ant_factory):
        model = model_factory()
        ant = ant_factory(model, (0, 0), sugar=sugar, init_endowment=10)
        assert max_matings(ant) == expected


class TestReproduction:
    def test_child_gets_half_of_each_endowment(self):
        rule = ReproductionRule()
        model = make_model([rule])
        male, female = couple(model)
        rule.apply_to_agent(male)
        assert model.births == 1
        child = model.get_ant(male.children[0])
        assert female.children == male.children
        assert child.sugar == 10
        assert child.init_endowment == 10
        assert male.sugar == 5
        assert female.sugar == 5
        assert child.age == 0
        assert child.metabolism == 1
        assert len(child.culture) == model.culture_length
        assert len(child.immunity) == model.immunity_length
        assert child.diseases == []
        near = {c.coordinate for c in male.cell.neighborhood} | {c.coordinate for c in female.cell.neighborhood}
        assert child.cell.coordinate in near

    def test_too_young_agents_do_not_mate(self):
        rule = ReproductionRule()
        model = make_model([rule])
        male, female = couple(model)
        female.age = 5
        rule.apply_to_agent(male)
        assert model.births == 0

    def test_poor_agents_do_not_mate(self):
        rule = ReproductionRule()
        model = make_model([rule])
        male, female = couple(model)
        female.sugar = 9
        rule.apply_to_agent(male)
        assert model.births == 0

    def test_same_sex_does_not_mate(self):
        rule = ReproductionRule()
        model = make_model([rule])
        a = place_ant(model, (2, 2), sugar=10, age=20, sex=Sex.FEMALE)
        place_ant(model, (2, 3), sugar=10, age=20, sex=Sex.FEMALE)
        rule.apply_to_agent(a)
        assert model.births == 0

    def test_needs_a_free_cell(self):
        rule = ReproductionRule()
        model = make_model([rule], sugar_map=np.zeros((1, 2)))
        male = place_ant(model, (0, 0), sugar=10, age=20, sex=Sex.MALE)
        place_ant(model, (0, 1), sugar=10, age=20, sex=Sex.FEMALE)
        rule.apply_to_agent(male)
        assert model.births == 0

    def test_population_grows_by_one(self):
        rule = ReproductionRule()
        model = make_model([rule])
        male, female = couple(model)
        rule.apply_to_agent(male)
        assert len(model.agents) == 3


class TestReproductionDecisions:
    def test_provider_picks_partner(self):
        rule = ReproductionRule()
        model = make_model([rule])
        male, female = couple(model)
        provider = CallbackDecisionProvider(reproduction=lambda ctx: {"reproduce": True,
                                                                      "partner_ids": [female.unique_id]})
        model.decision_provider = provider
        rule.apply_to_agent(male)
        assert model.births == 1
        _, context = provider.calls[0]
        assert context["max_partners"] == 1
        assert [p["id"] for p in context["eligible_partners"]] == [female.unique_id]

    def test_too_many_partners(self):
        rule = ReproductionRule()
        model = make_model([rule])
        male, female = couple(model)
        model.decision_provider = CallbackDecisionProvider(
            reproduction=lambda ctx: {"reproduce": True, "partner_ids": [female.unique_id, 999]})
        with pytest.raises(DecisionValidationError) as err:
            rule.apply_to_agent(male)
        assert err.value.field == "partner_ids"
        assert err.value.agent_id == male.unique_id

    def test_unknown_partner_is_skipped(self):
        rule = ReproductionRule()
        model = make_model([rule])
        male, _ = couple(model)
        model.decision_provider = CallbackDecisionProvider(
            reproduction=lambda ctx: {"reproduce": True, "partner_ids": [999]})
        rule.apply_to_agent(male)
        assert model.births == 0
