"""Tests for cultural transmission and tribes."""
import pytest

from bitset import BitVector
from conftest import make_model, place_ant, red
from culture import (CultureRule, Tribe, cultural_entropy, mean_hamming_distance, tribe, unique_cultures,
                     tribe_shares)
from decisions import CallbackDecisionProvider
from errors import DecisionValidationError, InvariantError


class TestTribe:
    def test_majority_of_zeros_is_blue(self):
        assert tribe(BitVector.from_string("00011")) is Tribe.BLUE
        assert tribe(BitVector.from_string("11100")) is Tribe.RED

    def test_ant_tribe(self):
        model = make_model()
        assert place_ant(model, (0, 0)).tribe is Tribe.BLUE
        assert place_ant(model, (0, 1), culture=red(model)).tribe is Tribe.RED


class TestCultureRule:
    def test_neighbour_moves_one_tag_closer(self):
        rule = CultureRule()
        model = make_model([rule])
        ant = place_ant(model, (2, 2))
        neighbour = place_ant(model, (2, 3), culture=red(model))
        rule.apply_to_agent(ant)
        assert ant.culture.hamming(neighbour.culture) == model.culture_length - 1
        assert ant.culture.count() == 0

    def test_distance_never_grows(self):
        rule = CultureRule()
        model = make_model([rule])
        ant = place_ant(model, (2, 2))
        neighbour = place_ant(model, (2, 3), culture=red(model))
        distances = [ant.culture.hamming(neighbour.culture)]
        for _ in range(40):
            rule.apply_to_agent(ant)
            distances.append(ant.culture.hamming(neighbour.culture))
        assert all(b <= a for a, b in zip(distances, distances[1:]))
        assert distances[-1] < distances[0]

    def test_lone_agent_is_unchanged(self):
        rule = CultureRule()
        model = make_model([rule])
        ant = place_ant(model, (2, 2), culture=red(model))
        rule.apply_to_agent(ant)
        assert ant.culture == red(model)

    def test_mismatched_lengths(self):
        rule = CultureRule()
        model = make_model([rule])
        ant = place_ant(model, (2, 2))
        neighbour = place_ant(model, (2, 3))
        neighbour.culture = BitVector.from_string("010")
        with pytest.raises(InvariantError):
            rule.apply_to_agent(ant)

    def test_new_agents_need_model_culture_length(self):
        model = make_model()
        with pytest.raises(InvariantError):
            place_ant(model, (0, 0), culture=BitVector.from_string("010"))


class TestCultureDecisions:
    def test_provider_chooses_bits(self):
        rule = CultureRule()
        model = make_model([rule])
        ant = place_ant(model, (2, 2))
        neighbour = place_ant(model, (2, 3), culture=red(model))
        model.decision_provider = CallbackDecisionProvider(culture=lambda ctx: {
            "spread": True,
            "transmissions": [{"target_id": neighbour.unique_id, "bit_index": 0},
                              {"target_id": 999, "bit_index": 1}],
        })
        rule.apply_to_agent(ant)
        assert neighbour.culture[0] is False
        assert neighbour.culture.count() == model.culture_length - 1

    def test_bit_index_out_of_range(self):
        rule = CultureRule()
        model = make_model([rule])
        ant = place_ant(model, (2, 2))
        neighbour = place_ant(model, (2, 3), culture=red(model))
        model.decision_provider = CallbackDecisionProvider(culture=lambda ctx: {
            "spread": True, "transmissions": [{"target_id": neighbour.unique_id, "bit_index": 11}]})
        with pytest.raises(DecisionValidationError) as err:
            rule.apply_to_agent(ant)
        assert err.value.rule == "culture"
        assert err.value.value == 11


class TestCultureStatistics:
    def test_homogeneous_population(self):
        model = make_model()
        place_ant(model, (0, 0))
        place_ant(model, (0, 1))
        assert unique_cultures(model) == 1
        assert cultural_entropy(model) == 0
        assert mean_hamming_distance(model) == 0
        assert tribe_shares(model) == {"blue": 1.0, "red": 0.0}

    def test_opposite_cultures(self):
        model = make_model()
        place_ant(model, (0, 0))
        place_ant(model, (0, 1), culture=red(model))
        assert unique_cultures(model) == 2
        assert cultural_entropy(model) == pytest.approx(1.0)
        assert mean_hamming_distance(model) == model.culture_length

    def test_empty_population(self):
        model = make_model()
        assert unique_cultures(model) == 0
        assert cultural_entropy(model) == 0
        assert mean_hamming_distance(model) == 0
