"""
Decision records and the decision provider interface.

In rule-based mode the rules pick actions themselves and no provider is ever called. When a provider is attached to
the model, every action-bearing rule builds a JSON-serialisable context, asks the provider for a decision and
validates the answer here before acting on it. Any failure is raised as a DecisionError naming the rule, the agent
and the offending field; nothing is replaced by a default.
"""
from __future__ import annotations

import logging
from typing import Any, ClassVar, Mapping

from pydantic import BaseModel, ConfigDict, Field, StrictBool, StrictInt, ValidationError, model_validator

from errors import ConfigurationError, DecisionAPIError, DecisionError, DecisionSchemaError, DecisionValidationError

logger = logging.getLogger(__name__)

# pydantic error types that mean the response does not have the decision's shape at all
SCHEMA_ERROR_TYPES = {"missing", "extra_forbidden", "model_type", "dict_type", "model_attributes_type"}


class Decision(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)
    rule: ClassVar[str]


class MovementDecision(Decision):
    rule: ClassVar[str] = "movement"
    move: StrictBool
    target: tuple[StrictInt, StrictInt] | None = None

    @model_validator(mode="after")
    def _target_when_moving(self):
        if self.move and self.target is None:
            raise DecisionValidationError("move=True requires a target", field="target", value=None)
        return self


class CombatDecision(Decision):
    rule: ClassVar[str] = "combat"
    attack: StrictBool
    target_id: StrictInt | None = None

    @model_validator(mode="after")
    def _target_when_attacking(self):
        if self.attack and self.target_id is None:
            raise DecisionValidationError("attack=True requires a target_id", field="target_id", value=None)
        return self


class CreditDecision(Decision):
    rule: ClassVar[str] = "credit"
    act: StrictBool
    counterparts: list[StrictInt] = Field(default_factory=list)

    @model_validator(mode="after")
    def _counterparts_when_acting(self):
        if self.act and not self.counterparts:
            raise DecisionValidationError("act=True requires at least one counterpart", field="counterparts",
                                          value=self.counterparts)
        return self


class ReproductionDecision(Decision):
    rule: ClassVar[str] = "reproduction"
    reproduce: StrictBool
    partner_ids: list[StrictInt] = Field(default_factory=list)

    @model_validator(mode="after")
    def _partners_when_reproducing(self):
        if self.reproduce and not self.partner_ids:
            raise DecisionValidationError("reproduce=True requires at least one partner", field="partner_ids",
                                          value=self.partner_ids)
        return self


class CultureTransmission(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)
    target_id: StrictInt
    bit_index: StrictInt = Field(ge=0)


class CultureDecision(Decision):
    rule: ClassVar[str] = "culture"
    spread: StrictBool
    transmissions: list[CultureTransmission] = Field(default_factory=list)

    @model_validator(mode="after")
    def _transmissions_when_spreading(self):
        if self.spread and not self.transmissions:
            raise DecisionValidationError("spread=True requires at least one transmission", field="transmissions",
                                          value=[])
        return self


DECISION_TYPES: dict[str, type[Decision]] = {
    decision_type.rule: decision_type
    for decision_type in (MovementDecision, CombatDecision, CreditDecision, ReproductionDecision, CultureDecision)
}


class DecisionProvider:
    """
    Interface of an external decision source: one method per rule, each taking the rule's context dict and
    returning either a Decision instance or a plain mapping with the decision's fields.
    """

    def get_movement_decision(self, context: dict[str, Any]) -> MovementDecision | Mapping[str, Any]:
        raise NotImplementedError(f"{type(self).__name__} does not provide movement decisions")

    def get_combat_decision(self, context: dict[str, Any]) -> CombatDecision | Mapping[str, Any]:
        raise NotImplementedError(f"{type(self).__name__} does not provide combat decisions")

    def get_credit_decision(self, context: dict[str, Any]) -> CreditDecision | Mapping[str, Any]:
        raise NotImplementedError(f"{type(self).__name__} does not provide credit decisions")

    def get_reproduction_decision(self, context: dict[str, Any]) -> ReproductionDecision | Mapping[str, Any]:
        raise NotImplementedError(f"{type(self).__name__} does not provide reproduction decisions")

    def get_culture_decision(self, context: dict[str, Any]) -> CultureDecision | Mapping[str, Any]:
        raise NotImplementedError(f"{type(self).__name__} does not provide culture decisions")


class CallbackDecisionProvider(DecisionProvider):
    """Provider backed by one callable per rule, e.g. ``CallbackDecisionProvider(movement=ask_llm)``."""

    def __init__(self, **callbacks):
        unknown = set(callbacks) - set(DECISION_TYPES)
        if unknown:
            raise ConfigurationError(f"Unknown decision rules: {sorted(unknown)}")
        self.callbacks = callbacks
        self.calls: list[tuple[str, dict[str, Any]]] = []

    def _call(self, rule: str, context: dict[str, Any]):
        callback = self.callbacks.get(rule)
        if callback is None:
            raise NotImplementedError(f"No {rule} callback registered")
        self.calls.append((rule, context))
        return callback(context)

    def get_movement_decision(self, context):
        return self._call("movement", context)

    def get_combat_decision(self, context):
        return self._call("combat", context)

    def get_credit_decision(self, context):
        return self._call("credit", context)

    def get_reproduction_decision(self, context):
        return self._call("reproduction", context)

    def get_culture_decision(self, context):
        return self._call("culture", context)


def _unwrap(raw: Mapping[str, Any], agent_id: int) -> Mapping[str, Any]:
    # some providers answer {"<agent_id>": {...decision...}}
    if len(raw) == 1:
        (key, value), = raw.items()
        if str(key) == str(agent_id) and isinstance(value, Mapping):
            return value
    return raw


def parse_decision(rule: str, raw: Any, agent_id: int) -> Decision:
    """Validate a provider response for `rule` and return the typed Decision."""
    decision_type = DECISION_TYPES[rule]
    if isinstance(raw, decision_type):
        return raw
    if not isinstance(raw, Mapping):
        raise DecisionSchemaError(f"{rule} decision must be a mapping, got {type(raw).__name__}",
                                  rule=rule, agent_id=agent_id, value=raw)
    try:
        return decision_type.model_validate(dict(_unwrap(raw, agent_id)))
    except DecisionError as err:
        err.bind(rule, agent_id)
        raise
    except ValidationError as err:
        first = err.errors()[0]
        field = ".".join(str(part) for part in first["loc"]) or None
        kind = DecisionSchemaError if first["type"] in SCHEMA_ERROR_TYPES else DecisionValidationError
        raise kind(first["msg"], rule=rule, agent_id=agent_id, field=field, value=first.get("input")) from err


def request_decision(provider: DecisionProvider, rule: str, agent_id: int, context: dict[str, Any]) -> Decision:
    """Ask `provider` for a `rule` decision and validate it. Provider failures surface as DecisionAPIError."""
    getter = getattr(provider, f"get_{rule}_decision")
    try:
        raw = getter(context)
    except DecisionError as err:
        err.bind(rule, agent_id)
        raise
    except Exception as err:
        raise DecisionAPIError(f"Decision provider failed: {err}", rule=rule, agent_id=agent_id) from err
    decision = parse_decision(rule, raw, agent_id)
    logger.debug("Agent %s %s decision: %s", agent_id, rule, decision)
    return decision
