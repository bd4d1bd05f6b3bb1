"""Configuration settings for the sugarscape simulation.

Uses Pydantic Settings for validation and environment variable support.
All settings can be overridden via SUGARSCAPE_* environment variables.
"""
from __future__ import annotations

from typing import Literal

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings

from combat import CombatRule
from core import SugarScape
from credit import CreditRule
from culture import CultureRule
from decisions import DecisionProvider
from disease import DiseaseRule
from errors import ConfigurationError
from inheritance import InheritanceRule
from reproduction import ReproductionRule
from rules import EnvRule, AgentRule, GrowbackRule, SeasonalGrowbackRule, PollutionRule, MovementRule, \
    ReplacementRule, Sex


class SugarscapeSettings(BaseSettings):
    """Global configuration for a sugarscape run."""

    seed: int | None = 42
    n_steps: int = 500
    log_level: str = "INFO"

    # Landscape
    width: int = Field(50, ge=1)
    height: int = Field(50, ge=1)
    torus: bool = False
    sugar_peaks: list[tuple[int, int]] = Field(default=[(10, 40), (40, 10)])
    max_sugar: int = 4
    peak_diameter: int = Field(4, ge=1)
    growth_rate: float = 1.0

    # Seasons
    enable_seasonality: bool = False
    season_duration: int = 20
    winter_growth_divisor: float = 4.0

    # Pollution
    enable_pollution: bool = False
    pollution_production_rate: float = 1.0
    pollution_consumption_rate: float = 1.0
    pollution_diffusion_interval: int = 10

    # Population
    n_agents: int = Field(100, ge=0)
    gene_mode: Literal["uniform", "norm"] = "uniform"
    metabolism_range: tuple[int, int] = (1, 4)
    vision_range: tuple[int, int] = (1, 6)
    init_endowment_range: tuple[int, int] = (5, 25)
    max_age_range: tuple[int, int] = (60, 100)
    distance_metric: Literal["euclidean", "manhattan"] = "euclidean"

    # Reproduction; without it every death is replaced
    enable_reproduction: bool = False
    male_fertility: tuple[int, int] = (12, 50)
    female_fertility: tuple[int, int] = (12, 40)
    enable_inheritance: bool = True

    # Culture
    enable_culture: bool = False
    culture_length: int = 11

    # Combat
    enable_combat: bool = False
    combat_limit: float = 50

    # Credit
    enable_credit: bool = False
    interest_rate: float = 0.10
    loan_duration: int = 10
    child_amount: float | None = None

    # Disease
    enable_disease: bool = False
    immunity_length: int = 32
    n_diseases: int = 10
    disease_length_range: tuple[int, int] = (2, 10)
    initial_infections: int = 1

    model_config = {"env_prefix": "SUGARSCAPE_"}

    @model_validator(mode="after")
    def _check_culture_length(self):
        if self.culture_length % 2 == 0:
            raise ValueError("culture_length must be odd")
        return self


def build_rules(settings: SugarscapeSettings) -> tuple[list[EnvRule], list[AgentRule]]:
    if settings.enable_seasonality:
        growback = SeasonalGrowbackRule(settings.growth_rate, settings.season_duration,
                                        settings.winter_growth_divisor)
    else:
        growback = GrowbackRule(settings.growth_rate)
    env_rules: list[EnvRule] = [growback]
    if settings.enable_pollution:
        env_rules.append(PollutionRule(settings.pollution_production_rate, settings.pollution_consumption_rate,
                                       settings.pollution_diffusion_interval))

    if settings.enable_combat:
        agent_rules: list[AgentRule] = [CombatRule(settings.combat_limit, settings.distance_metric)]
    else:
        agent_rules = [MovementRule(settings.distance_metric)]
    if settings.enable_reproduction:
        agent_rules.append(ReproductionRule())
        if settings.enable_inheritance:
            agent_rules.append(InheritanceRule())
    else:
        agent_rules.append(ReplacementRule(*settings.max_age_range))
    if settings.enable_culture:
        agent_rules.append(CultureRule())
    if settings.enable_credit:
        agent_rules.append(CreditRule(settings.interest_rate, settings.loan_duration, settings.child_amount))
    if settings.enable_disease:
        agent_rules.append(DiseaseRule(settings.n_diseases, settings.disease_length_range,
                                       settings.initial_infections))
    return env_rules, agent_rules


def build_model(settings: SugarscapeSettings, decision_provider: DecisionProvider | None = None) -> SugarScape:
    if settings.n_agents > settings.width * settings.height:
        raise ConfigurationError(f"{settings.n_agents} agents do not fit on a {settings.width}x{settings.height} grid")
    return SugarScape(
        build_rules(settings),
        decision_provider=decision_provider,
        mode=settings.gene_mode,
        metabolism_rng=settings.metabolism_range,
        vision_rng=settings.vision_range,
        init_endowment_rng=settings.init_endowment_range,
        max_age_rng=settings.max_age_range,
        dimensions=(settings.width, settings.height),
        sugar_peaks=settings.sugar_peaks,
        max_sugar=settings.max_sugar,
        peak_diameter=settings.peak_diameter,
        torus=settings.torus,
        culture_length=settings.culture_length,
        immunity_length=settings.immunity_length,
        fertility_windows={Sex.MALE: settings.male_fertility, Sex.FEMALE: settings.female_fertility},
        n_agents=settings.n_agents,
        seed=settings.seed,
    )

