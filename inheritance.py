from __future__ import annotations

import logging
import math
from typing import TYPE_CHECKING

from rules import AgentRule

if TYPE_CHECKING:
    from core import Ant

logger = logging.getLogger(__name__)


class InheritanceRule(AgentRule):
    """
    Inheritance rule I: When an agent dies its wealth is equally divided among all its living children. (p. 67)

    Shares are whole units of sugar; the remainder of the division is lost. Without reproduction there are no
    children and the rule does nothing.
    """

    def handle_death(self, ant: Ant, cause: str):
        if self.model.reproduction_enabled:
            self.distribute(ant)

    def distribute(self, ant: Ant) -> float:
        if ant.sugar <= 0:
            return 0.0
        heirs = self.model.living_children(ant)
        if not heirs:
            logger.debug("Agent %s left %.2f sugar and no living children", ant.unique_id, ant.sugar)
            return 0.0
        share = math.floor(ant.sugar / len(heirs))
        for child in heirs:
            child.sugar += share
            child.total_inheritance_received += share
        self.model.total_inheritances += len(heirs)
        self.model.total_inheritance_value += share * len(heirs)
        logger.debug("Agent %s left %s sugar to each of %d children", ant.unique_id, share, len(heirs))
        return share * len(heirs)
