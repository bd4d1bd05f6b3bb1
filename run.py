import logging

import tqdm

from config import SugarscapeSettings, build_model
from culture import cultural_entropy, unique_cultures

logger = logging.getLogger(__name__)


def run(settings: SugarscapeSettings):
    model = build_model(settings)
    for _ in tqdm.tqdm(range(settings.n_steps)):
        model.step()
        if len(model.agents) == 0:
            logger.warning("Population died out at step %d", model.steps)
            break
    return model


if __name__ == '__main__':
    settings = SugarscapeSettings()
    logging.basicConfig(level=settings.log_level.upper(), format="%(asctime)s %(name)s %(levelname)s %(message)s")
    model = run(settings)
    logger.info("Final counters: %s", model.counters())
    logger.info("Gini %.3f, Moran's I %.3f, cultures %d, cultural entropy %.3f", model.gini(model),
                model.morans_i(model), unique_cultures(model), cultural_entropy(model))
