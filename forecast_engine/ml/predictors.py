import logging
import math
from typing import Optional, Protocol, Sequence, Tuple

logger = logging.getLogger(__name__)


class Predictor(Protocol):
    name: str

    def predict(self, series: Sequence[float], horizon: int) -> Optional[float]:
        """Value ``horizon`` months (1-based) past the series, or None if unavailable."""
        ...


def is_usable(value: Optional[float]) -> bool:
    return value is not None and math.isfinite(value) and value > 0


def predict_first_available(
    predictors: Sequence[Predictor],
    series: Sequence[float],
    horizon: int,
) -> Tuple[float, str]:
    """
    Ask each predictor in order; the first strictly positive finite answer wins.
    The last predictor's answer is returned regardless, so chains should end
    with an always-available predictor.
    """
    value: Optional[float] = None
    name = ""
    for predictor in predictors:
        name = predictor.name
        value = predictor.predict(series, horizon)
        if is_usable(value):
            return float(value), name
        logger.debug(f"Predictor {name} unavailable for horizon {horizon}, trying next")

    if value is None or not math.isfinite(value):
        raise ValueError(f"no predictor produced a value for horizon {horizon}")
    return float(value), name
