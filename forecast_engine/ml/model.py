import logging
import math
import warnings
from dataclasses import dataclass
from typing import Optional, Sequence, Tuple

import numpy as np
from sklearn.exceptions import ConvergenceWarning
from sklearn.neural_network import MLPRegressor
from sklearn.pipeline import Pipeline, make_pipeline
from sklearn.preprocessing import StandardScaler

from forecast_engine.core.exceptions import InsufficientDataError
from forecast_engine.ml.preprocess import NormalizedSeries, normalize
from forecast_engine.utils.cache import TTLCache

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TrainedModel:
    estimator: Pipeline
    bounds: NormalizedSeries
    last_index: int


def build_estimator(hidden_layers: Tuple[int, ...], max_iter: int, random_state: int) -> Pipeline:
    return make_pipeline(
        StandardScaler(),
        MLPRegressor(
            hidden_layer_sizes=hidden_layers,
            activation="relu",
            solver="lbfgs",
            max_iter=max_iter,
            random_state=random_state,
        ),
    )


def train_model(
    series: Sequence[float],
    min_points: int = 6,
    hidden_layers: Tuple[int, ...] = (16, 8),
    max_iter: int = 500,
    random_state: int = 42,
) -> TrainedModel:
    """
    Fit month index (0..n-1) -> normalized value. Raises InsufficientDataError
    when the series is shorter than ``min_points``.
    """
    if len(series) < min_points:
        raise InsufficientDataError(f"requires {min_points} points, got {len(series)}")

    normalized = normalize(series)
    X = np.arange(len(series), dtype=float).reshape(-1, 1)
    y = np.asarray(normalized.values, dtype=float)

    estimator = build_estimator(hidden_layers, max_iter, random_state)
    with warnings.catch_warnings():
        warnings.simplefilter("ignore", category=ConvergenceWarning)
        estimator.fit(X, y)

    return TrainedModel(estimator=estimator, bounds=normalized, last_index=len(series) - 1)


class RegressionPredictor:
    """
    Lazily trained feed-forward regressor for one (user, metric) pair. The
    trained model lives in the shared model cache; failures of any kind make
    the predictor report "unavailable" (None) instead of raising.
    """

    name = "regression"

    def __init__(
        self,
        user_id: str,
        metric: str,
        cache: TTLCache,
        min_points: int = 6,
        hidden_layers: Tuple[int, ...] = (16, 8),
        max_iter: int = 500,
        random_state: int = 42,
    ) -> None:
        self.user_id = user_id
        self.metric = metric
        self._cache = cache
        self._min_points = min_points
        self._hidden_layers = tuple(hidden_layers)
        self._max_iter = max_iter
        self._random_state = random_state
        self._unavailable = False

    @property
    def cache_key(self) -> Tuple[str, str]:
        return (self.user_id, self.metric)

    def train_or_get(self, series: Sequence[float]) -> Optional[TrainedModel]:
        cached = self._cache.get(self.cache_key)
        if cached is not None:
            logger.debug(f"Using cached {self.metric} model for user {self.user_id}")
            return cached
        if self._unavailable:
            return None

        try:
            model = train_model(
                series,
                min_points=self._min_points,
                hidden_layers=self._hidden_layers,
                max_iter=self._max_iter,
                random_state=self._random_state,
            )
        except InsufficientDataError as e:
            logger.warning(f"Not enough data for {self.metric} model of user {self.user_id} ({e}). Falling back.")
            self._unavailable = True
            return None
        except Exception as e:
            logger.error(f"Error training {self.metric} model for user {self.user_id}: {e}", exc_info=True)
            self._unavailable = True
            return None

        logger.info(f"Trained {self.metric} model for user {self.user_id} on {len(series)} points")
        self._cache.set(self.cache_key, model)
        return model

    def predict(self, series: Sequence[float], horizon: int) -> Optional[float]:
        model = self.train_or_get(series)
        if model is None:
            return None

        try:
            x = np.array([[float(model.last_index + horizon)]])
            normalized_value = float(model.estimator.predict(x)[0])
            value = model.bounds.denormalize(normalized_value)
        except Exception as e:
            logger.error(f"Error predicting {self.metric} with regression model: {e}", exc_info=True)
            return None

        return value if math.isfinite(value) else None
