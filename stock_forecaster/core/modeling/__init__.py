"""Modeling package exposing the forecasters and the ensemble blender."""

from ..exceptions import EmptyEnsembleError, InsufficientDataError, NoValidSplitError
from .decision_tree import (
    DEFAULT_TREE_GRID,
    RegressionTree,
    TreeArena,
    TreeHyperparameters,
    TreeSearchResult,
    evaluate_decision_tree,
    forecast_decision_tree,
    grid_search_tree,
    iter_grid,
    train_decision_tree,
)
from .ensembles import EnsembleForecast, blend_forecasts
from .forecast_result import ForecastResult, ForecastRunResult
from .sequence import (
    EarlyStopping,
    EarlyStoppingState,
    EpochLosses,
    EpochReport,
    SequenceModel,
    SequenceRegressorTrainer,
    TrainedSequenceModel,
    evaluate_sequence,
    forecast_sequence,
)
from .simulation import GBMForecast, GBMParams, evaluate_gbm, fit_gbm, forecast_gbm

__all__ = [
    "DEFAULT_TREE_GRID",
    "EarlyStopping",
    "EarlyStoppingState",
    "EmptyEnsembleError",
    "EnsembleForecast",
    "EpochLosses",
    "EpochReport",
    "ForecastResult",
    "ForecastRunResult",
    "GBMForecast",
    "GBMParams",
    "InsufficientDataError",
    "NoValidSplitError",
    "RegressionTree",
    "SequenceModel",
    "SequenceRegressorTrainer",
    "TrainedSequenceModel",
    "TreeArena",
    "TreeHyperparameters",
    "TreeSearchResult",
    "blend_forecasts",
    "evaluate_decision_tree",
    "evaluate_gbm",
    "evaluate_sequence",
    "fit_gbm",
    "forecast_decision_tree",
    "forecast_gbm",
    "forecast_sequence",
    "grid_search_tree",
    "iter_grid",
    "train_decision_tree",
]
