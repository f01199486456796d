"""CART regression tree with validation-scored hyperparameter search.

Nodes live in a flat :class:`TreeArena` and reference their children by
index, so a trained tree is a handful of parallel lists with no shared or
cyclic references. Splits minimise the size-weighted MSE of the two children;
leaves predict the mean target of their training subset.

The forecaster built on top is recursive: every step recomputes the indicator
features from the running price history, predicts the next close and feeds
that prediction back in, so errors compound over the horizon.
"""

from __future__ import annotations

import logging
import itertools
import math
from dataclasses import asdict, dataclass, field
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence

import numpy as np

from ..cancellation import CancellationToken, check_cancelled
from ..exceptions import InsufficientDataError, NoValidSplitError
from ..features import FEATURE_COLUMNS, build_supervised, latest_feature_vector
from ..metrics import ForecastMetrics, regression_metrics, root_mean_squared_error

LOGGER = logging.getLogger(__name__)

PURE_NODE_MSE = 1e-12
SPLIT_TIE_RTOL = 1e-12
DEFAULT_MAX_CONFIGS = 50

DEFAULT_TREE_GRID: Dict[str, tuple[Any, ...]] = {
    "max_depth": (3, 5, 8, 12, None),
    "min_samples_split": (2, 5, 10, 20),
    "min_samples_leaf": (1, 2, 5, 10),
    "max_features": (None, "sqrt", "log2"),
}


@dataclass(frozen=True)
class TreeHyperparameters:
    """Regularisation settings for a single candidate tree."""

    max_depth: Optional[int] = None
    min_samples_split: int = 2
    min_samples_leaf: int = 1
    max_features: str | int | None = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class TreeArena:
    """Index-addressed node storage; ``-1`` marks a missing child."""

    LEAF = -1

    def __init__(self) -> None:
        self.feature: List[int] = []
        self.threshold: List[float] = []
        self.value: List[float] = []
        self.left: List[int] = []
        self.right: List[int] = []
        self.n_samples: List[int] = []

    def __len__(self) -> int:
        return len(self.value)

    def add_node(self, value: float, n_samples: int) -> int:
        self.feature.append(self.LEAF)
        self.threshold.append(0.0)
        self.value.append(float(value))
        self.left.append(self.LEAF)
        self.right.append(self.LEAF)
        self.n_samples.append(int(n_samples))
        return len(self.value) - 1

    def set_split(self, node: int, feature: int, threshold: float, left: int, right: int) -> None:
        self.feature[node] = int(feature)
        self.threshold[node] = float(threshold)
        self.left[node] = int(left)
        self.right[node] = int(right)

    def is_leaf(self, node: int) -> bool:
        return self.left[node] == self.LEAF

    @property
    def n_leaves(self) -> int:
        return sum(1 for node in range(len(self)) if self.is_leaf(node))

    def depth(self) -> int:
        if not self.value:
            return 0
        deepest = 0
        stack = [(0, 0)]
        while stack:
            node, depth = stack.pop()
            deepest = max(deepest, depth)
            if not self.is_leaf(node):
                stack.append((self.left[node], depth + 1))
                stack.append((self.right[node], depth + 1))
        return deepest

    def apply(self, x: Sequence[float]) -> int:
        """Return the index of the leaf reached by ``x``."""

        node = 0
        while not self.is_leaf(node):
            if x[self.feature[node]] <= self.threshold[node]:
                node = self.left[node]
            else:
                node = self.right[node]
        return node


def _node_mse(values: np.ndarray) -> float:
    if values.size == 0:
        return 0.0
    return float(np.mean((values - values.mean()) ** 2))


def _resolve_max_features(max_features: str | int | None, n_features: int) -> int | None:
    """Number of features to sample per node, or ``None`` to use all of them."""

    if max_features is None:
        return None
    if isinstance(max_features, str):
        key = max_features.strip().lower()
        if key == "sqrt":
            return max(1, int(math.floor(math.sqrt(n_features))))
        if key == "log2":
            return max(1, int(math.floor(math.log2(n_features))))
        if key in {"all", "none", ""}:
            return None
        raise ValueError(f"Unsupported max_features value '{max_features}'.")
    count = int(max_features)
    if count <= 0:
        raise ValueError("max_features must be positive when given as an integer.")
    return min(count, n_features)


def _best_split(
    X: np.ndarray,
    y: np.ndarray,
    features: Sequence[int],
    min_samples_leaf: int,
) -> tuple[int, float]:
    """Find the ``(feature, threshold)`` pair minimising weighted child MSE.

    Thresholds are midpoints between consecutive unique sorted values. Sums
    are accumulated on targets centred at the node mean to keep the running
    squared sums well conditioned for price-level targets.

    Scores within a relative tolerance of the incumbent are ties and the
    earlier feature is kept; features inducing the same partition can score
    an ulp apart because their sums accumulate in different orders.
    """

    n = len(y)
    centred = y - y.mean()
    total_sum = float(centred.sum())
    total_sq = float(np.square(centred).sum())
    tie_tolerance = SPLIT_TIE_RTOL * max(total_sq / n, PURE_NODE_MSE)

    best_score = math.inf
    best_feature = -1
    best_threshold = 0.0
    for feature in features:
        column = X[:, feature]
        order = np.argsort(column, kind="mergesort")
        sorted_x = column[order]
        sorted_y = centred[order]

        left_counts = np.arange(1, n)
        boundaries = sorted_x[:-1] < sorted_x[1:]
        valid = (
            boundaries
            & (left_counts >= min_samples_leaf)
            & (n - left_counts >= min_samples_leaf)
        )
        if not valid.any():
            continue

        cum_sum = np.cumsum(sorted_y)[:-1]
        cum_sq = np.cumsum(np.square(sorted_y))[:-1]
        right_counts = n - left_counts
        left_sse = cum_sq - np.square(cum_sum) / left_counts
        right_sse = (total_sq - cum_sq) - np.square(total_sum - cum_sum) / right_counts
        weighted = np.where(valid, (left_sse + right_sse) / n, np.inf)

        position = int(np.argmin(weighted))
        score = float(weighted[position])
        if score < best_score - tie_tolerance:
            best_score = score
            best_feature = int(feature)
            best_threshold = float((sorted_x[position] + sorted_x[position + 1]) / 2)

    if best_feature < 0:
        raise NoValidSplitError(n, min_samples_leaf)
    return best_feature, best_threshold


class RegressionTree:
    """Binary regression tree with an sklearn-like ``fit`` / ``predict`` API."""

    def __init__(
        self,
        *,
        max_depth: Optional[int] = None,
        min_samples_split: int = 2,
        min_samples_leaf: int = 1,
        max_features: str | int | None = None,
        random_state: int | np.random.Generator | None = None,
    ) -> None:
        self.max_depth = max_depth
        self.min_samples_split = min_samples_split
        self.min_samples_leaf = min_samples_leaf
        self.max_features = max_features
        self.random_state = random_state
        self.tree_: TreeArena | None = None

    @classmethod
    def from_params(
        cls,
        params: TreeHyperparameters,
        *,
        random_state: int | np.random.Generator | None = None,
    ) -> "RegressionTree":
        return cls(random_state=random_state, **params.to_dict())

    # sklearn compatibility
    def get_params(self, deep: bool = True) -> Dict[str, Any]:  # pragma: no cover - trivial
        return {
            "max_depth": self.max_depth,
            "min_samples_split": self.min_samples_split,
            "min_samples_leaf": self.min_samples_leaf,
            "max_features": self.max_features,
            "random_state": self.random_state,
        }

    def set_params(self, **params: Any) -> "RegressionTree":  # pragma: no cover - trivial
        for key, value in params.items():
            if hasattr(self, key):
                setattr(self, key, value)
        return self

    @property
    def hyperparameters(self) -> TreeHyperparameters:
        return TreeHyperparameters(
            max_depth=self.max_depth,
            min_samples_split=self.min_samples_split,
            min_samples_leaf=self.min_samples_leaf,
            max_features=self.max_features,
        )

    def fit(self, X: Any, y: Any) -> "RegressionTree":
        features = np.asarray(X, dtype=float)
        targets = np.asarray(y, dtype=float).ravel()
        if features.ndim != 2:
            raise ValueError("X must be a 2D array of shape (n_samples, n_features).")
        if len(features) != len(targets):
            raise ValueError("X and y must contain the same number of samples.")
        if len(targets) == 0:
            raise InsufficientDataError("Cannot fit a regression tree without samples.", required=1, available=0)
        if self.max_depth is not None and self.max_depth < 0:
            raise ValueError("max_depth must be non-negative.")

        if isinstance(self.random_state, np.random.Generator):
            rng = self.random_state
        else:
            rng = np.random.default_rng(self.random_state)

        n_features = features.shape[1]
        subset_size = _resolve_max_features(self.max_features, n_features)
        min_leaf = max(1, int(self.min_samples_leaf))
        min_split = int(self.min_samples_split)

        arena = TreeArena()
        root_indices = np.arange(len(targets))
        root = arena.add_node(targets.mean(), len(targets))
        # Depth-first with the left child processed first.
        stack: list[tuple[int, np.ndarray, int]] = [(root, root_indices, 0)]
        while stack:
            node, indices, depth = stack.pop()
            node_y = targets[indices]
            if (
                len(indices) < min_split
                or len(indices) < 2 * min_leaf
                or (self.max_depth is not None and depth >= self.max_depth)
                or _node_mse(node_y) < PURE_NODE_MSE
            ):
                continue

            if subset_size is None:
                candidates: Sequence[int] = range(n_features)
            else:
                candidates = rng.permutation(n_features)[:subset_size].tolist()

            node_X = features[indices]
            try:
                feature, threshold = _best_split(node_X, node_y, candidates, min_leaf)
            except NoValidSplitError:
                continue

            goes_left = node_X[:, feature] <= threshold
            left_indices = indices[goes_left]
            right_indices = indices[~goes_left]
            if left_indices.size == 0 or right_indices.size == 0:
                continue

            left = arena.add_node(targets[left_indices].mean(), left_indices.size)
            right = arena.add_node(targets[right_indices].mean(), right_indices.size)
            arena.set_split(node, feature, threshold, left, right)
            stack.append((right, right_indices, depth + 1))
            stack.append((left, left_indices, depth + 1))

        self.tree_ = arena
        self.n_features_in_ = n_features
        LOGGER.debug(
            "Fitted regression tree with %s nodes (%s leaves, depth %s) on %s samples",
            len(arena),
            arena.n_leaves,
            arena.depth(),
            len(targets),
        )
        return self

    def _require_fitted(self) -> TreeArena:
        if self.tree_ is None:
            raise RuntimeError("Model has not been fitted yet.")
        return self.tree_

    def predict_one(self, x: Sequence[float]) -> float:
        arena = self._require_fitted()
        return arena.value[arena.apply(np.asarray(x, dtype=float))]

    def predict(self, X: Any) -> np.ndarray:
        arena = self._require_fitted()
        rows = np.asarray(X, dtype=float)
        if rows.ndim == 1:
            rows = rows.reshape(1, -1)
        return np.array([arena.value[arena.apply(row)] for row in rows], dtype=float)

    @property
    def n_leaves(self) -> int:
        return self._require_fitted().n_leaves

    @property
    def depth(self) -> int:
        return self._require_fitted().depth()


@dataclass
class TreeSearchResult:
    """Best tree found by :func:`grid_search_tree` and how it was chosen."""

    tree: RegressionTree
    params: TreeHyperparameters
    val_rmse: float
    evaluated: int
    scores: list[tuple[TreeHyperparameters, float]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "params": self.params.to_dict(),
            "val_rmse": self.val_rmse,
            "evaluated": self.evaluated,
        }


def iter_grid(grid: Mapping[str, Sequence[Any]] | None = None) -> list[TreeHyperparameters]:
    """Expand the Cartesian product of ``grid`` option sets.

    The first declared key varies slowest, so the default grid is walked
    depth, split, leaf, then features.
    """

    options = {key: list(values) for key, values in (grid or DEFAULT_TREE_GRID).items()}
    unknown = set(options) - set(TreeHyperparameters.__dataclass_fields__)
    if unknown:
        raise ValueError(f"Unknown tree hyperparameters: {sorted(unknown)}")
    keys = list(options)
    return [
        TreeHyperparameters(**dict(zip(keys, combo)))
        for combo in itertools.product(*(options[key] for key in keys))
    ]


def grid_search_tree(
    X_train: Any,
    y_train: Any,
    X_val: Any,
    y_val: Any,
    *,
    grid: Mapping[str, Sequence[Any]] | None = None,
    max_configs: int = DEFAULT_MAX_CONFIGS,
    random_state: int | None = None,
    progress_callback: Callable[[int, int], None] | None = None,
    cancel_token: CancellationToken | None = None,
) -> TreeSearchResult:
    """Train one tree per configuration and keep the best by validation RMSE.

    Grids larger than ``max_configs`` are sampled uniformly without
    replacement. ``random_state`` seeds both that sampling and the per-node
    feature sub-sampling; ``None`` leaves the search non-deterministic.
    """

    y_val_array = np.asarray(y_val, dtype=float).ravel()
    if y_val_array.size == 0:
        raise InsufficientDataError(
            "Grid search needs validation samples.", required=1, available=0, segment="val"
        )

    rng = np.random.default_rng(random_state)
    configs = iter_grid(grid)
    if not configs:
        raise ValueError("Hyperparameter grid has no configurations.")
    if max_configs > 0 and len(configs) > max_configs:
        picks = rng.choice(len(configs), size=max_configs, replace=False)
        configs = [configs[int(i)] for i in picks]

    total = len(configs)
    best: TreeSearchResult | None = None
    scores: list[tuple[TreeHyperparameters, float]] = []
    for index, params in enumerate(configs):
        check_cancelled(cancel_token, "decision tree grid search")
        tree = RegressionTree.from_params(params, random_state=rng).fit(X_train, y_train)
        rmse = root_mean_squared_error(y_val_array, tree.predict(X_val))
        scores.append((params, rmse))
        if best is None or rmse < best.val_rmse:
            best = TreeSearchResult(tree=tree, params=params, val_rmse=rmse, evaluated=0)
        if progress_callback is not None:
            progress_callback(index + 1, total)

    best.evaluated = total
    best.scores = scores
    LOGGER.info("Best tree params %s (val RMSE %.4f over %s configs)", best.params.to_dict(), best.val_rmse, total)
    return best


def train_decision_tree(
    train_prices: Sequence[float] | np.ndarray,
    train_volumes: Sequence[float] | np.ndarray | None,
    val_prices: Sequence[float] | np.ndarray,
    val_volumes: Sequence[float] | np.ndarray | None,
    **search_kwargs: Any,
) -> TreeSearchResult:
    """Build next-day supervised sets per segment and run :func:`grid_search_tree`."""

    X_train, y_train = build_supervised(train_prices, train_volumes)
    X_val, y_val = build_supervised(val_prices, val_volumes)
    if len(y_train) == 0:
        raise InsufficientDataError(
            "Decision tree needs at least two training prices.",
            required=2,
            available=len(np.asarray(train_prices)),
            segment="train",
        )
    LOGGER.debug(
        "Decision tree supervised sets: train=%s val=%s features=%s",
        len(y_train),
        len(y_val),
        len(FEATURE_COLUMNS),
    )
    return grid_search_tree(X_train, y_train, X_val, y_val, **search_kwargs)


def forecast_decision_tree(
    tree: RegressionTree,
    prices: Sequence[float] | np.ndarray,
    volumes: Sequence[float] | np.ndarray | None,
    horizon: int = 30,
) -> np.ndarray:
    """Recursive multi-step forecast feeding each prediction back as history."""

    if horizon <= 0:
        raise ValueError("horizon must be positive")
    history = [float(p) for p in prices]
    if not history:
        raise InsufficientDataError("Cannot forecast without price history.", required=1, available=0)
    volume_history: list[float] | None = None
    if volumes is not None and len(volumes) == len(history) and len(history) > 0:
        volume_history = [float(v) for v in volumes]

    predictions = np.empty(horizon, dtype=float)
    for step in range(horizon):
        features = latest_feature_vector(history, volume_history)
        prediction = tree.predict_one(features)
        predictions[step] = prediction
        history.append(prediction)
        if volume_history is not None:
            volume_history.append(volume_history[-1])
    return predictions


def evaluate_decision_tree(
    tree: RegressionTree,
    test_prices: Sequence[float] | np.ndarray,
    test_volumes: Sequence[float] | np.ndarray | None,
) -> ForecastMetrics:
    """One-step-ahead accuracy over the test segment."""

    X_test, y_test = build_supervised(test_prices, test_volumes)
    if len(y_test) == 0:
        return regression_metrics([], [])
    return regression_metrics(y_test, tree.predict(X_test))


__all__ = [
    "DEFAULT_TREE_GRID",
    "RegressionTree",
    "TreeArena",
    "TreeHyperparameters",
    "TreeSearchResult",
    "evaluate_decision_tree",
    "forecast_decision_tree",
    "grid_search_tree",
    "iter_grid",
    "train_decision_tree",
]
