import sys
from pathlib import Path

import numpy as np
import pytest

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from stock_forecaster.core.exceptions import EmptyEnsembleError
from stock_forecaster.core.modeling.ensembles import blend_forecasts

FORECASTS = {
    "lstm": np.array([100.0, 101.0, 102.0]),
    "gbm": np.array([102.0, 103.0, 104.0]),
    "decision_tree": np.array([98.0, 99.0, 103.0]),
}
GBM_BAND = (np.array([95.0, 94.0, 93.0]), np.array([109.0, 112.0, 115.0]))


def test_point_is_equal_weight_mean():
    ensemble = blend_forecasts(FORECASTS)

    expected = np.mean(np.vstack(list(FORECASTS.values())), axis=0)
    np.testing.assert_allclose(ensemble.point, expected)
    assert ensemble.members == ("lstm", "gbm", "decision_tree")


def test_band_is_widened_by_model_disagreement():
    ensemble = blend_forecasts(FORECASTS, {"gbm": GBM_BAND})

    base_width = GBM_BAND[1] - GBM_BAND[0]
    width = ensemble.upper95 - ensemble.lower5
    assert np.all(width >= base_width)
    spread = np.std(np.vstack(list(FORECASTS.values())), axis=0)
    np.testing.assert_allclose(ensemble.disagreement, spread)
    np.testing.assert_allclose(width, base_width + 2 * spread)


def test_single_model_has_no_disagreement_term():
    ensemble = blend_forecasts({"gbm": FORECASTS["gbm"]}, {"gbm": GBM_BAND})

    assert ensemble.disagreement is None
    np.testing.assert_allclose(ensemble.upper95 - ensemble.lower5, GBM_BAND[1] - GBM_BAND[0])


def test_missing_bands_fall_back_to_five_percent():
    forecasts = {"lstm": np.array([100.0, 200.0])}
    ensemble = blend_forecasts(forecasts)

    np.testing.assert_allclose(ensemble.lower5, [95.0, 190.0])
    np.testing.assert_allclose(ensemble.upper95, [105.0, 210.0])


def test_first_band_is_used_when_preferred_band_is_absent():
    band = (np.array([90.0, 90.0, 90.0]), np.array([110.0, 110.0, 110.0]))
    ensemble = blend_forecasts({"lstm": FORECASTS["lstm"]}, {"other": band})

    np.testing.assert_allclose(ensemble.upper95 - ensemble.lower5, 20.0)


def test_empty_ensemble_is_rejected():
    with pytest.raises(EmptyEnsembleError):
        blend_forecasts({})


def test_mismatched_horizons_are_rejected():
    with pytest.raises(ValueError):
        blend_forecasts({"a": [1.0, 2.0], "b": [1.0]})
