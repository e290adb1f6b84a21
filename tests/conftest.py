import matplotlib

matplotlib.use("Agg")

import geopandas as gpd
import numpy as np
import pytest
from rasterio.transform import from_origin
from shapely.geometry import box

from ouzel.layers import LayerStack
from ouzel.model import SDM
from ouzel.training import prepare_training_data

ROWS, COLS = 30, 40
ORIGIN = (5.0, 48.0)
RES = 0.1


def make_stack(names=("BIO1", "BIO2", "BIO3"), seed=0) -> LayerStack:
    """Three layers over (5, 45, 9, 48): an east-west gradient, a north-south one and noise."""
    rng = np.random.default_rng(seed)
    rows, cols = np.mgrid[0:ROWS, 0:COLS]
    data = np.stack([
        cols / COLS * 10.0,
        rows / ROWS * 5.0,
        rng.normal(size=(ROWS, COLS)),
    ]).astype(np.float32)
    data = np.concatenate([data] * (len(names) // 3 + 1))[:len(names)]
    data[:, :5, :5] = np.nan
    return LayerStack(data.copy(), from_origin(*ORIGIN, RES, RES), names=list(names))


@pytest.fixture
def stack():
    return make_stack()


@pytest.fixture
def boundary():
    return gpd.GeoDataFrame(geometry=[box(5.0, 45.0, 9.0, 48.0)], crs="EPSG:4326")


@pytest.fixture
def presence(stack):
    """Presences in the warm east of the grid."""
    rng = np.random.default_rng(1)
    layer = np.zeros(stack.grid_shape, dtype=bool)
    layer[:, 30:] = rng.random((ROWS, COLS - 30)) < 0.4
    return layer & stack.valid_mask()


@pytest.fixture
def absence(stack, presence):
    """Absences in the cold west of the grid."""
    rng = np.random.default_rng(2)
    layer = np.zeros(stack.grid_shape, dtype=bool)
    layer[:, :20] = rng.random((ROWS, 20)) < 0.4
    return layer & stack.valid_mask() & ~presence


@pytest.fixture
def training(stack, presence, absence):
    return prepare_training_data(stack, presence, absence)


@pytest.fixture
def sdm(training, stack):
    X, y, _ = training
    return SDM(X, y, model_type="nbc", names=stack.names, random_state=0)


@pytest.fixture
def trained(sdm):
    return sdm.train()
