import geopandas as gpd
import numpy as np
import pytest
import rasterio
from rasterio.transform import from_origin
from shapely.geometry import box

from ouzel.layers import (
    LayerStack,
    interpolate,
    layer_urls,
    mask_layer,
    read_layer,
    stack_layers,
    trim,
)

from .conftest import COLS, ROWS, make_stack


def test_features_and_to_raster_are_inverse(stack):
    features = stack.features()
    assert features.shape == (ROWS * COLS - 25, 3)

    raster = stack.to_raster(features[:, 0])
    np.testing.assert_array_equal(np.isnan(raster), ~stack.valid_mask())
    np.testing.assert_allclose(raster[stack.valid_mask()], features[:, 0])

    bands = stack.to_raster(features)
    assert bands.shape == stack.shape


def test_bounds(stack):
    assert stack.bounds == pytest.approx((5.0, 45.0, 9.0, 48.0))


def test_cell_of(stack):
    assert stack.cell_of(5.05, 47.95) == (0, 0)
    assert stack.cell_of(8.95, 45.05) == (ROWS - 1, COLS - 1)
    assert stack.cell_of(10.0, 46.0) is None


def test_sample_at_points(stack):
    values, valid = stack.sample_at_points([(8.95, 45.05), (5.05, 47.95), (20.0, 20.0)])
    assert valid.tolist() == [True, False, False]
    np.testing.assert_allclose(values[0], stack.data[:, ROWS - 1, COLS - 1])


def test_subset_by_name_and_index(stack):
    sub = stack.subset(["BIO3", 0])
    assert sub.names == ["BIO3", "BIO1"]
    np.testing.assert_array_equal(sub.data[1], stack.data[0])


def test_names_must_match_bands():
    with pytest.raises(ValueError):
        LayerStack(np.zeros((2, 3, 3)), from_origin(0, 3, 1, 1), names=["a"])


def test_trim_crops_empty_border():
    data = np.full((1, 10, 10), np.nan, dtype=np.float32)
    data[0, 2:5, 3:8] = 1.0
    layer = LayerStack(data, from_origin(0.0, 10.0, 1.0, 1.0))

    trimmed = trim(layer)
    assert trimmed.grid_shape == (3, 5)
    assert trimmed.bounds == pytest.approx((3.0, 5.0, 8.0, 8.0))
    assert not np.isnan(trimmed.data).any()


def test_trim_without_data_raises():
    layer = LayerStack(np.full((4, 4), np.nan), from_origin(0.0, 4.0, 1.0, 1.0))
    with pytest.raises(ValueError):
        trim(layer)


def test_mask_layer(stack):
    west = gpd.GeoDataFrame(geometry=[box(5.0, 45.0, 7.0, 48.0)], crs="EPSG:4326")
    masked = mask_layer(stack, west)

    assert np.isnan(masked.data[:, :, 20:]).all()
    assert not np.isnan(masked.data[:, 10:, :20]).any()
    # the input is left untouched
    assert not np.isnan(stack.data[:, 10:, 20:]).any()


def test_interpolate_on_same_grid_keeps_values(stack):
    result = interpolate(stack, stack)
    assert result.shape == stack.shape
    np.testing.assert_allclose(result.data[:, 6:-1, 6:-1], stack.data[:, 6:-1, 6:-1], atol=1e-4)


def test_interpolate_on_coarser_grid(stack):
    coarse = LayerStack(np.zeros((1, 15, 20), dtype=np.float32), from_origin(5.0, 48.0, 0.2, 0.2))
    result = interpolate(stack.subset([0]), coarse)
    assert result.grid_shape == (15, 20)
    assert result.names == ["BIO1"]
    assert np.nanmax(result.data) <= 10.0


def test_stack_layers_union_of_missing_cells(stack):
    other = make_stack(names=("Shrubs", "Barren", "Snow/Ice"))
    other.data[:, -1, -1] = np.nan

    combined = stack_layers([stack, other])
    assert len(combined) == 6
    assert combined.names[3:] == ["Shrubs", "Barren", "Snow/Ice"]
    assert np.isnan(combined.data[:, -1, -1]).all()
    assert np.isnan(combined.data[:, 0, 0]).all()


def test_stack_layers_interpolates_other_grids(stack):
    coarse = LayerStack(np.ones((1, 15, 20), dtype=np.float32), from_origin(5.0, 48.0, 0.2, 0.2), names=["Shrubs"])
    combined = stack_layers([stack, coarse])
    assert combined.grid_shape == stack.grid_shape
    assert combined.names[-1] == "Shrubs"


def test_stack_layers_needs_layers():
    with pytest.raises(ValueError):
        stack_layers([])


def test_save_and_load(stack, tmp_path):
    path = tmp_path / "layers.tiff"
    stack.save(path)
    loaded = LayerStack.load(path)

    assert loaded.names == stack.names
    assert loaded.transform.almost_equals(stack.transform)
    np.testing.assert_array_equal(np.isnan(loaded.data), np.isnan(stack.data))
    np.testing.assert_allclose(loaded.data[~np.isnan(loaded.data)], stack.data[~np.isnan(stack.data)])


def test_read_layer_window_and_scaling(tmp_path):
    path = tmp_path / "bio1.tif"
    raw = np.full((20, 20), 2800, dtype=np.int16)
    raw[0, 0] = -9999
    with rasterio.open(
        path, "w", driver="GTiff", height=20, width=20, count=1, dtype="int16",
        crs="EPSG:4326", transform=from_origin(0.0, 20.0, 1.0, 1.0), nodata=-9999,
    ) as dst:
        dst.write(raw, 1)
        dst.scales = (0.1,)
        dst.offsets = (-273.15,)

    layer = read_layer(path, (0.0, 10.0, 5.0, 20.0), name="BIO1")

    assert layer.names == ["BIO1"]
    assert layer.grid_shape == (10, 5)
    assert np.isnan(layer.data[0, 0, 0])
    assert layer.data[0, 5, 2] == pytest.approx(6.85, abs=1e-3)


def test_layer_urls():
    chelsa = layer_urls("chelsa")
    assert len(chelsa) == 19
    assert "bio1_" in chelsa[0][0] and chelsa[0][1] == "BIO1"
    assert len(layer_urls("earthenv")) == 12
    with pytest.raises(ValueError):
        layer_urls("worldclim")
