import json

import numpy as np
import pytest

from resample import heightfield_from_grid, resample_bilinear, save_heightfield


def _smooth_cells(n=10):
    ys, xs = np.mgrid[0:n, 0:n]
    return 100.0 + 3.0 * xs + 2.0 * ys + 0.5 * np.sin(xs) * np.cos(ys)


class TestResampleBilinear:
    def test_same_size_round_trip(self, grid_factory):
        cells = _smooth_cells(10)
        g = grid_factory(cells, cellsize=2.0)
        out = resample_bilinear(g, 10)
        assert out.shape == (10, 10)
        assert out.cellsize == pytest.approx(2.0)
        np.testing.assert_allclose(out.cells[1:-1, 1:-1], cells[1:-1, 1:-1], rtol=1e-6)

    def test_output_size_and_spacing(self, grid_factory):
        g = grid_factory(np.zeros((8, 16)), cellsize=1.0, origin_x=5.0, origin_y=6.0)
        out = resample_bilinear(g, 33)
        assert (out.ncols, out.nrows) == (33, 33)
        assert out.cellsize == pytest.approx(16 / 33)
        assert (out.origin_x, out.origin_y) == (5.0, 6.0)

    def test_linear_ramp_interpolates(self, grid_factory):
        ys, xs = np.mgrid[0:4, 0:4]
        g = grid_factory(10.0 * xs + ys)
        out = resample_bilinear(g, 8)
        # target (x=1, y=3) -> source (0.5, 1.5)
        assert out.cells[3, 1] == pytest.approx(10.0 * 0.5 + 1.5)
        # target (x=5, y=2) -> source (2.5, 1.0)
        assert out.cells[2, 5] == pytest.approx(25.0 + 1.0)

    def test_edge_clamps_to_last_sample(self, grid_factory):
        g = grid_factory([[0.0, 10.0], [0.0, 10.0]])
        out = resample_bilinear(g, 4)
        # target x=3 -> source 1.5: both corners clamp onto column 1
        assert out.cells[0, 3] == pytest.approx(10.0)

    def test_isolated_missing_cell_is_smoothed(self, grid_factory):
        cells = _smooth_cells(10)
        cells[4, 4] = np.nan
        out = resample_bilinear(grid_factory(cells), 10)
        assert np.isfinite(out.cells[4, 4])
        # takes its right-hand neighbour
        assert out.cells[4, 4] == pytest.approx(cells[4, 5], rel=1e-6)
        assert np.count_nonzero(np.isnan(out.cells)) == 0

    def test_missing_block_stays_missing(self, grid_factory):
        cells = _smooth_cells(10)
        cells[4:6, 4:6] = np.nan
        out = resample_bilinear(grid_factory(cells), 10)
        assert np.isnan(out.cells[4, 4])

    def test_missing_block_upsampled(self, grid_factory):
        cells = _smooth_cells(10)
        cells[4:6, 4:6] = np.nan
        out = resample_bilinear(grid_factory(cells), 20)
        # target (8, 8) and (9, 9) sample source (4, 4) and (4.5, 4.5)
        assert np.isnan(out.cells[8, 8])
        assert np.isnan(out.cells[9, 9])
        assert np.isfinite(out.cells[0, 0])

    def test_missing_bottom_pair_propagates(self, grid_factory):
        # Only the vertical blend sees the missing row; no substitution happens there.
        cells = np.ones((3, 3))
        cells[1, :] = np.nan
        out = resample_bilinear(grid_factory(cells), 3)
        assert np.isnan(out.cells[0, 0])
        assert np.isfinite(out.cells[2, 0])

    def test_size_must_be_at_least_two(self, grid_factory):
        with pytest.raises(ValueError):
            resample_bilinear(grid_factory(np.zeros((2, 2))), 1)


class TestHeightField:
    def test_normalised_with_physical_size(self, grid_factory):
        ys, xs = np.mgrid[0:6, 0:8]
        g = grid_factory(xs + ys * 0.5, cellsize=2.0)
        field = heightfield_from_grid(g, size=17)
        assert field.resolution == 17
        assert field.heights.shape == (17, 17)
        assert field.heights.dtype == np.float32
        assert field.heights.max() == pytest.approx(1.0)
        assert field.heights.min() >= 0.0
        assert field.width == pytest.approx(16.0)
        assert field.depth == pytest.approx(12.0)
        assert field.max_height == pytest.approx(float(resample_bilinear(g, 17).cells.max()))

    def test_missing_and_negative_become_zero(self, grid_factory):
        cells = np.full((4, 4), 8.0)
        cells[0, 0:2] = np.nan
        cells[3, :] = -5.0
        field = heightfield_from_grid(grid_factory(cells), size=4)
        assert not np.isnan(field.heights).any()
        assert field.heights[0, 0] == 0.0
        assert field.heights[3, 3] == 0.0
        assert field.heights[1, 1] == pytest.approx(1.0)

    def test_flat_when_nothing_positive(self, grid_factory):
        field = heightfield_from_grid(grid_factory(np.full((3, 3), -1.0)), size=5)
        assert np.all(field.heights == 0.0)

    def test_save(self, tmp_path, grid_factory):
        field = heightfield_from_grid(grid_factory(np.arange(9.0).reshape(3, 3)), size=5)
        npy = save_heightfield(field, tmp_path / "out", "site")
        assert npy.name == "site.npy"
        np.testing.assert_array_equal(np.load(npy), field.heights)
        meta = json.loads((tmp_path / "out" / "site.json").read_text(encoding="utf-8"))
        assert meta == {"resolution": 5, "width": 3.0, "max_height": field.max_height, "depth": 3.0}
