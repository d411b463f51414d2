import numpy as np
import pytest

from point_grid import points_to_grid


POINTS = np.array([
    [0.0, 0.0, 1.0],
    [0.5, 0.5, 3.0],
    [1.5, 0.2, 5.0],
    [0.0, 1.0, 7.0],
])


def test_mean_binning_and_orientation():
    g = points_to_grid(POINTS, 1.0)
    assert (g.ncols, g.nrows) == (2, 2)
    # row 0 is the max-Y band
    assert g.cells[0, 0] == pytest.approx(5.0)
    assert g.cells[0, 1] == pytest.approx(5.0)
    assert g.cells[1, 0] == pytest.approx(1.0)
    assert np.isnan(g.cells[1, 1])
    assert (g.origin_x, g.origin_y) == (0.0, -1.0)
    assert g.missing_count == 1


@pytest.mark.parametrize("method,expected", [("max", 7.0), ("min", 3.0)])
def test_max_and_min(method, expected):
    g = points_to_grid(POINTS, 1.0, method=method)
    assert g.cells[0, 0] == pytest.approx(expected)
    assert g.cells[1, 0] == pytest.approx(1.0)
    assert np.isnan(g.cells[1, 1])


def test_explicit_bounds_drop_outside_points(capsys):
    g = points_to_grid(POINTS, 1.0, bounds=(0.0, 0.0, 0.9, 0.9))
    assert g.shape == (1, 1)
    assert g.cells[0, 0] == pytest.approx(2.0)
    assert "Dropped 2 points" in capsys.readouterr().out


def test_single_point():
    g = points_to_grid([[10.0, 20.0, 3.5]], 0.5)
    assert g.shape == (1, 1)
    assert g.cells[0, 0] == pytest.approx(3.5)
    assert (g.origin_x, g.origin_y) == (10.0, 19.5)


@pytest.mark.parametrize(
    "points,kwargs",
    [
        (POINTS, {"cellsize": 0.0}),
        (POINTS, {"cellsize": 1.0, "method": "median"}),
        ([1.0, 2.0, 3.0], {"cellsize": 1.0}),
        (np.zeros((0, 3)), {"cellsize": 1.0}),
        (POINTS, {"cellsize": 1.0, "bounds": (1.0, 0.0, 0.0, 1.0)}),
    ],
)
def test_bad_input(points, kwargs):
    with pytest.raises(ValueError):
        points_to_grid(points, **kwargs)
