import numpy as np
import pytest

from terrainscopelib.cage import AXES, EDGE_OPACITY, CageRenderer, format_tick


def test_axes_start_at_origin():
    cage = CageRenderer().build(10.0, 5)
    assert set(cage.axes) == set(AXES)
    np.testing.assert_allclose(cage.axes["time"][0], [[0, 0, 0], [10, 0, 0]])
    np.testing.assert_allclose(cage.axes["amplitude"][0], [[0, 0, 0], [0, 10, 0]])
    np.testing.assert_allclose(cage.axes["frequency"][0], [[0, 0, 0], [0, 0, 10]])


def test_tick_and_label_counts():
    cage = CageRenderer().build(10.0, 4)
    for name in AXES:
        assert cage.ticks[name].shape == (5, 2, 3)
    assert len(cage.labels) == 3 * 5
    assert cage.tick_count == 4


def test_box_edges_skip_origin():
    cage = CageRenderer().build(2.0, 1)
    assert cage.edges.shape == (9, 2, 3)
    for seg in cage.edges:
        assert not np.allclose(seg[0], 0.0)
        # every edge runs along exactly one axis for the full edge length
        assert np.count_nonzero(seg[1] - seg[0]) == 1
        assert np.abs(seg[1] - seg[0]).sum() == pytest.approx(2.0)


def test_edges_are_faint():
    assert CageRenderer().build(10.0, 5).edge_opacity == EDGE_OPACITY
    assert CageRenderer(edge_opacity=0.5).build(10.0, 5).edge_opacity == 0.5


def test_labels_follow_ranges():
    cage = CageRenderer().build(10.0, 2, ranges={"time": (0.0, 3.0)})
    time_labels = [lbl.text for lbl in cage.labels if lbl.axis == "time"]
    assert time_labels == ["0", "1.5", "3"]
    amp_labels = [lbl.text for lbl in cage.labels if lbl.axis == "amplitude"]
    assert amp_labels == ["0", "0.5", "1"]


def test_format_tick():
    assert format_tick(0.0) == "0"
    assert format_tick(2.5) == "2.5"
    assert format_tick(11.026) == "11.03"


@pytest.mark.parametrize("size,ticks", [(0.0, 5), (-1.0, 5), (10.0, 0)])
def test_rejects_bad_inputs(size, ticks):
    with pytest.raises(ValueError):
        CageRenderer().build(size, ticks)
