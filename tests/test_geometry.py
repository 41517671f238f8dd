import math

import pytest

from ui.utils.geometry import (
    circle_position,
    client_position,
    compute_radius,
    curve_control,
    path_between,
    radial_positions,
)


def test_first_slot_is_at_the_top():
    x, y = circle_position(400, 100, 0, 4)
    assert x == pytest.approx(200)
    assert y == pytest.approx(100)


def test_slots_go_clockwise():
    points = radial_positions(4, 400, 100)
    assert points[1] == pytest.approx((300, 200))
    assert points[2] == pytest.approx((200, 300))
    assert points[3] == pytest.approx((100, 200))


def test_radius_fits_nodes():
    r = compute_radius(4, 64, padding=0)
    assert r == pytest.approx(64 / (2 * math.sin(math.pi / 4)))
    assert compute_radius(1, 64) == 200


def test_client_sits_outside_ring():
    cx, cy = client_position(400, 100)
    assert math.hypot(cx - 200, cy - 200) > 100


def test_curve_control_is_perpendicular_offset():
    cx, cy = curve_control((0, 0), (100, 0), curve=10)
    assert (cx, cy) == pytest.approx((50, 10))
    assert path_between((0, 0), (100, 0), curve=10) == "M 0.0 0.0 Q 50.0 10.0 100.0 0.0"


def test_curve_control_degenerate_segment():
    assert curve_control((5, 5), (5, 5)) == pytest.approx((5, 5))
