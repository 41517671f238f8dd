import math

# Leader slot sits at the top of the ring; others follow clockwise.
START_ANGLE = -math.pi / 2


def compute_radius(n, node_size, padding=100):
    if n > 1:
        min_radius = node_size / (2 * math.sin(math.pi / n))
    else:
        min_radius = 100
    return min_radius + padding


def circle_position(container_size, radius, index, total):
    angle = START_ANGLE + 2 * math.pi * index / total
    x = container_size / 2 + radius * math.cos(angle)
    y = container_size / 2 + radius * math.sin(angle)
    return x, y


def radial_positions(total, container_size, radius):
    return [circle_position(container_size, radius, i, total) for i in range(total)]


def client_position(container_size, radius, margin=60):
    # Outside the ring, top-left corner
    offset = radius / math.sqrt(2) + margin
    c = container_size / 2
    return c - offset, c - offset


def curve_control(a, b, curve=48):
    """Control point of a quadratic curve bending ``curve`` px off the a-b line."""
    mx = (a[0] + b[0]) / 2
    my = (a[1] + b[1]) / 2
    dx = b[0] - a[0]
    dy = b[1] - a[1]
    norm = math.hypot(dx, dy) or 1
    return mx - dy / norm * curve, my + dx / norm * curve


def path_between(a, b, curve=48):
    cx, cy = curve_control(a, b, curve)
    return f"M {a[0]:.1f} {a[1]:.1f} Q {cx:.1f} {cy:.1f} {b[0]:.1f} {b[1]:.1f}"
