"""
Canopy Field — Grid
===================
Rectangular raster shared by every plant.

  - shadow:   additive leaf opacity stamped onto each cell this tick
              (0 = full sun, >= 1 = no light left)
  - occupied: which plant's trunk stands on each cell
              (EMPTY, SEED_RESERVED, or a plant id)

Arrays are indexed [row, col] = [y, x]. Cell (x, y) has its center at the
integer point (x, y); a circular footprint covers every cell whose center lies
within the radius, boundary included.
"""

import math

import numpy as np


EMPTY = -1
SEED_RESERVED = -2


class Grid:
    def __init__(self, width, height):
        if width <= 0 or height <= 0:
            raise ValueError(f"grid dimensions must be positive, got {width}×{height}")
        self.width = int(width)
        self.height = int(height)
        self.shadow = np.zeros((self.height, self.width))
        self.occupied = np.full((self.height, self.width), EMPTY, dtype=np.int64)

    # ── Occupancy ──

    def in_bounds(self, x, y):
        return 0 <= x < self.width and 0 <= y < self.height

    def occupant(self, x, y):
        if not self.in_bounds(x, y):
            return EMPTY
        return int(self.occupied[y, x])

    def is_occupied(self, x, y):
        # Off-grid cells count as taken so placement never leaves the field
        if not self.in_bounds(x, y):
            return True
        return bool(self.occupied[y, x] != EMPTY)

    def occupy(self, x, y, owner):
        if self.in_bounds(x, y):
            self.occupied[y, x] = owner

    def vacate(self, x, y):
        if self.in_bounds(x, y):
            self.occupied[y, x] = EMPTY

    # ── Light ──

    def clear_shadow(self):
        self.shadow.fill(0.0)

    def _footprint(self, cx, cy, radius):
        """Bounding-box slices plus the boolean disc mask inside them."""
        assert radius >= 0, f"negative footprint radius {radius}"
        r = math.ceil(radius)
        x0 = max(0, math.floor(cx - r))
        y0 = max(0, math.floor(cy - r))
        x1 = min(self.width - 1, math.ceil(cx + r))
        y1 = min(self.height - 1, math.ceil(cy + r))
        if x0 > x1 or y0 > y1:
            return None
        ys, xs = np.ogrid[y0:y1 + 1, x0:x1 + 1]
        mask = (xs - cx) ** 2 + (ys - cy) ** 2 <= radius * radius
        return (slice(y0, y1 + 1), slice(x0, x1 + 1)), mask

    def footprint_size(self, cx, cy, radius):
        fp = self._footprint(cx, cy, radius)
        return 0 if fp is None else int(fp[1].sum())

    def stamp_leaf_shadow(self, cx, cy, radius, opacity):
        fp = self._footprint(cx, cy, radius)
        if fp is None:
            return
        window, mask = fp
        self.shadow[window][mask] += opacity

    def get_light(self, x, y):
        if not self.in_bounds(x, y):
            return 0.0
        return max(0.0, 1.0 - float(self.shadow[y, x]))

    def get_lit_area(self, cx, cy, radius, opacity):
        """Harvestable light under a leaf disc, given shadows stamped so far."""
        fp = self._footprint(cx, cy, radius)
        if fp is None:
            return 0.0
        window, mask = fp
        light = np.maximum(0.0, 1.0 - self.shadow[window][mask])
        return float(light.sum()) * opacity
