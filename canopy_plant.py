"""
Canopy Field — Plant
====================
One sessile individual: fixed position and genome, mutable life state.

Life cycle:

  SEED ──countdown 0──▶ SEEDLING ──height > 1──▶ GROWING ──▶ MATURE ──▶ DEAD
                                   (≥ 90% max height or maturity age)

Any living stage can also die of starvation ("energy"), old age ("age"),
structural failure ("topple"), or, while still a seed, of running dry
before sprouting ("germination").

Energy is the only currency. Growth and leaves are paid only when strictly
affordable; germination burn and maintenance are unconditional, so those are
the only ways energy reaches zero.
"""

import math
from dataclasses import dataclass
from enum import IntEnum

import numpy as np

from canopy_genome import decode


class GrowthStage(IntEnum):
    SEED = 0
    SEEDLING = 1
    GROWING = 2
    MATURE = 3
    DEAD = 4


DEATH_CAUSES = ("energy", "age", "topple", "germination")

GOLDEN_ANGLE = math.pi * (3.0 - math.sqrt(5.0))

# Germination: total energy burned over a full countdown
GERMINATION_ENERGY = 10.0

# Structure: trunk girth needed per unit of height
STABILITY_COEFFICIENT = 0.1
GIRTH_EXPONENT = 2.3

# Leaves
LEAF_COST_RATE = 0.005
LEAF_BASE_FRACTION = 0.6     # lowest leaf sits at 60% of current height
CANOPY_TAPER = 0.7           # top leaf reaches out 30% of branch length

MATURE_HEIGHT_FRACTION = 0.9
SEEDLING_HEIGHT = 1.0


@dataclass
class Seed:
    """A dispersed, not yet sprouted offspring holding a reserved cell."""
    x: int
    y: int
    genes: np.ndarray
    energy: float
    generation: int
    germination_timer: int
    age: int = 0


class Plant:
    def __init__(self, plant_id, x, y, genes, energy, generation=0):
        self.id = plant_id
        self.x = int(x)
        self.y = int(y)
        self.genes = genes
        self.traits = decode(genes)
        self.generation = generation

        self.stage = GrowthStage.SEED
        self.age = 0
        self.height = 0.0
        self.leaf_count = 0
        self.energy = float(energy)
        self.biomass = 0.0
        self.germination_timer = self.traits.germination_speed
        self.death_cause = None

        self.geometry_dirty = True
        self._prev_height = 0.0
        self._prev_leaf_count = 0

    def __repr__(self):
        return (f"Plant(id={self.id}, pos=({self.x}, {self.y}), stage={self.stage.name}, "
                f"age={self.age}, h={self.height:.2f}, leaves={self.leaf_count}, "
                f"e={self.energy:.2f})")

    # ── State queries ──

    @property
    def is_alive(self):
        return self.stage != GrowthStage.DEAD

    @property
    def is_mature(self):
        return self.stage == GrowthStage.MATURE

    @property
    def can_grow(self):
        return self.stage in (GrowthStage.SEEDLING, GrowthStage.GROWING)

    @property
    def seed_budget(self):
        # Mature plants keep half their biomass worth of energy in reserve
        if not self.is_mature:
            return 0.0
        return max(0.0, self.energy - self.biomass * 0.5)

    @property
    def stability_ratio(self):
        if self.height <= 0:
            return math.inf
        return self.traits.trunk_girth / (self.height * STABILITY_COEFFICIENT)

    def topple_probability(self, tuning):
        ratio = self.stability_ratio
        if ratio >= 1.0:
            return 0.0
        return (1.0 - ratio) ** 2 * tuning.topple_base_chance

    @property
    def leaf_interval(self):
        return max(1, self.traits.maturity_age // self.traits.leaf_count)

    def compute_biomass(self, tuning):
        t = self.traits
        girth_term = t.trunk_girth ** GIRTH_EXPONENT
        trunk = tuning.trunk_mass_scale * girth_term * self.height
        leaves = tuning.leaf_mass_scale * self.leaf_count * t.leaf_size ** 3
        branches = tuning.branch_mass_scale * self.leaf_count * t.branch_length * girth_term
        return trunk + leaves + branches

    def maintenance_multiplier(self, tuning):
        """Mature plants pay extra for genetic potential they never expressed."""
        if not self.is_mature:
            return 1.0
        t = self.traits
        realized = 0.5 * (min(1.0, self.height / t.max_height)
                          + min(1.0, self.leaf_count / t.leaf_count))
        return 1.0 + (1.0 - realized) * tuning.unrealized_penalty

    def leaf_positions(self):
        """Leaf centers (x, y, z): a spiral that climbs and narrows toward the top.

        Depends only on plant state, so the light pass and any renderer agree
        on where every leaf is.
        """
        n = self.leaf_count
        if n <= 0:
            return []
        step = 2.0 * math.pi / n
        offset = (self.id * GOLDEN_ANGLE) % (2.0 * math.pi)
        reach = self.traits.branch_length
        positions = []
        for i in range(n):
            t = 1.0 if n == 1 else i / (n - 1)
            angle = offset + step * i
            radius = reach * (1.0 - CANOPY_TAPER * t)
            positions.append((
                self.x + math.cos(angle) * radius,
                self.y + math.sin(angle) * radius,
                self.height * (LEAF_BASE_FRACTION + (1.0 - LEAF_BASE_FRACTION) * t),
            ))
        return positions

    # ── Transitions ──

    def _set_stage(self, stage):
        if stage != self.stage:
            self.stage = stage
            self.geometry_dirty = True

    def _die(self, cause):
        if not self.is_alive:
            raise RuntimeError(f"plant {self.id} is already dead ({self.death_cause})")
        self._set_stage(GrowthStage.DEAD)
        self.death_cause = cause

    def tick(self, tuning, rng):
        if not self.is_alive:
            return

        self.age += 1
        if self.age >= self.traits.max_age:
            self._die("age")
            return

        if self.stage == GrowthStage.SEED:
            self.energy -= GERMINATION_ENERGY / self.traits.germination_speed
            self.germination_timer -= 1
            if self.energy <= 0:
                self._die("germination")
            elif self.germination_timer <= 0:
                self._set_stage(GrowthStage.SEEDLING)
            return

        p_topple = self.topple_probability(tuning)
        if p_topple > 0 and rng.random() < p_topple:
            self._die("topple")
            return

        if self.can_grow:
            self._grow(tuning)
            self._advance_stage()

        self.biomass = self.compute_biomass(tuning)
        self.energy -= self.biomass * tuning.maintenance_rate * self.maintenance_multiplier(tuning)
        if self.energy <= 0:
            self._die("energy")

        if self.height != self._prev_height or self.leaf_count != self._prev_leaf_count:
            self.geometry_dirty = True
            self._prev_height = self.height
            self._prev_leaf_count = self.leaf_count

    def _advance_stage(self):
        t = self.traits
        if self.height >= t.max_height * MATURE_HEIGHT_FRACTION or self.age >= t.maturity_age:
            self._set_stage(GrowthStage.MATURE)
        elif self.stage == GrowthStage.SEEDLING and self.height > SEEDLING_HEIGHT:
            self._set_stage(GrowthStage.GROWING)

    def _grow(self, tuning):
        t = self.traits

        gap = t.max_height - self.height
        if gap > 0:
            growth = min(t.growth_rate, gap)
            cost = growth * t.trunk_girth * tuning.growth_cost_rate
            if self.energy > cost:
                self.height += growth
                self.energy -= cost

        if self.leaf_count < t.leaf_count and self.age % self.leaf_interval == 0:
            cost = t.leaf_size ** 3 * LEAF_COST_RATE
            if self.energy > cost:
                self.leaf_count += 1
                self.energy -= cost
