"""
Canopy Field — Light Competition
================================
Plants on a 2D grid compete for sunlight. Every tick:

  1. Light pass:   all leaves of all plants are sorted top-down and swept once;
                   each leaf harvests the light left under it, then casts its
                   own shadow. Self-shading and neighbor shading both fall out
                   of the single global order.
  2. Plant ticks:  aging, germination, toppling, growth, maintenance, death
  3. Reproduction: mature plants scatter mutated seeds onto free cells
  4. Germination:  seeds count down, then sprout or expire
  5. Cleanup:      dead plants are tallied by cause and leave the grid

Tall canopies win light but pay for trunk and leaf mass; mature plants that
never filled out their genetic potential pay a maintenance premium.
"""

import itertools
import math
import time
from collections import defaultdict, deque

import numpy as np

from canopy_genome import GENE_COUNT, TRAIT_DEFS, decode, mutate, random_genome
from canopy_grid import SEED_RESERVED, Grid
from canopy_plant import DEATH_CAUSES, GrowthStage, Plant, Seed


# ─────────────────────────────────────────────────────
# Configuration
# ─────────────────────────────────────────────────────

class _Settings:
    """Class-attribute defaults, overridable per instance by keyword."""

    def __init__(self, **overrides):
        for name, value in overrides.items():
            if name not in self.names():
                raise TypeError(f"{type(self).__name__} has no setting {name!r}")
            setattr(self, name, value)

    def as_dict(self):
        return {name: getattr(self, name) for name in self.names()}

    @classmethod
    def names(cls):
        return [name for name, value in vars(cls).items()
                if not name.startswith("_") and not callable(value)
                and not isinstance(value, (classmethod, staticmethod, property))]


class Config(_Settings):
    # Grid
    grid_width = 256
    grid_height = 256

    # Population
    initial_population = 50
    max_population = 500
    initial_energy = 50.0
    initial_height = 1.0            # founders skip germination
    sprout_height = 0.5             # height of a freshly germinated seedling

    # Reproduction
    mutation_rate = 0.02
    max_seed_age = 150              # seeds older than this rot in the ground
    reproduction_interval_fraction = 0.05   # seed events every 5% of max age

    # Run
    total_timesteps = 5000
    report_interval = 100
    random_seed = 42
    stats_history_length = 1000     # per-tick stats rows kept in memory

    def validate(self):
        for name in ("grid_width", "grid_height"):
            value = getattr(self, name)
            if not isinstance(value, (int, np.integer)) or value <= 0:
                raise ValueError(f"{name} must be a positive integer, got {value!r}")
        if self.max_population <= 0:
            raise ValueError(f"max_population must be positive, got {self.max_population!r}")
        if self.initial_population < 0:
            raise ValueError(f"initial_population must be >= 0, got {self.initial_population!r}")
        if self.mutation_rate < 0 or not math.isfinite(self.mutation_rate):
            raise ValueError(f"mutation_rate must be finite and >= 0, got {self.mutation_rate!r}")
        if self.max_seed_age <= 0:
            raise ValueError(f"max_seed_age must be positive, got {self.max_seed_age!r}")
        if not 0 < self.reproduction_interval_fraction <= 1:
            raise ValueError("reproduction_interval_fraction must be in (0, 1], "
                             f"got {self.reproduction_interval_fraction!r}")
        if self.initial_energy <= 0:
            raise ValueError(f"initial_energy must be positive, got {self.initial_energy!r}")
        for name in ("initial_height", "sprout_height"):
            value = getattr(self, name)
            if not 0 < value < math.inf:
                raise ValueError(f"{name} must be positive and finite, got {value!r}")
        if self.stats_history_length <= 0:
            raise ValueError(f"stats_history_length must be positive, got {self.stats_history_length!r}")
        return self


class Tuning(_Settings):
    """Economy constants. Any of them may change between ticks."""

    energy_scale = 0.01             # harvested light → energy
    maintenance_rate = 0.02         # energy per unit biomass per tick
    growth_cost_rate = 0.05         # energy per cm of height per cm of girth
    topple_base_chance = 0.01       # per-tick topple chance of a fully top-heavy trunk
    unrealized_penalty = 1.0        # maintenance premium for unexpressed potential

    # Biomass scales
    trunk_mass_scale = 0.02
    leaf_mass_scale = 0.001
    branch_mass_scale = 0.002

    seed_dispersal_scale = 0.5      # dispersal radius per cm of height per unit seed range

    def __init__(self, **overrides):
        super().__init__(**overrides)
        self.validate()

    def validate(self):
        for name in self.names():
            self.set(name, getattr(self, name))
        return self

    def set(self, name, value):
        if name not in self.names():
            raise KeyError(f"unknown tuning constant {name!r}")
        value = float(value)
        if value < 0 or not math.isfinite(value):
            raise ValueError(f"{name} must be finite and >= 0, got {value!r}")
        setattr(self, name, value)


# ─────────────────────────────────────────────────────
# Simulation
# ─────────────────────────────────────────────────────

class Simulation:
    def __init__(self, cfg=None, tuning=None, rng=None,
                 on_plant_added=None, on_plant_removed=None):
        self.cfg = (cfg or Config()).validate()
        self.tuning = (tuning or Tuning()).validate()
        self.rng = rng if rng is not None else np.random.default_rng(self.cfg.random_seed)
        self.on_plant_added = on_plant_added
        self.on_plant_removed = on_plant_removed

        self.grid = Grid(self.cfg.grid_width, self.cfg.grid_height)
        self.plants = []
        self.seeds = []
        self.tick = 0
        self.death_counts = {cause: 0 for cause in DEATH_CAUSES}
        self.stats_history = deque(maxlen=self.cfg.stats_history_length)
        self._ids = itertools.count()

        self._spawn_founders()

    def _spawn_founders(self):
        c = self.cfg
        for _ in range(c.initial_population):
            x = int(self.rng.integers(0, self.grid.width))
            y = int(self.rng.integers(0, self.grid.height))
            if self.grid.is_occupied(x, y):
                continue
            self.spawn_plant(x, y, random_genome(self.rng), c.initial_energy,
                             height=c.initial_height)

    # ── Population edits ──

    def spawn_plant(self, x, y, genes, energy, generation=0, height=None):
        """Place a live seedling on a free cell; returns None if the cell is taken."""
        if self.grid.is_occupied(x, y):
            return None
        plant = Plant(next(self._ids), x, y, genes, energy, generation)
        plant.stage = GrowthStage.SEEDLING
        plant.height = self.cfg.initial_height if height is None else height
        self.plants.append(plant)
        self.grid.occupy(plant.x, plant.y, plant.id)
        if self.on_plant_added is not None:
            self.on_plant_added(plant)
        return plant

    def sow_seed(self, x, y, genes, energy, generation=0, germination_timer=None):
        """Reserve a free cell for a pending seed; returns None if the cell is taken."""
        if self.grid.is_occupied(x, y):
            return None
        if germination_timer is None:
            germination_timer = decode(genes).germination_speed
        seed = Seed(x, y, genes, energy, generation, germination_timer)
        self.seeds.append(seed)
        self.grid.occupy(x, y, SEED_RESERVED)
        return seed

    # ── Queries ──

    @property
    def living_count(self):
        return sum(1 for p in self.plants if p.is_alive)

    @property
    def seed_count(self):
        return len(self.seeds)

    @staticmethod
    def leaf_positions(plant):
        return plant.leaf_positions()

    def reproduction_interval(self, plant):
        return max(1, int(plant.traits.max_age * self.cfg.reproduction_interval_fraction))

    def average_traits(self):
        living = [p for p in self.plants if p.is_alive]
        if not living:
            return {d.name: 0.0 for d in TRAIT_DEFS}
        table = np.array([p.traits for p in living], dtype=np.float64)
        return dict(zip((d.name for d in TRAIT_DEFS), table.mean(axis=0).tolist()))

    # ── Main Loop ──

    def step(self):
        self.tick += 1
        self.light_pass()
        for plant in self.plants:
            plant.tick(self.tuning, self.rng)
        self._reproduce()
        self._germinate_seeds()
        self._cleanup()
        self._record_stats()

    def light_pass(self):
        """Sweep every leaf top-down; returns raw harvest per plant id."""
        grid = self.grid
        grid.clear_shadow()

        leaves = []
        for plant in self.plants:
            if not plant.is_alive or plant.stage == GrowthStage.SEED or plant.leaf_count == 0:
                continue
            for i, (x, y, z) in enumerate(plant.leaf_positions()):
                leaves.append((-z, plant.id, i, x, y, plant))
        # Ties at equal height: lower plant id first, then lower leaf index
        leaves.sort(key=lambda leaf: leaf[:3])

        harvest = defaultdict(float)
        for _, pid, _, x, y, plant in leaves:
            t = plant.traits
            lit = grid.get_lit_area(x, y, t.leaf_size, t.leaf_opacity)
            harvest[pid] += lit * (1.0 - math.exp(-t.photo_efficiency))
            grid.stamp_leaf_shadow(x, y, t.leaf_size, t.leaf_opacity)

        scale = self.tuning.energy_scale
        for plant in self.plants:
            if plant.id in harvest:
                plant.energy += harvest[plant.id] * scale
        return dict(harvest)

    def _reproduce(self):
        c = self.cfg
        for plant in self.plants:
            if not plant.is_mature or plant.age % self.reproduction_interval(plant):
                continue

            t = plant.traits
            cost = t.seed_energy
            n_seeds = int(plant.seed_budget // cost)
            reach = plant.height * self.tuning.seed_dispersal_scale * t.seed_range

            for _ in range(n_seeds):
                angle = self.rng.uniform(0.0, 2.0 * math.pi)
                dist = self.rng.uniform(0.0, reach)
                sx = math.floor(plant.x + math.cos(angle) * dist + 0.5)
                sy = math.floor(plant.y + math.sin(angle) * dist + 0.5)
                if self.grid.is_occupied(sx, sy):
                    continue
                child = mutate(plant.genes, c.mutation_rate, self.rng)
                self.sow_seed(sx, sy, child, cost, plant.generation + 1)
                plant.energy -= cost

    def _germinate_seeds(self):
        c = self.cfg
        ready, pending = [], []
        for seed in self.seeds:
            seed.age += 1
            seed.germination_timer -= 1
            if seed.age > c.max_seed_age:
                self.grid.vacate(seed.x, seed.y)
            elif seed.germination_timer <= 0:
                ready.append(seed)
            else:
                pending.append(seed)
        self.seeds = pending

        living = self.living_count
        for seed in ready:
            self.grid.vacate(seed.x, seed.y)
            if living >= c.max_population:
                continue
            if self.spawn_plant(seed.x, seed.y, seed.genes, seed.energy,
                                seed.generation, height=c.sprout_height) is not None:
                living += 1

    def _cleanup(self):
        alive = []
        for plant in self.plants:
            if plant.is_alive:
                alive.append(plant)
                continue
            self.death_counts[plant.death_cause] += 1
            if self.on_plant_removed is not None:
                self.on_plant_removed(plant)
            self.grid.vacate(plant.x, plant.y)
        self.plants = alive

    # ── Stats ──

    def _record_stats(self):
        living = [p for p in self.plants if p.is_alive]
        n = len(living)
        self.stats_history.append({
            "t": self.tick,
            "pop": n,
            "seeds": len(self.seeds),
            "avg_energy": round(float(np.mean([p.energy for p in living])), 2) if n else 0.0,
            "avg_height": round(float(np.mean([p.height for p in living])), 2) if n else 0.0,
            "max_gen": max((p.generation for p in living), default=0),
            "deaths": dict(self.death_counts),
        })


# ─────────────────────────────────────────────────────
# Run
# ─────────────────────────────────────────────────────

def run_simulation(cfg=None, tuning=None):
    cfg = cfg or Config()
    sim = Simulation(cfg, tuning)

    print("Canopy Field — light competition")
    print(f"Grid: {cfg.grid_width}×{cfg.grid_height}  |  Founders: {sim.living_count}  |  "
          f"Cap: {cfg.max_population}  |  Genes: {GENE_COUNT}  |  Mutation: {cfg.mutation_rate}")
    print(f"{'─' * 120}")

    start = time.time()
    for _ in range(cfg.total_timesteps):
        sim.step()

        if sim.tick % cfg.report_interval == 0:
            s = sim.stats_history[-1]
            d = s["deaths"]
            el = time.time() - start
            print(
                f"  t={s['t']:5d}  |  pop={s['pop']:5d}  seeds={s['seeds']:4d}  |  "
                f"e={s['avg_energy']:7.1f}  h={s['avg_height']:5.1f}  |  gen={s['max_gen']:4d}  |  "
                f"deaths energy={d['energy']:5d} age={d['age']:5d} topple={d['topple']:5d} "
                f"germ={d['germination']:4d}  |  {el:.1f}s"
            )

        if sim.living_count == 0 and not sim.seeds:
            print(f"\n  *** EXTINCTION at t={sim.tick} ***")
            break

    el = time.time() - start
    print(f"{'─' * 120}")
    print(f"Done in {el:.1f}s  |  Pop: {sim.living_count}  |  Seeds: {sim.seed_count}  |  "
          f"Deaths: {sim.death_counts}")

    if sim.living_count > 0:
        avg = sim.average_traits()
        print("Avg traits — " + "  ".join(
            f"{d.name}={avg[d.name]:.2f}{d.unit}" for d in TRAIT_DEFS))
    return sim


if __name__ == "__main__":
    run_simulation()
