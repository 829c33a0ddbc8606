"""
tests/test_field.py - Simulation pipeline, configuration and end-to-end scenarios
"""

import math

import numpy as np
import pytest

from canopy_field import Config, Simulation, Tuning
from canopy_genome import TRAIT_DEFS
from canopy_grid import EMPTY, SEED_RESERVED
from canopy_plant import DEATH_CAUSES, GrowthStage


def leafy(sim, x, y, genes, height, leaves, energy=100.0):
    plant = sim.spawn_plant(x, y, genes, energy, height=height)
    plant.leaf_count = leaves
    return plant


class TestConfiguration:

    @pytest.mark.parametrize("overrides", [
        {"grid_width": 0},
        {"grid_height": -4},
        {"grid_width": 10.5},
        {"max_population": 0},
        {"initial_population": -1},
        {"mutation_rate": -0.1},
        {"max_seed_age": 0},
        {"reproduction_interval_fraction": 0.0},
        {"initial_height": 0.0},
        {"sprout_height": -3.0},
        {"sprout_height": math.nan},
        {"stats_history_length": 0},
    ])
    def test_malformed_config_fails_fast(self, overrides):
        with pytest.raises(ValueError):
            Simulation(Config(**overrides))

    def test_unknown_setting_rejected(self):
        with pytest.raises(TypeError):
            Config(grid_size=64)
        with pytest.raises(TypeError):
            Tuning(validate=1)

    def test_overrides_are_per_instance(self):
        small = Config(grid_width=16)
        assert small.grid_width == 16
        assert Config().grid_width == 256
        assert "grid_width" in Config.names()
        assert "validate" not in Config.names()

    def test_tuning_set(self):
        tuning = Tuning()
        tuning.set("energy_scale", 0.5)
        assert tuning.energy_scale == 0.5
        assert Tuning().energy_scale == 0.01
        with pytest.raises(KeyError):
            tuning.set("gravity", 1.0)
        with pytest.raises(ValueError):
            tuning.set("maintenance_rate", -1.0)
        with pytest.raises(ValueError):
            tuning.set("maintenance_rate", math.inf)

    @pytest.mark.parametrize("overrides", [
        {"energy_scale": -1.0},
        {"maintenance_rate": -5.0},
        {"topple_base_chance": math.inf},
        {"seed_dispersal_scale": math.nan},
    ])
    def test_tuning_constructor_checks_values(self, overrides):
        with pytest.raises(ValueError):
            Tuning(**overrides)

    def test_simulation_rechecks_tuning(self):
        tuning = Tuning()
        tuning.energy_scale = -1.0
        with pytest.raises(ValueError):
            Simulation(Config(grid_width=16, grid_height=16, initial_population=0), tuning)

    def test_tuning_takes_effect_next_tick(self, empty_sim, midpoint_genes):
        plant = empty_sim.spawn_plant(5, 5, midpoint_genes, 100.0)
        empty_sim.step()
        spent_default = 100.0 - plant.energy
        empty_sim.tuning.set("maintenance_rate", 2.0)
        before = plant.energy
        empty_sim.step()
        assert before - plant.energy > spent_default


class TestFounders:

    def test_founders_placed_as_seedlings(self):
        added = []
        sim = Simulation(Config(grid_width=32, grid_height=32, initial_population=30),
                         rng=np.random.default_rng(3), on_plant_added=added.append)
        assert 0 < len(sim.plants) <= 30
        assert added == sim.plants
        assert len({p.id for p in sim.plants}) == len(sim.plants)
        for plant in sim.plants:
            assert plant.stage == GrowthStage.SEEDLING
            assert plant.height == 1.0
            assert plant.energy == 50.0
            assert sim.grid.occupant(plant.x, plant.y) == plant.id

    def test_spawn_refuses_taken_cell(self, empty_sim, midpoint_genes):
        assert empty_sim.spawn_plant(3, 3, midpoint_genes, 10.0) is not None
        assert empty_sim.spawn_plant(3, 3, midpoint_genes, 10.0) is None
        assert empty_sim.spawn_plant(-1, 3, midpoint_genes, 10.0) is None
        assert len(empty_sim.plants) == 1


class TestLightPass:
    """The global top-down leaf sweep."""

    def test_isolated_leaf_harvest(self, empty_sim, midpoint_genes):
        plant = leafy(empty_sim, 32, 32, midpoint_genes, height=10.0, leaves=1)
        t = plant.traits
        (x, y, _), = plant.leaf_positions()
        cells = empty_sim.grid.footprint_size(x, y, t.leaf_size)
        harvest = empty_sim.light_pass()
        expected = t.leaf_opacity * cells * (1.0 - math.exp(-t.photo_efficiency))
        assert harvest[plant.id] == pytest.approx(expected)
        assert plant.energy == pytest.approx(100.0 + expected * empty_sim.tuning.energy_scale)

    def test_self_shading(self, empty_sim, midpoint_genes):
        plant = leafy(empty_sim, 32, 32, midpoint_genes, height=10.0, leaves=8)
        t = plant.traits
        unshaded = sum(
            t.leaf_opacity * empty_sim.grid.footprint_size(x, y, t.leaf_size)
            * (1.0 - math.exp(-t.photo_efficiency))
            for x, y, _ in plant.leaf_positions())
        harvest = empty_sim.light_pass()
        assert 0 < harvest[plant.id] < unshaded

    def test_taller_neighbor_shades_shorter(self, midpoint_genes):
        # Both runs give the short plant the same id, so its canopy is identical
        def run(a_leaves):
            sim = Simulation(Config(grid_width=64, grid_height=64, initial_population=0))
            a = leafy(sim, 32, 32, midpoint_genes, height=20.0, leaves=a_leaves)
            b = leafy(sim, 32, 34, midpoint_genes, height=5.0, leaves=4)
            return sim.light_pass(), a, b

        shaded, _, b_shaded = run(a_leaves=8)
        alone, _, b_alone = run(a_leaves=0)
        assert b_shaded.id == b_alone.id
        assert 0 < shaded[b_shaded.id] < alone[b_alone.id]
        assert b_shaded.energy < b_alone.energy

    def test_shorter_plant_does_not_shade_taller(self, midpoint_genes):
        def tall_harvest(with_short):
            sim = Simulation(Config(grid_width=64, grid_height=64, initial_population=0))
            tall = leafy(sim, 32, 32, midpoint_genes, height=20.0, leaves=8)
            leafy(sim, 32, 34, midpoint_genes, height=5.0, leaves=4 if with_short else 0)
            return sim.light_pass()[tall.id]

        assert tall_harvest(True) == pytest.approx(tall_harvest(False))

    def test_seeds_and_leafless_plants_skipped(self, empty_sim, midpoint_genes):
        bare = leafy(empty_sim, 10, 10, midpoint_genes, height=5.0, leaves=0)
        dormant = leafy(empty_sim, 40, 40, midpoint_genes, height=5.0, leaves=3)
        dormant.stage = GrowthStage.SEED
        harvest = empty_sim.light_pass()
        assert bare.id not in harvest
        assert dormant.id not in harvest
        assert empty_sim.grid.shadow.sum() == 0.0

    def test_shadow_map_reflects_every_leaf(self, empty_sim, midpoint_genes):
        plant = leafy(empty_sim, 32, 32, midpoint_genes, height=10.0, leaves=3)
        empty_sim.light_pass()
        t = plant.traits
        stamped = sum(empty_sim.grid.footprint_size(x, y, t.leaf_size)
                      for x, y, _ in empty_sim.leaf_positions(plant))
        assert empty_sim.grid.shadow.sum() == pytest.approx(stamped * t.leaf_opacity)


class TestReproduction:

    def mature(self, sim, genes, energy, biomass=0.0):
        plant = sim.spawn_plant(32, 32, genes, energy, height=20.0)
        plant.stage = GrowthStage.MATURE
        plant.biomass = biomass
        plant.age = sim.reproduction_interval(plant)
        return plant

    def test_interval_scales_with_max_age(self, empty_sim, midpoint_genes):
        plant = empty_sim.spawn_plant(1, 1, midpoint_genes, 10.0)
        assert empty_sim.reproduction_interval(plant) == 50

    def test_no_budget_no_seeds(self, empty_sim, midpoint_genes):
        # Energy below the biomass buffer
        plant = self.mature(empty_sim, midpoint_genes, energy=10.0, biomass=100.0)
        assert plant.seed_budget == 0.0
        empty_sim._reproduce()
        assert empty_sim.seeds == []
        assert plant.energy == 10.0

    def test_budget_below_seed_cost_yields_nothing(self, empty_sim, midpoint_genes):
        plant = self.mature(empty_sim, midpoint_genes, energy=30.0)
        assert 0 < plant.seed_budget < plant.traits.seed_energy
        empty_sim._reproduce()
        assert empty_sim.seeds == []

    def test_seeds_reserve_cells_and_cost_energy(self, empty_sim, midpoint_genes):
        plant = self.mature(empty_sim, midpoint_genes, energy=1000.0)
        cost = plant.traits.seed_energy
        attempts = int(plant.seed_budget // cost)
        empty_sim._reproduce()
        seeds = empty_sim.seeds
        assert 0 < len(seeds) <= attempts
        assert plant.energy == pytest.approx(1000.0 - cost * len(seeds))
        reach = plant.height * empty_sim.tuning.seed_dispersal_scale * plant.traits.seed_range
        for seed in seeds:
            assert empty_sim.grid.occupant(seed.x, seed.y) == SEED_RESERVED
            assert math.hypot(seed.x - plant.x, seed.y - plant.y) <= reach + 1
            assert seed.generation == plant.generation + 1
            assert seed.energy == cost
            assert 0 < seed.genes.min() and seed.genes.max() < 1
        assert len({(s.x, s.y) for s in seeds}) == len(seeds)

    def test_off_interval_skipped(self, empty_sim, midpoint_genes):
        plant = self.mature(empty_sim, midpoint_genes, energy=1000.0)
        plant.age += 1
        empty_sim._reproduce()
        assert empty_sim.seeds == []

    def test_immature_plants_do_not_reproduce(self, empty_sim, midpoint_genes):
        plant = self.mature(empty_sim, midpoint_genes, energy=1000.0)
        plant.stage = GrowthStage.GROWING
        empty_sim._reproduce()
        assert empty_sim.seeds == []


class TestGermination:

    def test_seed_sprouts_into_seedling(self, empty_sim, midpoint_genes):
        added = []
        empty_sim.on_plant_added = added.append
        empty_sim.sow_seed(12, 20, midpoint_genes, 35.0, generation=4, germination_timer=3)
        empty_sim.step()
        empty_sim.step()
        assert empty_sim.grid.occupant(12, 20) == SEED_RESERVED
        empty_sim.step()
        assert empty_sim.seeds == []
        (plant,) = empty_sim.plants
        assert added == [plant]
        assert (plant.x, plant.y) == (12, 20)
        assert plant.stage == GrowthStage.SEEDLING
        assert plant.height == 0.5
        assert plant.generation == 4
        assert plant.energy == 35.0
        assert empty_sim.grid.occupant(12, 20) == plant.id

    def test_expired_seed_frees_cell(self, empty_sim, midpoint_genes):
        # Viability runs out before the countdown does
        empty_sim.sow_seed(8, 8, midpoint_genes, 35.0, germination_timer=10_000)
        for _ in range(empty_sim.cfg.max_seed_age):
            empty_sim.step()
        assert empty_sim.seed_count == 1
        assert empty_sim.grid.is_occupied(8, 8)
        empty_sim.step()
        assert empty_sim.seed_count == 0
        assert not empty_sim.grid.is_occupied(8, 8)
        assert empty_sim.plants == []

    def test_population_cap_drops_seed(self, midpoint_genes):
        sim = Simulation(Config(grid_width=32, grid_height=32, initial_population=0,
                                max_population=1))
        sim.spawn_plant(1, 1, midpoint_genes, 500.0)
        sim.sow_seed(20, 20, midpoint_genes, 35.0, germination_timer=1)
        sim.step()
        assert len(sim.plants) == 1
        assert sim.seeds == []
        assert sim.grid.occupant(20, 20) == EMPTY

    def test_sow_refuses_taken_cell(self, empty_sim, midpoint_genes):
        empty_sim.spawn_plant(4, 4, midpoint_genes, 10.0)
        assert empty_sim.sow_seed(4, 4, midpoint_genes, 35.0) is None
        seed = empty_sim.sow_seed(5, 4, midpoint_genes, 35.0)
        assert seed.germination_timer == 50


class TestCleanup:

    def test_dead_plants_tallied_and_removed(self, empty_sim, midpoint_genes):
        seen_occupied = []

        def on_removed(plant):
            seen_occupied.append(empty_sim.grid.occupant(plant.x, plant.y))

        empty_sim.on_plant_removed = on_removed
        doomed = empty_sim.spawn_plant(6, 6, midpoint_genes, 1e-9)
        survivor = empty_sim.spawn_plant(30, 30, midpoint_genes, 100.0)
        empty_sim.step()
        assert empty_sim.plants == [survivor]
        assert empty_sim.death_counts == {"energy": 1, "age": 0, "topple": 0, "germination": 0}
        assert seen_occupied == [doomed.id]
        assert not empty_sim.grid.is_occupied(6, 6)
        assert doomed.death_cause == "energy"


class TestRun:
    """Multi-tick behavior of the whole field."""

    def test_same_seed_same_history(self):
        cfg = Config(grid_width=40, grid_height=40, initial_population=25, random_seed=11)
        a, b = Simulation(cfg), Simulation(cfg)
        for _ in range(120):
            a.step()
            b.step()
        assert a.stats_history == b.stats_history
        assert [(p.id, p.x, p.y, p.energy) for p in a.plants] == \
               [(p.id, p.x, p.y, p.energy) for p in b.plants]

    def test_invariants_hold_over_long_run(self):
        removed = []
        cfg = Config(grid_width=48, grid_height=48, initial_population=30, max_population=60)
        tuning = Tuning(energy_scale=0.05, seed_dispersal_scale=1.0)
        sim = Simulation(cfg, tuning, rng=np.random.default_rng(2024),
                         on_plant_removed=removed.append)
        for _ in range(300):
            sim.step()
            assert sim.living_count <= cfg.max_population
            for plant in sim.plants:
                assert plant.is_alive
                assert sim.grid.occupant(plant.x, plant.y) == plant.id
            for seed in sim.seeds:
                assert sim.grid.occupant(seed.x, seed.y) == SEED_RESERVED
                assert seed.age <= cfg.max_seed_age
            owners = sim.grid.occupied[sim.grid.occupied >= 0]
            assert sorted(owners.tolist()) == sorted(p.id for p in sim.plants)
        assert sum(sim.death_counts.values()) == len(removed)
        assert set(sim.death_counts) == set(DEATH_CAUSES)
        assert all(p.death_cause is not None for p in removed)
        assert len(sim.stats_history) == 300
        assert sim.stats_history[-1]["t"] == sim.tick == 300

    def test_stats_history_is_bounded(self):
        sim = Simulation(Config(grid_width=16, grid_height=16, initial_population=0,
                                stats_history_length=50))
        for _ in range(500):
            sim.step()
        assert len(sim.stats_history) == 50
        assert sim.stats_history[0]["t"] == 451
        assert sim.stats_history[-1]["t"] == 500

    def test_average_traits_at_midpoint(self, empty_sim, midpoint_genes):
        empty_sim.spawn_plant(2, 2, midpoint_genes, 10.0)
        empty_sim.spawn_plant(9, 9, midpoint_genes, 10.0)
        avg = empty_sim.average_traits()
        assert list(avg) == [d.name for d in TRAIT_DEFS]
        assert avg["max_height"] == pytest.approx(20.0)
        assert avg["leaf_count"] == pytest.approx(8.0)

    def test_average_traits_empty_field(self, empty_sim):
        assert all(v == 0.0 for v in empty_sim.average_traits().values())
