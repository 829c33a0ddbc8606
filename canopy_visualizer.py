"""
Canopy Field — Live Visualizer
==============================
Runs the simulation and renders a top-down view using Pygame.

Usage:
    pip install -e .
    python canopy_visualizer.py

Controls:
    SPACE      — Pause / Resume
    UP / DOWN  — Step through speeds (1, 3, 10, 30, 100, 300, 1000 ticks/frame)
    S          — Toggle shade overlay
    V          — Cycle plant coloring: Stage → Height → Generation → Energy
    R          — Reset simulation
    Q / ESC    — Quit

The viewer only reads simulation state. It keeps its own sprite per plant,
created and dropped through the simulation's added/removed callbacks, and
rebuilds a sprite only when the plant reports changed geometry.
"""

import sys
import time as _time

import numpy as np
import pygame

from canopy_field import Config, Simulation
from canopy_genome import describe
from canopy_plant import GrowthStage


# ═══════════════════════════════════════════════════════════════════════════════
# VISUALIZER CONFIG
# ═══════════════════════════════════════════════════════════════════════════════

GRID_PIXELS = 768         # longest grid side on screen
STATS_WIDTH = 340
FPS = 60
SPEED_STEPS = [1, 3, 10, 30, 100, 300, 1000]

BG_COLOR = (12, 10, 6)
COLOR_MODES = ["stage", "height", "generation", "energy"]

STAGE_COLORS = {
    GrowthStage.SEED:     (120, 100, 60),
    GrowthStage.SEEDLING: (170, 230, 120),
    GrowthStage.GROWING:  (70, 200, 90),
    GrowthStage.MATURE:   (30, 120, 50),
    GrowthStage.DEAD:     (90, 70, 50),
}


# ═══════════════════════════════════════════════════════════════════════════════
# COLOR UTILITIES
# ═══════════════════════════════════════════════════════════════════════════════

SHADE_SATURATION = 2.0    # stacked opacity drawn as darkest shade


def make_colormap(keypoints):
    """256-entry RGB lookup table interpolated between (position, r, g, b) stops."""
    stops = np.asarray(keypoints, dtype=np.float64)
    t = np.linspace(0.0, 1.0, 256)
    return np.stack([np.interp(t, stops[:, 0], stops[:, c]) for c in (1, 2, 3)],
                    axis=1).astype(np.uint8)

# Sunlit soil → deep shade
SHADE_CMAP = make_colormap([
    (0.0, 200, 180, 110),
    (0.3, 120, 110,  60),
    (0.6,  50,  60,  30),
    (1.0,  10,  20,  10),
])

GRADIENT_CMAP = make_colormap([
    (0.0,  40,  60, 200),
    (0.5,  60, 200,  90),
    (1.0, 250, 230,  70),
])


def render_heatmap(field, cmap, vmin=0.0, vmax=1.0):
    # np.interp clamps values outside [vmin, vmax] to the end colors
    return cmap[np.interp(field, (vmin, vmax), (0, 255)).astype(np.uint8)]


def shade_surface(shadow, scale):
    """Shadow accumulator as a pygame surface, one scale×scale block per cell."""
    rgb = render_heatmap(shadow, SHADE_CMAP, vmax=SHADE_SATURATION)
    cells = pygame.surfarray.make_surface(np.ascontiguousarray(rgb.swapaxes(0, 1)))
    return pygame.transform.scale(cells, (cells.get_width() * scale, cells.get_height() * scale))


def gradient_color(value):
    idx = int(np.clip(value, 0.0, 1.0) * 255)
    return tuple(int(c) for c in GRADIENT_CMAP[idx])


def plant_color(plant, color_mode, max_gen=1):
    if color_mode == "stage":
        return STAGE_COLORS[plant.stage]
    if color_mode == "height":
        return gradient_color(plant.height / plant.traits.max_height)
    if color_mode == "generation":
        return gradient_color(plant.generation / max(max_gen, 1))
    if color_mode == "energy":
        return gradient_color(plant.energy / 200.0)
    raise ValueError(f"unknown color mode {color_mode!r}")


# ═══════════════════════════════════════════════════════════════════════════════
# PLANT SPRITES
# ═══════════════════════════════════════════════════════════════════════════════

class PlantSprites:
    """Per-plant leaf dots in grid space, maintained through sim callbacks."""

    def __init__(self):
        self.plants = {}
        self.leaves = {}
        self.rebuilds = 0

    def add(self, plant):
        self.plants[plant.id] = plant
        self.leaves[plant.id] = []

    def remove(self, plant):
        self.plants.pop(plant.id, None)
        self.leaves.pop(plant.id, None)

    def refresh(self):
        for pid, plant in self.plants.items():
            if not plant.geometry_dirty:
                continue
            self.leaves[pid] = [(x, y) for x, y, _ in plant.leaf_positions()]
            plant.geometry_dirty = False
            self.rebuilds += 1

    def __len__(self):
        return len(self.plants)


def draw_plants(surface, sprites, scale, color_mode="stage"):
    if not sprites.plants:
        return
    max_gen = max(p.generation for p in sprites.plants.values())
    leaf_r = max(1, scale // 2)
    trunk = max(2, scale)
    for pid, plant in sprites.plants.items():
        color = plant_color(plant, color_mode, max_gen)
        for lx, ly in sprites.leaves[pid]:
            pygame.draw.circle(surface, color, (int(lx * scale), int(ly * scale)), leaf_r)
        pygame.draw.rect(surface, (110, 70, 40),
                         (plant.x * scale, plant.y * scale, trunk, trunk))


# ═══════════════════════════════════════════════════════════════════════════════
# STATS PANEL
# ═══════════════════════════════════════════════════════════════════════════════

def draw_stats_panel(surface, sim, x_offset, color_mode, steps_per_frame,
                     paused, show_shade, elapsed):
    font = pygame.font.SysFont("monospace", 12)

    panel_rect = pygame.Rect(x_offset, 0, STATS_WIDTH, surface.get_height())
    pygame.draw.rect(surface, (18, 18, 14), panel_rect)
    pygame.draw.line(surface, (70, 80, 60), (x_offset, 0), (x_offset, surface.get_height()), 2)

    lines = []
    s = sim.stats_history[-1] if sim.stats_history else {}

    lines.append(("CANOPY FIELD", (180, 230, 140)))
    lines.append(("Light competition", (130, 160, 110)))
    lines.append(("", None))

    state = "▐▐ PAUSED" if paused else f"▶ {steps_per_frame} ticks/frame"
    lines.append((f"t = {sim.tick:,}   {state}", (255, 255, 255)))
    lines.append((f"Sim time: {elapsed:.1f}s", (150, 150, 150)))
    lines.append(("", None))

    lines.append(("─── Population ───", (100, 180, 255)))
    lines.append((f"  Alive:  {sim.living_count:,}", (255, 255, 255)))
    lines.append((f"  Seeds:  {sim.seed_count:,}", (200, 180, 120)))
    if s:
        lines.append((f"  Energy: {s['avg_energy']:7.1f} avg", (180, 230, 180)))
        lines.append((f"  Height: {s['avg_height']:7.1f} avg", (180, 230, 180)))
        lines.append((f"  Gen:    {s['max_gen']}", (180, 180, 230)))
    lines.append(("", None))

    lines.append(("─── Deaths ───", (230, 120, 100)))
    for cause, count in sim.death_counts.items():
        lines.append((f"  {cause:12s} {count:6d}", (220, 170, 150)))
    lines.append(("", None))

    lines.append(("─── Avg Traits ───", (200, 180, 100)))
    avg = sim.average_traits()
    for d, value in describe(avg.values()):
        label = f"{d.name} ({d.unit})" if d.unit else d.name
        text = f"{value:6.0f}" if d.integer else f"{value:9.2f}"
        lines.append((f"  {label:26s}{text}", (210, 200, 160)))
    lines.append(("", None))

    lines.append((f"  Shade: {'on' if show_shade else 'off'}   Color: {color_mode}", (200, 200, 255)))
    lines.append(("", None))

    lines.append(("─── Controls ───", (120, 120, 120)))
    for ctrl in ["SPACE  Pause/Resume", "UP/DN  Speed +/-", "S      Toggle shade",
                 "V      Cycle colors", "R      Reset", "Q/ESC  Quit"]:
        lines.append((f"  {ctrl}", (100, 100, 110)))

    y = 10
    for text, color in lines:
        if color is None:
            y += 5
            continue
        surf = font.render(text, True, color)
        surface.blit(surf, (x_offset + 10, y))
        y += 16


# ═══════════════════════════════════════════════════════════════════════════════
# MAIN LOOP
# ═══════════════════════════════════════════════════════════════════════════════

def new_world(cfg):
    sprites = PlantSprites()
    sim = Simulation(cfg, on_plant_added=sprites.add, on_plant_removed=sprites.remove)
    return sim, sprites


def main():
    pygame.init()
    pygame.display.set_caption("Canopy Field")

    cfg = Config()
    scale = max(1, GRID_PIXELS // max(cfg.grid_width, cfg.grid_height))
    grid_w, grid_h = cfg.grid_width * scale, cfg.grid_height * scale

    screen = pygame.display.set_mode((grid_w + STATS_WIDTH, grid_h))
    clock = pygame.time.Clock()

    sim, sprites = new_world(cfg)

    paused = True
    speed_idx = 0
    color_idx = 0
    show_shade = True

    sim_start = _time.time()
    running = True

    while running:
        # ── Events ───────────────────────────────────────────────────────
        for event in pygame.event.get():
            if event.type == pygame.QUIT:
                running = False
            elif event.type == pygame.KEYDOWN:
                if event.key in (pygame.K_q, pygame.K_ESCAPE):
                    running = False
                elif event.key == pygame.K_SPACE:
                    paused = not paused
                elif event.key == pygame.K_UP:
                    speed_idx = min(speed_idx + 1, len(SPEED_STEPS) - 1)
                elif event.key == pygame.K_DOWN:
                    speed_idx = max(speed_idx - 1, 0)
                elif event.key == pygame.K_v:
                    color_idx = (color_idx + 1) % len(COLOR_MODES)
                elif event.key == pygame.K_s:
                    show_shade = not show_shade
                elif event.key == pygame.K_r:
                    sim, sprites = new_world(cfg)
                    sim_start = _time.time()

        # ── Simulation ───────────────────────────────────────────────────
        if not paused:
            for _ in range(SPEED_STEPS[speed_idx]):
                sim.step()
                if sim.living_count == 0 and not sim.seeds:
                    paused = True
                    break
        sprites.refresh()

        elapsed = _time.time() - sim_start

        # ── Render ───────────────────────────────────────────────────────
        screen.fill(BG_COLOR)
        if show_shade:
            screen.blit(shade_surface(sim.grid.shadow, scale), (0, 0))

        draw_plants(screen, sprites, scale, COLOR_MODES[color_idx])
        draw_stats_panel(screen, sim, grid_w, COLOR_MODES[color_idx],
                         SPEED_STEPS[speed_idx], paused, show_shade, elapsed)

        pygame.display.flip()
        clock.tick(FPS)

    pygame.quit()
    sys.exit()


if __name__ == "__main__":
    main()
