"""
Canopy Field — Genome
=====================
Each plant carries a fixed-length vector of genes in the open interval (0, 1).
Gene i decodes into trait i of TRAIT_DEFS:

  - logit traits:  value = base * exp(k * logit(gene))
                   gene 0.5 reproduces `base`, higher gene → higher trait
  - linear traits: value = gene * base

Mutation happens in logit space, so children drift asymptotically toward the
extremes instead of piling up on a clamped boundary.
"""

from collections import namedtuple

import numpy as np
from scipy.special import expit, logit


# ─────────────────────────────────────────────────────
# Trait Table
# ─────────────────────────────────────────────────────

TraitDef = namedtuple("TraitDef", ["name", "base", "k", "unit", "integer", "linear"],
                      defaults=(False, False))

TRAIT_DEFS = (
    TraitDef("max_height",        20.0,   3.0, "cm"),
    TraitDef("growth_rate",        0.2,   2.0, "cm/tick"),
    TraitDef("trunk_girth",        2.0,   1.2, "cm"),
    TraitDef("leaf_size",          5.0,   2.0, "cm"),
    TraitDef("leaf_count",         8.0,   2.0, "", integer=True),
    TraitDef("branch_length",      8.0,   2.0, "cells"),
    TraitDef("leaf_opacity",       1.0,   0.0, "", linear=True),
    TraitDef("seed_range",         2.0,   0.0, "x", linear=True),
    TraitDef("seed_energy",       35.0,   2.0, "E"),
    TraitDef("germination_speed", 50.0,   1.5, "ticks", integer=True),
    TraitDef("photo_efficiency",   1.0,   1.5, "E/cell"),
    TraitDef("maturity_age",     150.0,   1.5, "ticks", integer=True),
    TraitDef("max_age",         1000.0,   2.0, "ticks", integer=True),
)

GENE_COUNT = len(TRAIT_DEFS)

Traits = namedtuple("Traits", [d.name for d in TRAIT_DEFS])

_BASE = np.array([d.base for d in TRAIT_DEFS])
_K = np.array([d.k for d in TRAIT_DEFS])
_LINEAR = np.array([d.linear for d in TRAIT_DEFS])
_INTEGER = tuple(d.integer for d in TRAIT_DEFS)

TRAIT_MIN = 1e-4
TRAIT_MAX = 1e4
GENE_EPS = 1e-6

# Founder genes are drawn away from the extremes
FOUNDER_GENE_LOW = 0.35
FOUNDER_GENE_HIGH = 0.65

MUTATION_SIGMA_SCALE = 4.0   # noise std in logit space = rate * scale
LOGIT_LIMIT = 30.0           # expit(±30) is still strictly inside (0, 1) in float64


# ─────────────────────────────────────────────────────
# Decode
# ─────────────────────────────────────────────────────

def _freeze(genes):
    genes.flags.writeable = False
    return genes


def _gene_logits(genes):
    return logit(np.clip(np.asarray(genes, dtype=np.float64), GENE_EPS, 1.0 - GENE_EPS))


def decode_values(genes):
    """Raw float trait values (before integer flooring), in table order."""
    genes = np.asarray(genes, dtype=np.float64)
    if genes.shape != (GENE_COUNT,):
        raise ValueError(f"expected {GENE_COUNT} genes, got shape {genes.shape}")
    values = np.where(_LINEAR, genes * _BASE, _BASE * np.exp(_K * _gene_logits(genes)))
    return np.clip(values, TRAIT_MIN, TRAIT_MAX)


def decode(genes):
    values = decode_values(genes)
    return Traits(*(
        max(1, int(np.floor(v))) if is_int else float(v)
        for v, is_int in zip(values, _INTEGER)
    ))


def describe(traits):
    """Yield (TraitDef, value) pairs in table order, for display."""
    for d, value in zip(TRAIT_DEFS, traits):
        yield d, value


# ─────────────────────────────────────────────────────
# Variation
# ─────────────────────────────────────────────────────

def random_genome(rng):
    return _freeze(rng.uniform(FOUNDER_GENE_LOW, FOUNDER_GENE_HIGH, GENE_COUNT))


def mutate(parent, rate, rng):
    noise = rng.normal(0.0, rate * MUTATION_SIGMA_SCALE, GENE_COUNT)
    child_logits = np.clip(_gene_logits(parent) + noise, -LOGIT_LIMIT, LOGIT_LIMIT)
    return _freeze(expit(child_logits))
