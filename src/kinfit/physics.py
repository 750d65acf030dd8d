"""Physics/math helpers shared by fit objects and pairing scans."""

from __future__ import annotations

import math
from typing import Iterable, Sequence

from .models import LorentzVector

TWO_PI = 2.0 * math.pi


def wrap_angle(angle: float) -> float:
    """Reduce a finite angle into `[-pi, pi]` in one step, whatever its size."""
    return math.remainder(angle, TWO_PI)


def wrap_phi(phi: float) -> float:
    """Wrap an azimuth into `(-pi, pi]`."""
    phi = wrap_angle(phi)
    return math.pi if phi <= -math.pi else phi


def sum_lorentz(vectors: Iterable[LorentzVector]) -> LorentzVector:
    """Sum an iterable of Lorentz vectors."""
    total = LorentzVector(0.0, 0.0, 0.0, 0.0)
    for vec in vectors:
        total = total + vec
    return total


def group_masses(
    vectors: Sequence[LorentzVector], groups: Sequence[Sequence[int]]
) -> tuple[float, ...]:
    """Invariant mass of each slot group, e.g. `((0, 1), (2, 3))` for two dijets."""
    return tuple(sum_lorentz(vectors[i] for i in group).mass for group in groups)


def energy_theta_phi(px: float, py: float, pz: float, e: float) -> tuple[float, float, float]:
    """Convert a 4-vector into `(E, theta, phi)` with theta in [0, pi]."""
    pt = math.sqrt(px * px + py * py)
    theta = math.atan2(pt, pz)
    phi = math.atan2(py, px) if pt > 0.0 else 0.0
    return e, theta, wrap_phi(phi)


def invert_matrix(a: Sequence[Sequence[float]]) -> list[list[float]] | None:
    """Inverse of a square matrix, or `None` when it is numerically singular.

    Gauss-Jordan elimination with partial pivoting. A pivot below
    `1e-14` times the largest input element counts as zero.
    """
    n = len(a)
    scale = max((abs(x) for row in a for x in row), default=0.0)
    if scale == 0.0:
        return None
    work = [[float(x) for x in row] for row in a]
    inv = [[1.0 if i == j else 0.0 for j in range(n)] for i in range(n)]
    for col in range(n):
        piv = max(range(col, n), key=lambda r: abs(work[r][col]))
        if abs(work[piv][col]) < 1e-14 * scale:
            return None
        work[col], work[piv] = work[piv], work[col]
        inv[col], inv[piv] = inv[piv], inv[col]
        d = work[col][col]
        work[col] = [x / d for x in work[col]]
        inv[col] = [x / d for x in inv[col]]
        for r in range(n):
            f = work[r][col]
            if r == col or f == 0.0:
                continue
            work[r] = [x - f * y for x, y in zip(work[r], work[col])]
            inv[r] = [x - f * y for x, y in zip(inv[r], inv[col])]
    return inv


def is_finite(*values: float) -> bool:
    """True when every value is a finite float."""
    return all(math.isfinite(v) for v in values)
