"""Core data models used by the kinematic-fit framework.

This module defines:
- immutable physics objects (`LorentzVector`, `JetMeasurement`)
- event containers (`EventInput`)
- tunable fit constants (`FitTolerances`) and default jet errors (`JetErrorModel`)
- per-permutation outputs (`FitOutcome`, `PermutationResult`).
"""

from __future__ import annotations

import math
from dataclasses import dataclass

Matrix4x4 = tuple[
    tuple[float, float, float, float],
    tuple[float, float, float, float],
    tuple[float, float, float, float],
    tuple[float, float, float, float],
]


@dataclass(frozen=True)
class LorentzVector:
    """Simple 4-vector with convenience properties and addition."""

    px: float
    py: float
    pz: float
    e: float

    def __add__(self, other: "LorentzVector") -> "LorentzVector":
        """Component-wise 4-vector addition."""
        return LorentzVector(
            self.px + other.px,
            self.py + other.py,
            self.pz + other.pz,
            self.e + other.e,
        )

    @property
    def p2(self) -> float:
        """Squared 3-momentum magnitude."""
        return self.px * self.px + self.py * self.py + self.pz * self.pz

    @property
    def pt(self) -> float:
        """Transverse momentum."""
        return math.sqrt(self.px * self.px + self.py * self.py)

    @property
    def mass2(self) -> float:
        """Invariant mass squared."""
        return self.e * self.e - self.p2

    @property
    def mass(self) -> float:
        """Invariant mass with signed handling for small negative mass2 values."""
        m2 = self.mass2
        return m2**0.5 if m2 >= 0.0 else -((-m2) ** 0.5)


@dataclass(frozen=True)
class JetMeasurement:
    """One reconstructed jet in the `(E, theta, phi)` parametrization.

    Units and frame (GeV, radians, lab frame) are the producer's responsibility.
    """

    jet_id: str
    energy: float
    theta: float
    phi: float
    sigma_energy: float
    sigma_theta: float
    sigma_phi: float
    mass: float = 0.0


@dataclass(frozen=True)
class EventInput:
    """One event payload with its own jet list."""

    event_id: str
    jets: tuple[JetMeasurement, ...]


@dataclass(frozen=True)
class FitTolerances:
    """Tunable constants shared by all fit objects of one fit.

    `eps2` scales the per-parameter variance to decide whether a parameter
    update counts as a significant move. `mass_epsilon` is the relative
    margin above the rest mass used as energy floor during fitting.
    """

    eps2: float = 1e-4
    mass_epsilon: float = 1e-7

    def __post_init__(self) -> None:
        if not (math.isfinite(self.eps2) and self.eps2 >= 0.0):
            raise ValueError(f"eps2 must be finite and non-negative, got {self.eps2!r}.")
        if not (math.isfinite(self.mass_epsilon) and self.mass_epsilon >= 0.0):
            raise ValueError(
                f"mass_epsilon must be finite and non-negative, got {self.mass_epsilon!r}."
            )


@dataclass(frozen=True)
class JetErrorModel:
    """Default jet errors used when an input jet carries none.

    The energy error is `energy_resolution * sqrt(E)` (stochastic term only).
    """

    energy_resolution: float = 1.0
    theta_error: float = 0.01
    phi_error: float = 0.01

    def sigma_energy(self, energy: float) -> float:
        """Return the energy error for a jet energy."""
        return self.energy_resolution * math.sqrt(max(energy, 0.0))


@dataclass(frozen=True)
class FitOutcome:
    """What an external fitter reports after one fit attempt."""

    probability: float
    chi2: float
    iterations: int
    error_code: int = 0


@dataclass(frozen=True)
class PermutationResult:
    """Start (and optionally fitted) kinematics for one jet assignment."""

    permutation_index: int
    pairing: str
    jet_ids: tuple[str, ...]
    start_masses: tuple[float, ...]
    jets_chi2: float = 0.0
    fitted_masses: tuple[float, ...] | None = None
    fitted_jets: tuple[LorentzVector, ...] | None = None
    outcome: FitOutcome | None = None
    event_id: str | None = None

    @property
    def converged(self) -> bool:
        """True when a fit was run and reported no error."""
        return self.outcome is not None and self.outcome.error_code == 0
