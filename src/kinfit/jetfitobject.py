"""Jet fit object in the `(E, theta, phi)` parametrization.

The momentum follows from the energy and a fixed rest mass,
`p = sqrt(E^2 - m^2)` (or `p = E` for massless jets), and the direction
from the polar angle `theta` and azimuth `phi`:

    px = p sin(theta) cos(phi)
    py = p sin(theta) sin(phi)
    pz = p cos(theta)

All first and second derivatives handed to the solver are analytic
and built from the partials memoized in `KinematicCache`.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import MutableSequence, Sequence

from .exceptions import FitObjectContractError
from .fitobject import ParametrizedFitObject
from .models import FitTolerances, LorentzVector, Matrix4x4
from .physics import is_finite, wrap_angle, wrap_phi

logger = logging.getLogger(__name__)

I_E = 0
I_THETA = 1
I_PHI = 2


def adjust_e_theta_phi(
    mass: float, energy: float, theta: float, phi: float
) -> tuple[bool, float, float, float]:
    """Move `(E, theta, phi)` onto the physical sheet of the parametrization.

    Returns `(corrected, E, theta, phi)` with `E >= mass`, theta in
    `[0, pi]` and phi in `(-pi, pi]`. A negative energy is mirrored
    (`E -> -E`, `theta -> pi - theta`, `phi -> pi + phi`); all angle
    corrections leave the momentum direction unchanged.
    """
    corrected = False
    if energy < 0.0:
        energy = -energy
        theta = math.pi - theta
        phi = math.pi + phi
        corrected = True
    if energy < mass:
        energy = mass
        corrected = True
    if theta < -math.pi or theta > math.pi:
        theta = wrap_angle(theta)
        corrected = True
    if theta < 0.0:
        theta = -theta
        phi = phi - math.pi if phi > 0.0 else phi + math.pi
        corrected = True
    if phi <= -math.pi or phi > math.pi:
        phi = wrap_phi(phi)
        corrected = True
    return corrected, energy, theta, phi


@dataclass
class KinematicCache:
    """Derived kinematics of one `(E, theta, phi, m)` point.

    `momentum_defined` is false for a massive jet sitting exactly at
    threshold, where `dp/dE` diverges.
    """

    ctheta: float = 1.0
    stheta: float = 0.0
    cphi: float = 1.0
    sphi: float = 0.0
    p: float = 0.0
    p2: float = 0.0
    pt: float = 0.0
    px: float = 0.0
    py: float = 0.0
    pz: float = 0.0
    dpdE: float = 1.0
    dptdE: float = 0.0
    dpxdE: float = 0.0
    dpydE: float = 0.0
    dpzdE: float = 0.0
    dpxdtheta: float = 0.0
    dpydtheta: float = 0.0
    momentum_defined: bool = True

    def recompute(self, energy: float, theta: float, phi: float, mass: float) -> None:
        self.ctheta = math.cos(theta)
        self.stheta = math.sin(theta)
        self.cphi = math.cos(phi)
        self.sphi = math.sin(phi)

        if mass > 0.0:
            self.p2 = abs(energy * energy - mass * mass)
            self.p = math.sqrt(self.p2)
            self.momentum_defined = self.p > 0.0
            self.dpdE = energy / self.p if self.momentum_defined else math.inf
        else:
            self.p2 = energy * energy
            self.p = energy
            self.momentum_defined = True
            self.dpdE = 1.0
        self.pt = self.p * self.stheta

        self.px = self.pt * self.cphi
        self.py = self.pt * self.sphi
        self.pz = self.p * self.ctheta
        if self.momentum_defined:
            self.dptdE = self.dpdE * self.stheta
            self.dpxdE = self.dptdE * self.cphi
            self.dpydE = self.dptdE * self.sphi
            self.dpzdE = self.dpdE * self.ctheta
        else:
            self.dptdE = self.dpxdE = self.dpydE = self.dpzdE = math.nan
        self.dpxdtheta = self.pz * self.cphi
        self.dpydtheta = self.pz * self.sphi
        # dpz/dtheta = -pt, dpx/dphi = -py, dpy/dphi = px


class JetFitObject(ParametrizedFitObject):
    """Fit object for a jet with fixed mass, parametrized by `(E, theta, phi)`."""

    PARAM_NAMES = ("E", "theta", "phi")

    adjust_e_theta_phi = staticmethod(adjust_e_theta_phi)

    def __init__(
        self,
        energy: float,
        theta: float,
        phi: float,
        sigma_energy: float,
        sigma_theta: float,
        sigma_phi: float,
        mass: float = 0.0,
        name: str = "jet",
        tolerances: FitTolerances | None = None,
    ) -> None:
        super().__init__(name=name, tolerances=tolerances)
        inputs = (energy, theta, phi, sigma_energy, sigma_theta, sigma_phi, mass)
        if not is_finite(*inputs):
            raise FitObjectContractError(f"{name}: non-finite start values {inputs!r}.")
        if mass < 0.0:
            raise FitObjectContractError(f"{name}: negative mass {mass!r}.")
        self.mass = float(mass)
        self._cache = KinematicCache()

        corrected, energy, theta, phi = adjust_e_theta_phi(
            self.mass, float(energy), float(theta), float(phi)
        )
        if corrected:
            logger.debug(
                "%s: start values corrected to E=%g theta=%g phi=%g", name, energy, theta, phi
            )
        self.start_corrected = corrected
        for ilocal, value in enumerate((energy, theta, phi)):
            self.setup_param(ilocal, value, measured=True, fixed=False)
            self.mpar[ilocal] = value
        self.set_error(I_E, sigma_energy)
        self.set_error(I_THETA, sigma_theta)
        self.set_error(I_PHI, sigma_phi)
        self.invalidate_cache()

    # -- parameter mutation ----------------------------------------------

    def set_param(self, ilocal: int, value: float) -> bool:
        """Set one parameter during fitting.

        The energy is clamped to the mass. Angles inside their canonical
        range are stored as given; others are folded back without changing
        the momentum direction. Returns whether the proposed value differs
        from the current one by more than `eps2` times the variance.
        """
        self._check_local_index(ilocal)
        value = float(value)
        if not math.isfinite(value):
            raise FitObjectContractError(
                f"{self.name}: non-finite value for '{self.PARAM_NAMES[ilocal]}'."
            )
        self.invalidate_cache()
        significant = self.is_significant_move(ilocal, self.par[ilocal], value)
        if ilocal == I_E:
            self.par[I_E] = value if value >= self.mass else self.mass
        elif ilocal == I_THETA:
            if 0.0 <= value <= math.pi:
                self.par[I_THETA] = value
            else:
                _, _, theta, phi = adjust_e_theta_phi(
                    self.mass, self.par[I_E], value, self.par[I_PHI]
                )
                self.par[I_THETA] = theta
                self.par[I_PHI] = phi
        else:
            self.par[I_PHI] = wrap_phi(value)
        return significant

    def update_params(self, p: MutableSequence[float]) -> bool:
        """Pull `(E, theta, phi)` from the solver's global vector `p`.

        A negative energy means the solver crossed onto the mirrored branch
        of the parametrization; it is mirrored back. The energy is floored
        at `mass * (1 + mass_epsilon)`. The corrected values are written to
        this object and back into `p`. Returns True if any parameter moved
        significantly.
        """
        i_e, i_th, i_ph = self._global_indices(len(p))
        e = float(p[i_e])
        th = float(p[i_th])
        ph = float(p[i_ph])
        if not is_finite(e, th, ph):
            raise FitObjectContractError(
                f"{self.name}: non-finite parameters from global vector ({e}, {th}, {ph})."
            )
        self.invalidate_cache()

        if e < 0.0:
            logger.debug("%s: mirrored negative energy %g", self.name, e)
        _, e, th, ph = adjust_e_theta_phi(self.mass, e, th, ph)
        floor = self.mass * (1.0 + self.tolerances.mass_epsilon)
        if e < floor:
            e = floor

        result = (
            self.is_significant_move(I_E, self.par[I_E], e)
            or self.is_significant_move(I_THETA, self.par[I_THETA], th)
            or self.is_significant_move(I_PHI, self.par[I_PHI], ph)
        )
        self.par[I_E] = e
        self.par[I_THETA] = th
        self.par[I_PHI] = ph
        p[i_e] = e
        p[i_th] = th
        p[i_ph] = ph
        return result

    def param_difference(self, ilocal: int, new: float, old: float) -> float:
        """Azimuth differences are taken the short way round."""
        if ilocal == I_PHI:
            return wrap_phi(new - old)
        return new - old

    # -- kinematics ------------------------------------------------------

    def _update_cache(self) -> None:
        self._chi2 = self._calc_chi2()
        self._cache.recompute(self.par[I_E], self.par[I_THETA], self.par[I_PHI], self.mass)
        self._cache_valid = True

    def _derivative_cache(self) -> KinematicCache:
        """Valid cache whose momentum derivatives are defined."""
        self._ensure_cache()
        if not self._cache.momentum_defined:
            raise FitObjectContractError(
                f"{self.name}: momentum derivatives undefined at E = mass = {self.mass:g}."
            )
        return self._cache

    def get_mass(self) -> float:
        return self.mass

    def get_e(self) -> float:
        return self.par[I_E]

    def get_px(self) -> float:
        self._ensure_cache()
        return self._cache.px

    def get_py(self) -> float:
        self._ensure_cache()
        return self._cache.py

    def get_pz(self) -> float:
        self._ensure_cache()
        return self._cache.pz

    def get_p(self) -> float:
        self._ensure_cache()
        return self._cache.p

    def get_p2(self) -> float:
        self._ensure_cache()
        return self._cache.p2

    def get_pt(self) -> float:
        self._ensure_cache()
        return self._cache.pt

    def get_pt2(self) -> float:
        self._ensure_cache()
        return self._cache.pt * self._cache.pt

    def four_vector(self) -> LorentzVector:
        """Current four-momentum."""
        self._ensure_cache()
        return LorentzVector(self._cache.px, self._cache.py, self._cache.pz, self.par[I_E])

    def get_dpx(self, ilocal: int) -> float:
        """Partial derivative of px with respect to a local parameter."""
        self._check_local_index(ilocal)
        c = self._derivative_cache()
        return (c.dpxdE, c.dpxdtheta, -c.py)[ilocal]

    def get_dpy(self, ilocal: int) -> float:
        self._check_local_index(ilocal)
        c = self._derivative_cache()
        return (c.dpydE, c.dpydtheta, c.px)[ilocal]

    def get_dpz(self, ilocal: int) -> float:
        self._check_local_index(ilocal)
        c = self._derivative_cache()
        return (c.dpzdE, -c.pt, 0.0)[ilocal]

    def get_de(self, ilocal: int) -> float:
        self._check_local_index(ilocal)
        return 1.0 if ilocal == I_E else 0.0

    # -- derivative contributions ------------------------------------------

    def _chain_rule(
        self, c: KinematicCache, efact: float, pxfact: float, pyfact: float, pzfact: float
    ) -> tuple[float, float, float]:
        """Map a 4-momentum gradient onto `(E, theta, phi)`."""
        der_e = efact
        der_theta = 0.0
        der_phi = 0.0
        if pxfact != 0.0:
            der_e += pxfact * c.dpxdE
            der_theta += pxfact * c.dpxdtheta
            der_phi -= pxfact * c.py
        if pyfact != 0.0:
            der_e += pyfact * c.dpydE
            der_theta += pyfact * c.dpydtheta
            der_phi += pyfact * c.px
        if pzfact != 0.0:
            der_e += pzfact * c.dpzdE
            der_theta -= pzfact * c.pt
        return der_e, der_theta, der_phi

    def add_to_derivatives(
        self,
        der: MutableSequence[float],
        efact: float = 0.0,
        pxfact: float = 0.0,
        pyfact: float = 0.0,
        pzfact: float = 0.0,
    ) -> None:
        """Add `d(efact*E + pxfact*px + pyfact*py + pzfact*pz)/d(par)` to `der`."""
        i_e, i_th, i_ph = self._global_indices(len(der))
        c = self._derivative_cache()
        # sum locally first, then add to the global vector
        der_e, der_theta, der_phi = self._chain_rule(c, efact, pxfact, pyfact, pzfact)
        der[i_e] += der_e
        der[i_th] += der_theta
        der[i_ph] += der_phi

    def add_to_2nd_derivatives(
        self,
        der2,
        efact: float = 0.0,
        pxfact: float = 0.0,
        pyfact: float = 0.0,
        pzfact: float = 0.0,
    ) -> None:
        """Add the `(E, theta, phi)` Hessian block of a linear 4-momentum functional.

        `der2` is a square matrix indexable as `der2[i][j]`. The energy
        itself is linear in the parameters, so `efact` does not contribute.
        """
        i_e, i_th, i_ph = self._global_indices(len(der2))
        c = self._derivative_cache()
        der_ee = der_eth = der_eph = 0.0
        der_thth = der_thph = der_phph = 0.0

        d2pdE2 = -self.mass * self.mass / (c.p * c.p * c.p) if self.mass != 0.0 else 0.0
        d2ptdE2 = d2pdE2 * c.stheta

        if pxfact != 0.0:
            der_ee += pxfact * d2ptdE2 * c.cphi
            der_eth += pxfact * c.dpzdE * c.cphi
            der_eph -= pxfact * c.dpydE
            der_thth -= pxfact * c.px
            der_thph -= pxfact * c.dpydtheta
            der_phph -= pxfact * c.px
        if pyfact != 0.0:
            der_ee += pyfact * d2ptdE2 * c.sphi
            der_eth += pyfact * c.dpzdE * c.sphi
            der_eph += pyfact * c.dpxdE
            der_thth -= pyfact * c.py
            der_thph += pyfact * c.dpxdtheta
            der_phph -= pyfact * c.py
        if pzfact != 0.0:
            der_ee += pzfact * d2pdE2 * c.ctheta
            der_eth -= pzfact * c.dptdE
            der_thth -= pzfact * c.pz

        der2[i_e][i_e] += der_ee
        der2[i_e][i_th] += der_eth
        der2[i_e][i_ph] += der_eph
        der2[i_th][i_e] += der_eth
        der2[i_th][i_th] += der_thth
        der2[i_th][i_ph] += der_thph
        der2[i_ph][i_e] += der_eph
        der2[i_ph][i_th] += der_thph
        der2[i_ph][i_ph] += der_phph

    def add_to_2nd_derivatives_lambda(self, der2, lam: float, der4: Sequence[float]) -> None:
        """Hessian contribution of `lam * (der4 . (E, px, py, pz))`."""
        self.add_to_2nd_derivatives(
            der2, lam * der4[0], lam * der4[1], lam * der4[2], lam * der4[3]
        )

    def add_to_global_chi2_der_vector(
        self, y: MutableSequence[float], lam: float, der4: Sequence[float]
    ) -> None:
        """Add `lam` times the parameter gradient of `der4 . (E, px, py, pz)` to `y`."""
        i_e, i_th, i_ph = self._global_indices(len(y))
        c = self._derivative_cache()
        der_e, der_theta, der_phi = self._chain_rule(c, der4[0], der4[1], der4[2], der4[3])
        y[i_e] += lam * der_e
        y[i_th] += lam * der_theta
        y[i_ph] += lam * der_phi

    def add_to_1st_derivatives(self, m, der4: Sequence[float], kglobal: int) -> None:
        """Add the mixed derivative between these parameters and global parameter `kglobal`.

        The gradient of `der4 . (E, px, py, pz)` goes into row and column
        `kglobal` of the square matrix `m`.
        """
        dim = len(m)
        if not 0 <= kglobal < dim:
            raise FitObjectContractError(
                f"{self.name}: global index {kglobal} outside [0, {dim})."
            )
        i_e, i_th, i_ph = self._global_indices(dim)
        c = self._derivative_cache()
        d_e, d_th, d_ph = self._chain_rule(c, der4[0], der4[1], der4[2], der4[3])
        m[kglobal][i_e] += d_e
        m[kglobal][i_th] += d_th
        m[kglobal][i_ph] += d_ph
        m[i_e][kglobal] += d_e
        m[i_th][kglobal] += d_th
        m[i_ph][kglobal] += d_ph

    # -- error propagation -------------------------------------------------

    def momentum_covariance(self) -> Matrix4x4:
        """Covariance of `(E, px, py, pz)` propagated from the `(E, theta, phi)` covariance."""
        c = self._derivative_cache()
        jac = (
            (1.0, 0.0, 0.0),
            (c.dpxdE, c.dpxdtheta, -c.py),
            (c.dpydE, c.dpydtheta, c.px),
            (c.dpzdE, -c.pt, 0.0),
        )
        cov = self.cov
        # J C, then (J C) J^T
        jc = [[sum(row[k] * cov[k][j] for k in range(3)) for j in range(3)] for row in jac]
        rows = tuple(
            tuple(sum(jc[a][k] * jac[b][k] for k in range(3)) for b in range(4))
            for a in range(4)
        )
        return rows  # type: ignore[return-value]

    def get_error2(self, der4: Sequence[float]) -> float:
        """Variance of `der4 . (E, px, py, pz)`."""
        cov4 = self.momentum_covariance()
        return sum(der4[a] * cov4[a][b] * der4[b] for a in range(4) for b in range(4))
