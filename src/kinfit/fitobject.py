"""Shared parameter bookkeeping for parametrized fit objects.

A fit object owns a small local parameter vector, its measured reference
values, per-parameter measured/fixed flags and a covariance matrix. The
external solver assigns each local parameter a position in its global
parameter vector (`set_global_par_num`) before fitting starts; derivative
contributions are scattered into caller-owned buffers at those positions.

Derived kinematics are memoized behind a validity flag: every mutating
method calls `invalidate_cache()`, and every accessor calls
`_ensure_cache()`, which recomputes through the subclass hook
`_update_cache()`. The memo is not thread-safe.
"""

from __future__ import annotations

import copy
import logging
from typing import MutableSequence, Sequence

from .exceptions import FitObjectContractError
from .models import FitTolerances
from .physics import invert_matrix, is_finite

logger = logging.getLogger(__name__)

CHI2_UNDEFINED = -1.0


class ParametrizedFitObject:
    """Base class for fit objects with a fixed number of local parameters.

    Subclasses set `PARAM_NAMES` (any length) and implement `_update_cache`,
    `set_param`, `update_params` and the derivative contributions. Periodic
    parameters override `param_difference` so residuals and the
    significant-move test measure the short way round.
    """

    PARAM_NAMES: tuple[str, ...] = ()

    def __init__(self, name: str = "", tolerances: FitTolerances | None = None) -> None:
        n = self.get_n_par()
        self.name = name
        self.tolerances = tolerances if tolerances is not None else FitTolerances()
        self.par: list[float] = [0.0] * n
        self.mpar: list[float] = [0.0] * n
        self.measured: list[bool] = [True] * n
        self.fixed: list[bool] = [False] * n
        self.global_par_num: list[int] = [-1] * n
        self.cov: list[list[float]] = [[float(i == j) for j in range(n)] for i in range(n)]
        self._covinv: list[list[float]] | None = None
        self._covinv_valid = False
        self._cache_valid = False
        self._chi2 = 0.0

    # -- parameter bookkeeping -------------------------------------------

    @classmethod
    def get_n_par(cls) -> int:
        """Number of local parameters."""
        return len(cls.PARAM_NAMES)

    def get_param_name(self, ilocal: int) -> str:
        """Human-readable name of a local parameter."""
        self._check_local_index(ilocal)
        return self.PARAM_NAMES[ilocal]

    def get_param(self, ilocal: int) -> float:
        self._check_local_index(ilocal)
        return self.par[ilocal]

    def get_mparam(self, ilocal: int) -> float:
        self._check_local_index(ilocal)
        return self.mpar[ilocal]

    def set_mparam(self, ilocal: int, value: float) -> None:
        """Set the measured reference value of one parameter."""
        self._check_local_index(ilocal)
        self.mpar[ilocal] = float(value)
        self.invalidate_cache()

    def setup_param(
        self, ilocal: int, value: float, measured: bool = True, fixed: bool = False
    ) -> bool:
        """Record a raw parameter value and its flags, without bounds.

        Meant for object setup only; fitting goes through `set_param`.
        """
        self._check_local_index(ilocal)
        self.measured[ilocal] = bool(measured)
        self.fixed[ilocal] = bool(fixed)
        self.par[ilocal] = float(value)
        self.invalidate_cache()
        return True

    def set_param(self, ilocal: int, value: float) -> bool:
        """Set one parameter during fitting; return whether it moved significantly."""
        raise NotImplementedError

    def update_params(self, p: MutableSequence[float]) -> bool:
        """Pull this object's parameters from the global vector `p`."""
        raise NotImplementedError

    def is_param_measured(self, ilocal: int) -> bool:
        self._check_local_index(ilocal)
        return self.measured[ilocal]

    def is_param_fixed(self, ilocal: int) -> bool:
        self._check_local_index(ilocal)
        return self.fixed[ilocal]

    def fix_param(self, ilocal: int, fixed: bool = True) -> None:
        """Exclude (or re-include) one parameter from solver updates and chi2."""
        self._check_local_index(ilocal)
        if self.fixed[ilocal] != fixed:
            self.fixed[ilocal] = bool(fixed)
            self.invalidate_cache()

    def set_measured(self, ilocal: int, measured: bool = True) -> None:
        self._check_local_index(ilocal)
        if self.measured[ilocal] != measured:
            self.measured[ilocal] = bool(measured)
            self.invalidate_cache()

    def param_difference(self, ilocal: int, new: float, old: float) -> float:
        """Signed distance between two values of one parameter."""
        return new - old

    def is_significant_move(self, ilocal: int, old: float, new: float) -> bool:
        """Squared move larger than `eps2` times the parameter variance."""
        diff = self.param_difference(ilocal, new, old)
        return diff * diff > self.tolerances.eps2 * self.cov[ilocal][ilocal]

    # -- covariance ------------------------------------------------------

    def set_error(self, ilocal: int, error: float) -> None:
        """Set a 1-sigma error, i.e. the diagonal covariance element."""
        self._check_local_index(ilocal)
        self.set_cov(ilocal, ilocal, float(error) * float(error))

    def get_error(self, ilocal: int) -> float:
        self._check_local_index(ilocal)
        return self.cov[ilocal][ilocal] ** 0.5

    def set_cov(self, ilocal: int, jlocal: int, value: float) -> None:
        """Set one covariance element (and its mirror)."""
        self._check_local_index(ilocal)
        self._check_local_index(jlocal)
        if not is_finite(value):
            raise FitObjectContractError(f"{self.name}: non-finite covariance element {value!r}.")
        self.cov[ilocal][jlocal] = float(value)
        self.cov[jlocal][ilocal] = float(value)
        self._covinv_valid = False
        self.invalidate_cache()

    def set_cov_matrix(self, cov: Sequence[Sequence[float]]) -> None:
        """Replace the full covariance matrix; it is symmetrized from the upper triangle."""
        n = self.get_n_par()
        if len(cov) != n or any(len(row) != n for row in cov):
            raise FitObjectContractError(f"{self.name}: covariance must be {n}x{n}.")
        for i in range(n):
            for j in range(i, n):
                self.set_cov(i, j, cov[i][j])

    def get_cov(self, ilocal: int, jlocal: int) -> float:
        self._check_local_index(ilocal)
        self._check_local_index(jlocal)
        return self.cov[ilocal][jlocal]

    def get_covinv(self) -> list[list[float]] | None:
        """Inverse covariance, or `None` if the covariance is singular."""
        if not self._covinv_valid:
            self._calculate_covinv()
        return self._covinv

    def _calculate_covinv(self) -> None:
        inv = invert_matrix(self.cov)
        if inv is None:
            logger.warning("%s: covariance matrix is singular, chi2 undefined.", self.name)
            self._covinv = None
        else:
            self._covinv = inv
        self._covinv_valid = True

    # -- global parameter mapping ------------------------------------------

    def set_global_par_num(self, ilocal: int, iglobal: int) -> None:
        """Assign the position of a local parameter in the solver's global vector."""
        self._check_local_index(ilocal)
        self.global_par_num[ilocal] = int(iglobal)

    def get_global_par_num(self, ilocal: int) -> int:
        self._check_local_index(ilocal)
        return self.global_par_num[ilocal]

    def _global_indices(self, dim: int) -> tuple[int, ...]:
        """Return all global indices, checked against a buffer dimension."""
        for ilocal, iglobal in enumerate(self.global_par_num):
            if not 0 <= iglobal < dim:
                raise FitObjectContractError(
                    f"{self.name}: global index {iglobal} of parameter "
                    f"'{self.PARAM_NAMES[ilocal]}' outside [0, {dim})."
                )
        return tuple(self.global_par_num)

    # -- cache and chi2 --------------------------------------------------

    def invalidate_cache(self) -> None:
        self._cache_valid = False

    @property
    def cache_valid(self) -> bool:
        return self._cache_valid

    def _ensure_cache(self) -> None:
        if not self._cache_valid:
            self._update_cache()

    def _update_cache(self) -> None:
        raise NotImplementedError

    def get_chi2(self) -> float:
        """Chi-square of the current parameters against the measured ones.

        Returns `CHI2_UNDEFINED` (-1) when the covariance is singular.
        """
        self._ensure_cache()
        return self._chi2

    def residual(self, ilocal: int) -> float:
        """Residual entering chi2; zero for unmeasured or fixed parameters."""
        if not self.measured[ilocal] or self.fixed[ilocal]:
            return 0.0
        return self.param_difference(ilocal, self.par[ilocal], self.mpar[ilocal])

    def _calc_chi2(self) -> float:
        covinv = self.get_covinv()
        if covinv is None:
            return CHI2_UNDEFINED
        n = self.get_n_par()
        resid = [self.residual(i) for i in range(n)]
        chi2 = 0.0
        for i in range(n):
            if resid[i] == 0.0:
                continue
            chi2 += resid[i] * covinv[i][i] * resid[i]
            for j in range(i + 1, n):
                chi2 += 2.0 * resid[i] * covinv[i][j] * resid[j]
        return chi2

    # -- lifecycle -------------------------------------------------------

    def reset(self) -> None:
        """Restore the fit parameters to their measured values."""
        self.par = list(self.mpar)
        self.invalidate_cache()

    def copy(self) -> "ParametrizedFitObject":
        """Independent copy, e.g. to keep a pristine start state per permutation."""
        return copy.deepcopy(self)

    def _check_local_index(self, ilocal: int) -> None:
        if not 0 <= ilocal < self.get_n_par():
            raise FitObjectContractError(
                f"{self.name}: local parameter index {ilocal} outside [0, {self.get_n_par()})."
            )

    def __str__(self) -> str:
        values = ", ".join(
            f"{pname}={value:g}" for pname, value in zip(self.PARAM_NAMES, self.par, strict=True)
        )
        return f"{self.name} {{{values}}} chi2={self.get_chi2():g}"
