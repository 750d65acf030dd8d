"""Per-event pairing scan: one fit attempt per jet assignment.

The scan is the composition root of a kinematic-fit analysis: it builds a
`JetFitObject` per measured jet, asks the pairing for each assignment in
turn, resets the jets to their measured values, hands them to an injected
fitter and records start/fitted kinematics. The fitter and the constraints
it applies live outside this package; they see the jets only through the
fit-object interface.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Protocol, Sequence

from .fitobject import CHI2_UNDEFINED
from .jetfitobject import JetFitObject
from .models import EventInput, FitOutcome, FitTolerances, JetMeasurement, PermutationResult
from .pairing import pairing_class_from_name
from .physics import group_masses

logger = logging.getLogger(__name__)


class JetFitter(Protocol):
    """Anything that fits a permuted jet list in place and reports an outcome."""

    def __call__(
        self,
        jets: Sequence[JetFitObject],
        mass_groups: tuple[tuple[int, ...], ...],
    ) -> FitOutcome: ...


@dataclass
class PairingScanner:
    """Run one fit attempt per jet assignment of a named pairing."""

    pairing: str = "four-jet"
    fitter: JetFitter | None = None
    tolerances: FitTolerances = field(default_factory=FitTolerances)

    def build_fit_objects(self, jets: Sequence[JetMeasurement]) -> list[JetFitObject]:
        """Create one fit object per measured jet, named by its jet id."""
        return [
            JetFitObject(
                energy=jet.energy,
                theta=jet.theta,
                phi=jet.phi,
                sigma_energy=jet.sigma_energy,
                sigma_theta=jet.sigma_theta,
                sigma_phi=jet.sigma_phi,
                mass=jet.mass,
                name=jet.jet_id,
                tolerances=self.tolerances,
            )
            for jet in jets
        ]

    def scan(
        self, jets: Sequence[JetMeasurement], event_id: str | None = None
    ) -> list[PermutationResult]:
        """Return one `PermutationResult` per assignment, in pairing order.

        Workflow:
        1. Build fit objects and the pairing over them.
        2. For each permutation, reset all jets to their measured values.
        3. Record start masses of the pairing's slot groups.
        4. Run the fitter (if any) and record fitted masses and jet chi2.
        """
        pairing_cls = pairing_class_from_name(self.pairing)
        if len(jets) != pairing_cls.NJETS:
            raise ValueError(
                f"Pairing '{self.pairing}' needs {pairing_cls.NJETS} jets, got {len(jets)}."
            )
        fit_objects = self.build_fit_objects(jets)
        pairing = pairing_cls(fit_objects)
        groups = pairing.MASS_GROUPS

        results: list[PermutationResult] = []
        for iperm in range(pairing.get_n_perm()):
            # The fitter moves parameters in place.
            for fo in fit_objects:
                fo.reset()
            permuted = pairing.next_permutation()
            start_masses = group_masses([fo.four_vector() for fo in permuted], groups)
            logger.debug(
                "event %s permutation %d: jets=%s start masses=%s",
                event_id,
                iperm,
                [fo.name for fo in permuted],
                start_masses,
            )
            result = PermutationResult(
                permutation_index=iperm,
                pairing=pairing.NAME,
                jet_ids=tuple(fo.name for fo in permuted),
                start_masses=start_masses,
                event_id=event_id,
            )
            if self.fitter is not None:
                outcome = self.fitter(permuted, groups)
                fitted = tuple(fo.four_vector() for fo in permuted)
                result = PermutationResult(
                    permutation_index=iperm,
                    pairing=pairing.NAME,
                    jet_ids=result.jet_ids,
                    start_masses=start_masses,
                    jets_chi2=_total_chi2(permuted),
                    fitted_masses=group_masses(fitted, groups),
                    fitted_jets=fitted,
                    outcome=outcome,
                    event_id=event_id,
                )
                logger.debug(
                    "event %s permutation %d: prob=%g chi2=%g iterations=%d error=%d",
                    event_id,
                    iperm,
                    outcome.probability,
                    outcome.chi2,
                    outcome.iterations,
                    outcome.error_code,
                )
            results.append(result)
        return results

    def scan_events(self, events: Sequence[EventInput]) -> list[PermutationResult]:
        """Run `scan` on each event with the right jet multiplicity."""
        njets = pairing_class_from_name(self.pairing).NJETS
        out: list[PermutationResult] = []
        for event in events:
            if len(event.jets) != njets:
                logger.info(
                    "skipping event %s: %d jets, pairing '%s' needs %d",
                    event.event_id,
                    len(event.jets),
                    self.pairing,
                    njets,
                )
                continue
            out.extend(self.scan(event.jets, event_id=event.event_id))
        return out

    @staticmethod
    def best(results: Sequence[PermutationResult]) -> PermutationResult | None:
        """Pick the preferred permutation of one event.

        With fit outcomes: the error-free fit with the highest probability,
        or `None` if every fit failed. Without: the permutation whose start
        group masses are closest to each other.
        """
        if not results:
            return None
        if any(r.outcome is not None for r in results):
            converged = [r for r in results if r.converged]
            if not converged:
                return None
            return max(converged, key=lambda r: r.outcome.probability)  # type: ignore[union-attr]
        return min(results, key=lambda r: max(r.start_masses) - min(r.start_masses))

    @classmethod
    def best_per_event(cls, results: Sequence[PermutationResult]) -> list[PermutationResult]:
        """Apply `best` to each event's results, keeping event order."""
        by_event: dict[str | None, list[PermutationResult]] = {}
        for res in results:
            by_event.setdefault(res.event_id, []).append(res)
        out: list[PermutationResult] = []
        for event_results in by_event.values():
            chosen = cls.best(event_results)
            if chosen is not None:
                out.append(chosen)
        return out


def _total_chi2(jets: Sequence[JetFitObject]) -> float:
    """Sum of jet chi2 values; undefined if any jet's chi2 is undefined."""
    total = 0.0
    for fo in jets:
        chi2 = fo.get_chi2()
        if chi2 == CHI2_UNDEFINED:
            return CHI2_UNDEFINED
        total += chi2
    return total
