"""Public package exports for the jet kinematic-fit framework."""

from .exceptions import FitObjectContractError, KinFitError
from .fitobject import CHI2_UNDEFINED, ParametrizedFitObject
from .jetfitobject import JetFitObject, KinematicCache, adjust_e_theta_phi
from .models import (
    EventInput,
    FitOutcome,
    FitTolerances,
    JetErrorModel,
    JetMeasurement,
    LorentzVector,
    PermutationResult,
)
from .pairing import (
    BaseJetPairing,
    FourJetPairing,
    TwoB4JPairing,
    make_pairing,
    pairing_class_from_name,
)
from .scan import JetFitter, PairingScanner

__all__ = [
    "JetFitObject",
    "KinematicCache",
    "ParametrizedFitObject",
    "adjust_e_theta_phi",
    "CHI2_UNDEFINED",
    "BaseJetPairing",
    "FourJetPairing",
    "TwoB4JPairing",
    "make_pairing",
    "pairing_class_from_name",
    "PairingScanner",
    "JetFitter",
    "LorentzVector",
    "JetMeasurement",
    "EventInput",
    "FitTolerances",
    "JetErrorModel",
    "FitOutcome",
    "PermutationResult",
    "KinFitError",
    "FitObjectContractError",
]
