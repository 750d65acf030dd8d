"""Exception types raised by the kinematic-fit framework."""

from __future__ import annotations


class KinFitError(Exception):
    """Base class for all kinfit exceptions."""


class FitObjectContractError(KinFitError):
    """A caller broke the fit-object contract.

    Raised for non-finite inputs, local parameter indices outside the
    object's parameter count, global indices that are unassigned or fall
    outside the caller's buffer, and kinematics whose momentum is undefined.
    These are programming errors, never recoverable fit conditions.
    """
