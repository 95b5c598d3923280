"""Exceptions raised by the action finders, phase-space scaling and root searches."""


class InvalidOrbit(ValueError):
    """The point (or action triple) does not correspond to a bound orbit."""


class UndeterminedEscapeVelocity(ValueError):
    """The escape velocity is not finite at the requested position."""

    def __init__(self, R: float, z: float, value: float):
        self.R = R
        self.z = z
        self.value = value
        super().__init__(
            "Escape velocity is undetermined at R=%g, z=%g (Phi=%g)" % (R, z, value))


class NoRootInBracket(RuntimeError):
    """A bracketed root search could not find a sign change."""
