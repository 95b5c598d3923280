from __future__ import annotations
from typing import NamedTuple, Protocol

from coordinates import PosVelCyl, ProlSph


class Actions(NamedTuple):
    """Radial, vertical and azimuthal actions; Jphi is the angular momentum Lz."""
    Jr: float
    Jz: float
    Jphi: float


class Angles(NamedTuple):
    thetar: float
    thetaz: float
    thetaphi: float


class IntegralsOfMotion(NamedTuple):
    """Energy, Lz and the third integral of a point, with its prolate spheroidal
    coordinates stored shifted by gamma (lambda+gamma, nu+gamma)."""
    E: float
    Lz: float
    I3: float
    lambda_g: float
    nu_g: float
    coordsys: ProlSph


class ActionFinder(Protocol):
    def actions(self, point: PosVelCyl) -> Actions:
        ...
