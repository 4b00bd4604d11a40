"""Domain models for the apurement kernel."""

from apurement_kernel.models.allocation import Allocation
from apurement_kernel.models.ea_declaration import EaDeclaration
from apurement_kernel.models.family import ScrapFamily
from apurement_kernel.models.sa_declaration import SaDeclaration

__all__ = [
    "ScrapFamily",
    "SaDeclaration",
    "EaDeclaration",
    "Allocation",
]
