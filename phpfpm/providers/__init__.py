"""Provider implementations."""

from .remi import RemiProvider
from .litespeed import LiteSpeedProvider
from .altphp import AltPHPProvider
from .docker import DockerProvider

__all__ = ["RemiProvider", "LiteSpeedProvider", "AltPHPProvider", "DockerProvider"]
