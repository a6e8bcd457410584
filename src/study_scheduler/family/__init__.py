"""Multi-learner coordination over a shared slot pool."""

from .conflicts import detect_conflicts
from .coordinator import FamilyCoordinator

__all__ = ["FamilyCoordinator", "detect_conflicts"]
