"""FleetZen — offline draft store and sync hand-off for field interventions."""

from __future__ import annotations

__version__ = "0.1.0"
