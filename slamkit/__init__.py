"""Geometry solvers, trajectory export, settings and tracking bookkeeping for visual SLAM."""

__version__ = "0.1.0"

__all__ = [
    "epnp",
    "pnp_math",
    "pnp_solver",
    "settings",
    "sim3_solver",
    "system_state",
    "tracking_state",
    "trajectory",
    "viewer",
]