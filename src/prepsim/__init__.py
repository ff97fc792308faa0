"""prepsim: branching disaster-preparedness drills with resumable progress."""

__version__ = "0.1.0"
