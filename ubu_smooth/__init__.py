"""
Light, reversible Ubuntu tuning with before/after benchmarks to prove the effect.
"""

__all__ = ["tweaks", "bench", "system_state", "cli"]
__version__ = "0.1.0"
