# =============================================================================
# fitgym_core/__init__.py
# FitGym Core: offline-first persistence and sync for the gym app
# =============================================================================

__version__ = "0.1.0"
