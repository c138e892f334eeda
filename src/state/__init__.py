"""
Application state and its persistence.

- models: `AppState`, `Phase` derivation and cart/store helpers (no I/O)
- session_store: JSON session document with schema tolerance and atomic writes
- token_store: auth token storage, native keychain first, JSON file fallback
"""

from .models import AppState, Phase, derive_phase

__all__ = ["AppState", "Phase", "derive_phase"]
