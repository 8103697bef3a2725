"""
Optional inference engines for twostage_kit.

Engines are kept in a separate module so core functionality (transforms,
decoding, fan-out) stays lightweight and can be used without installing
inference runtimes.
"""

from __future__ import annotations

__all__ = []
