"""Pure scoring logic for prediction contests.

This package contains everything that decides points without touching
storage:
- Rules documents and the rules engine (base points)
- Timing coefficient and streak multiplier
- Contest lifecycle and computed status
- Decimal rounding and audit hashing
"""

from __future__ import annotations

__all__: list[str] = []
