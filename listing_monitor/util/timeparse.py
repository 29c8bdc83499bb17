from __future__ import annotations

import re

DURATION_PATTERN = re.compile(r"(?P<value>\d+)(?P<unit>ms|[smhd]?)", re.IGNORECASE)
UNIT_MS = {"ms": 1, "": 1000, "s": 1000, "m": 60_000, "h": 3_600_000, "d": 86_400_000}


def parse_duration_ms(text: str) -> int:
    """Parse ``500ms``, ``30s``, ``10m``, ``1h30m`` or bare seconds into milliseconds."""
    text = text.strip()
    if not text:
        raise ValueError("Empty duration")
    if text.isdigit():
        value = int(text)
        if value <= 0:
            raise ValueError("Duration must be positive")
        return value * 1000
    total = 0
    consumed = 0
    for match in DURATION_PATTERN.finditer(text):
        consumed += len(match.group(0))
        total += int(match.group("value")) * UNIT_MS[match.group("unit").lower()]
    if consumed != len(text.replace(" ", "")):
        raise ValueError(f"Invalid duration: {text}")
    if total <= 0:
        raise ValueError("Duration must be positive")
    return total
