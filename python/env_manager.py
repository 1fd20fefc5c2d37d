"""
Environment-variable configuration for the matmul host.

Values are read once and cached; call clear() after changing os.environ
(tests do this through monkeypatch).
"""

import os
from typing import Optional, Dict, List

_cache: Dict[str, Optional[str]] = {}

# Recognised variables and their defaults
DEFAULTS: Dict[str, str] = {
    "MATMUL_BACKEND": "opencl",
    "MATMUL_SIZE": "256",
    "MATMUL_PREFERRED_VENDORS": "NVIDIA,AMD,Intel",
}


def get(name: str) -> Optional[str]:
    """Return the env var value (cached on first read), else its default, else None."""
    if name in _cache:
        return _cache[name]
    value = os.environ.get(name) or DEFAULTS.get(name)
    _cache[name] = value
    return value


def get_int(name: str) -> Optional[int]:
    """Return the variable parsed as a positive int, None if unset."""
    value = get(name)
    if value is None:
        return None
    try:
        parsed = int(value)
    except ValueError:
        raise ValueError(f"Environment variable '{name}' must be an integer, got '{value}'")
    if parsed <= 0:
        raise ValueError(f"Environment variable '{name}' must be positive, got {parsed}")
    return parsed


def get_list(name: str) -> List[str]:
    """Return a comma-separated variable as a list of non-empty stripped items."""
    value = get(name)
    if not value:
        return []
    return [item.strip() for item in value.split(",") if item.strip()]


def clear() -> None:
    """Drop cached values so the next read sees the current environment."""
    _cache.clear()
