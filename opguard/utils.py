def ensure_float(value: object, default: float | None = 0.0) -> float | None:
    """Convert a value to float, with a default fallback."""
    try:
        return float(value) if isinstance(value, (int, float, str)) else default
    except (TypeError, ValueError):
        return default


def parse_optional_float(value: str | None, name: str) -> float | None:
    """Parse a setting that may be blank; reject anything non-numeric."""
    if value is None or not value.strip():
        return None
    parsed = ensure_float(value.strip(), default=None)
    if parsed is None:
        raise ValueError(f"{name} must be a number, got {value!r}")
    return parsed
