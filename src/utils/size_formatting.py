"""Human-readable sizes for webhook payload logging."""

_UNITS = ("KB", "MB", "GB")


def format_size(size_bytes: int) -> str:
    """Format a byte count, e.g. "512 B", "1.5 KB", "2.3 MB".

    Byte counts below 1 KB are printed without decimals.
    """
    if size_bytes < 1024:
        return f"{size_bytes} B"

    size = size_bytes / 1024.0
    for unit in _UNITS:
        if size < 1024.0 or unit == _UNITS[-1]:
            return f"{size:.1f} {unit}"
        size /= 1024.0
    raise AssertionError("unreachable")
