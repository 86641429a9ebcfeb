from .clock import now_iso, parse_iso, to_iso, utc_now

__all__ = ["now_iso", "parse_iso", "to_iso", "utc_now"]
