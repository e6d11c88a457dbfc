from .parse import parse_log

__all__ = ["parse_log"]
