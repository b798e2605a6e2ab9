"""Caller-facing error mapping."""

from safefetch.status.error_mapper import ErrorResponse, map_error_code, to_error_response


__all__ = ["ErrorResponse", "map_error_code", "to_error_response"]
