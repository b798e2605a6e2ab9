"""SSRF-safe outbound fetch engine."""
