"""
Tollgate - access control for an HTTP API.

Personal access tokens, capability checks, per-credential rate limits
and an audit trail, in front of whatever operations the host exposes.
"""

__version__ = "0.1.0"
