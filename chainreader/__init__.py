"""
Resilient read layer for a JSON-RPC blockchain endpoint.
"""

__version__ = "0.1.0"
