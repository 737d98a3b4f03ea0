"""
HTTP API for regmatrix.
"""
