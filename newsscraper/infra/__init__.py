"""
Infrastructure: database, HTTP client and scheduler wrappers.
"""
