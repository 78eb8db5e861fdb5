"""
Persisted visitor state: identity, visit counter and session renewal.
"""
