"""
Repositories for database access.
"""
