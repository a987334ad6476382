"""
Service layer orchestrating sessions, relay, broadcasting and offline sync.
"""
