"""
Core building blocks: protocol server, watcher, validators and network clients.
"""
