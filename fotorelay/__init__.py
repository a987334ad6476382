"""
FotoRelay - camera FTP ingestion and cloud relay engine.
"""
__version__ = "1.0.0"
