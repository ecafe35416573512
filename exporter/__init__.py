"""
Exporter module for the MTR exporter.
Stores collected metrics and serves them over HTTP.
"""

__version__ = "1.0.0"
