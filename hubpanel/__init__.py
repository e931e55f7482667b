"""
HubPanel - multi-engine database administration core
"""

__version__ = "0.4.0"
