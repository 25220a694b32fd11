"""Board/column/card ordering and synchronization engine"""

__version__ = "1.0.0"
