"""API Routes"""

from . import boards, columns, cards

__all__ = ["boards", "columns", "cards"]
