from .dbm import DBM
from .init import create_all, drop_all

__all__ = ["DBM", "create_all", "drop_all"]
