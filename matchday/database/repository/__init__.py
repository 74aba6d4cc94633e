"""Storage access, one module per table family.

Functions that take an ``AsyncSession`` run inside the caller's
transaction; functions that take only a ``DBM`` open their own.
"""
