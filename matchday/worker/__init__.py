from .locks import KeyedLock, KeyedReadWriteLock, ReadWriteLock
from .pool import TaskRef, WorkerPool

__all__ = ["KeyedLock", "KeyedReadWriteLock", "ReadWriteLock", "TaskRef", "WorkerPool"]
