"""Run and pipeline store implementations."""

from councilflow.runtime.store.base import RunStore
from councilflow.runtime.store.local import LocalRunStore

__all__ = ["LocalRunStore", "RunStore"]
