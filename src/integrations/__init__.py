"""
Integration modules for the markdown notes and the task store
"""

from .obsidian import ObsidianIntegration, apply_updates
from .taskwarrior import TaskChampionStore, MemoryTaskStore, StoreError, TaskStore

__all__ = [
    'ObsidianIntegration',
    'apply_updates',
    'TaskChampionStore',
    'MemoryTaskStore',
    'StoreError',
    'TaskStore',
]
