"""
tasksync: canonical snapshots, patches and rebase for a local-first task tracker.
"""

__version__ = "0.1.0"
