"""
Infrastructure Adapters - snapshot providers.
"""

from .static_snapshot_provider import FixtureSeries, FixtureSnapshotProvider, StaticSnapshotProvider

__all__ = ['FixtureSeries', 'FixtureSnapshotProvider', 'StaticSnapshotProvider']
