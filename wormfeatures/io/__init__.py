"""Persistent output stores."""

from wormfeatures.io.stores import HeadPositionStore, LandmarkStore

__all__ = ['HeadPositionStore', 'LandmarkStore']
