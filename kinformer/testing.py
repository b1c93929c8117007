"""
Helper tools to test the informer-based applications.

This module is a part of the package's public interface.
"""
from kinformer._kits.fakes import FakeResourceClient, match_labels

__all__ = [
    'FakeResourceClient',
    'match_labels',
]
