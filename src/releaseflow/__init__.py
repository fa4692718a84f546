"""Releaseflow - Branch-based release workflow for GitHub Actions.

This package classifies pushes by branch, binds version tags to content
trees, publishes container images without ever giving one tag two images,
and gates pull requests on the branching policy.
"""

__version__ = "0.1.0"
