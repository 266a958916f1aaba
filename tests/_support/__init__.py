"""
Test support utilities for dbspine tests.

Record classes used across test modules live here rather than in
``conftest.py`` because handler reflection resolves annotations through
the defining module, so the classes must be importable at module level.
"""
