"""
Test utilities for ProvisionKit testing.

This package provides scriptable step actions and plan builders used by the
plan and CLI tests.
"""

from .builders import PlanBuilder, RecordingAction

__all__ = ["PlanBuilder", "RecordingAction"]
