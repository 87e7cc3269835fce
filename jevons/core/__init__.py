"""
Core modules for jevons.

This package contains the transcript parser, cross-file reconciliation,
sync orchestration and usage totals.
"""
