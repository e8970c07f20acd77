"""
Core modules for Session Guard.

This package contains the statistics, ceiling estimation, burn rate
and session analysis logic.
"""
