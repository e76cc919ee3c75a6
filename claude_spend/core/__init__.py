"""
Core modules for claude-spend.

This package contains billing resolution, cost calculation, conversation
reconstruction, aggregation and insight detection.
"""
