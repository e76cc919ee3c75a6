"""
claude-spend: cost attribution and insights for local model session logs.
"""

__version__ = "0.1.0"
