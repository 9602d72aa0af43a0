"""
Lead scoring package.

Pure functions that turn a contractor snapshot plus the active
classification codes into a 0-100 score, a priority and a label.
"""

from .engine import bump_score, score, score_breakdown, score_to_label, score_to_priority

__all__ = ["bump_score", "score", "score_breakdown", "score_to_label", "score_to_priority"]
