"""
Scoreboard: ranking and epoch-claim engine for competitive leaderboards.
"""

__version__ = "1.0.0"
