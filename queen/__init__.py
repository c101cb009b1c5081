"""
Hivemoot Queen: governance bot for GitHub repositories.

Moves issues through discussion, voting and implementation phases and
keeps a leaderboard of the PRs competing to implement each ready issue.
"""

__version__ = "0.1.0"
