"""
Orchestration module for the Hivemoot Queen governance bot.

This package contains the phase state machine, vote tallying, PR intake,
the implementation leaderboard and the reconciliation sweeps. The
worker process lives in queen.orchestration.worker and is not imported
here.
"""

from queen.orchestration.governance import GovernanceService, PhaseResult
from queen.orchestration.intake import ImplementationIntake, IntakeResult
from queen.orchestration.leaderboard import LeaderboardService
from queen.orchestration.reconciliation import SweepResult, run_sweep

__all__ = [
    "GovernanceService",
    "PhaseResult",
    "ImplementationIntake",
    "IntakeResult",
    "LeaderboardService",
    "SweepResult",
    "run_sweep",
]
