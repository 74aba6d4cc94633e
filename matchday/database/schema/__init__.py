from .base import Base, metadata
from .leaderboards import LeaderboardEntry
from .reference import Contest, Match, Prediction, TeamMember
from .scores import Score
from .streaks import UserStreak
from .tasks import GradingTask

__all__ = [
    "Base",
    "metadata",
    "Contest",
    "Match",
    "Prediction",
    "TeamMember",
    "Score",
    "UserStreak",
    "LeaderboardEntry",
    "GradingTask",
]
