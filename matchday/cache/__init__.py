from .leaderboard_cache import LeaderboardCache

__all__ = ["LeaderboardCache"]
