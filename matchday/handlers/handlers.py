# main handlers module for the scoring service - instantiates and wires every handler the runtime uses

from typing import Any

from matchday.cache import LeaderboardCache
from matchday.config.core import Settings
from matchday.database import DBM
from matchday.events import EventSink
from matchday.handlers.analytics.analytics import AnalyticsView
from matchday.handlers.grade.coordinator import GradingCoordinator
from matchday.handlers.ingest.result_ingress import ResultIngress
from matchday.handlers.ingest.submit_prediction import PredictionIntake
from matchday.handlers.leaderboard.projection import LeaderboardProjection


class Handlers:
    def __init__(
        self,
        database: DBM,
        cache: LeaderboardCache,
        settings: Settings,
        sink: EventSink | None = None,
        submit: Any = None,
    ):
        self.database = database
        self.leaderboard_projection = LeaderboardProjection(database, cache, settings.leaderboard)
        self.grading_coordinator = GradingCoordinator(database, self.leaderboard_projection, sink, settings)
        self.result_ingress = ResultIngress(database, submit)
        self.prediction_intake = PredictionIntake(database)
        self.analytics_view = AnalyticsView(database)
