"""REST API for the dfsim optimizer and simulator."""

from __future__ import annotations

from dataclasses import asdict
import logging
from typing import Any, Optional

from fastapi import FastAPI, HTTPException

from dfsim.api.schemas import (
    CorrelationRequest,
    CorrelationResponse,
    LineupPlayerResponse,
    LineupResponse,
    OptimizeRequest,
    OptimizeResponse,
    PlayerUsageResponse,
    SimulateRequest,
    SimulateResponse,
    SimulationResultResponse,
)
from dfsim.config import Settings
from dfsim.correlation import CorrelationContext, build_correlation
from dfsim.errors import ConfigurationError
from dfsim.models import Lineup
from dfsim.optimizer import OptimizeResult, StackingRule, optimize
from dfsim.scoring import StrategyWeights
from dfsim.simulation import ContestConfig, EventConfig, WeatherContext, simulate_lineups

logger = logging.getLogger(__name__)


def _calculate_player_usage(lineups: tuple[Lineup, ...]) -> list[PlayerUsageResponse]:
    total_lineups = len(lineups)
    if total_lineups == 0:
        return []

    usage: dict[str, dict[str, Any]] = {}
    for lineup in lineups:
        for player in lineup.players:
            entry = usage.setdefault(
                player.player_id,
                {"name": player.name, "team": player.team, "count": 0},
            )
            entry["count"] += 1

    sorted_usage = sorted(usage.items(), key=lambda item: (-item[1]["count"], item[1]["name"]))
    return [
        PlayerUsageResponse(
            player_id=player_id,
            name=data["name"],
            team=data["team"],
            count=data["count"],
            exposure=data["count"] / total_lineups,
        )
        for player_id, data in sorted_usage
    ]


def _lineup_response(lineup: Lineup) -> LineupResponse:
    return LineupResponse(
        lineup_id=lineup.lineup_id,
        strategy=lineup.strategy,
        score=lineup.score,
        salary=lineup.salary,
        projection=lineup.projection,
        players=[
            LineupPlayerResponse(
                slot=assignment.slot,
                player_id=assignment.player.player_id,
                name=assignment.player.name,
                team=assignment.player.team,
                position=assignment.player.position,
                salary=assignment.player.salary,
                projection=assignment.player.projection,
                ownership=assignment.player.ownership,
            )
            for assignment in lineup.assignments
        ],
    )


def _optimize_response(result: OptimizeResult) -> OptimizeResponse:
    return OptimizeResponse(
        lineups=[_lineup_response(lineup) for lineup in result.lineups],
        requested=result.requested,
        shortfall=result.shortfall,
        feasible=result.feasible,
        infeasible_slots=list(result.infeasible_slots),
        infeasible_reason=result.infeasible_reason,
        incomplete=result.incomplete,
        excluded_player_ids=list(result.excluded_player_ids),
        exposure_violations=list(result.exposure_violations),
        player_usage=_calculate_player_usage(result.lineups),
        elapsed=result.stats.elapsed,
    )


def _run_optimize(request: OptimizeRequest, settings: Settings) -> OptimizeResult:
    weights: Optional[StrategyWeights] = None
    if request.weights is not None:
        weights = StrategyWeights(**request.weights.model_dump())
    stacks = [StackingRule.create(**rule.model_dump()) for rule in request.stacking_rules]
    return optimize(
        request.players,
        sport=request.sport,
        platform=request.platform,
        salary_cap=request.salary_cap,
        num_lineups=request.lineups,
        min_different_players=request.min_different_players,
        strategy=request.strategy,
        histories=request.histories,
        weights=weights,
        lock_player_ids=request.lock_player_ids,
        exclude_player_ids=request.exclude_player_ids,
        max_exposure=request.max_exposure,
        max_from_one_team=request.max_from_one_team,
        min_salary=request.min_salary,
        stacking_rules=stacks,
        min_exposure=request.min_exposure,
        player_max_exposure=request.player_max_exposure,
        team_max_exposure=request.team_max_exposure,
        workers=request.workers,
        timeout=request.timeout,
        settings=settings,
    )


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    app = FastAPI(title="dfsim optimizer")
    app.state.settings = settings or Settings.from_env()

    @app.get("/health")
    async def health() -> dict[str, str]:
        return {"status": "ok"}

    @app.post("/optimize", response_model=OptimizeResponse)
    async def optimize_lineups(request: OptimizeRequest) -> OptimizeResponse:
        try:
            result = _run_optimize(request, app.state.settings)
        except ConfigurationError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        return _optimize_response(result)

    @app.post("/simulate", response_model=SimulateResponse)
    async def simulate(request: SimulateRequest) -> SimulateResponse:
        try:
            optimized = _run_optimize(request, app.state.settings)
            optimize_response = _optimize_response(optimized)
            if not optimized.lineups:
                return SimulateResponse(
                    optimize=optimize_response,
                    results=[],
                    iterations_requested=request.iterations,
                    iterations_completed=0,
                    incomplete=optimized.incomplete,
                    degraded_to_independent=False,
                    correlation_method="none",
                )
            events = None
            if request.events or request.weather is not None:
                weather = None
                if request.weather is not None:
                    teams = request.weather.affected_teams
                    weather = WeatherContext(
                        severity=request.weather.severity,
                        affected_teams=None if teams is None else frozenset(t.upper() for t in teams),
                    )
                events = EventConfig(
                    weather=weather,
                    enable_injuries=request.events,
                    enable_blowouts=request.events,
                    enable_bonuses=request.events,
                )
            contest = None
            if request.contest is not None:
                contest = ContestConfig(**request.contest.model_dump())
            batch = simulate_lineups(
                optimized.lineups,
                request.players,
                sport=request.sport,
                platform=request.platform,
                iterations=request.iterations,
                events=events,
                contest=contest,
                target_score=request.target_score,
                seed=request.seed,
                workers=request.workers,
                timeout=request.timeout,
                histories=request.histories,
                salary_cap=request.salary_cap,
                settings=app.state.settings,
            )
        except ConfigurationError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc

        return SimulateResponse(
            optimize=optimize_response,
            results=[SimulationResultResponse.model_validate(asdict(result)) for result in batch.results],
            iterations_requested=batch.iterations_requested,
            iterations_completed=batch.iterations_completed,
            incomplete=batch.incomplete,
            degraded_to_independent=batch.degraded_to_independent,
            correlation_method=batch.correlation_method,
            seed_entropy=batch.seed_entropy,
            field_tiers=batch.field_tiers,
            elapsed=batch.elapsed,
        )

    @app.post("/correlation", response_model=CorrelationResponse)
    async def correlation(request: CorrelationRequest) -> CorrelationResponse:
        context = CorrelationContext(
            weather_severity=request.weather_severity,
            tee_time_window_minutes=request.tee_time_window_minutes,
        )
        try:
            result = build_correlation(request.players, request.sport, context)
        except ConfigurationError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        return CorrelationResponse(
            player_ids=list(result.matrix.player_ids),
            matrix=result.matrix.values.tolist(),
            method=result.decomposition.method,
            jitter=result.jitter,
            repaired=result.repaired,
            degraded_to_independent=result.degraded_to_independent,
        )

    return app


__all__ = ["create_app"]
