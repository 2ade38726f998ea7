"""Command-line interface for building and simulating lineups from a JSON player pool."""

from __future__ import annotations

import argparse
import csv
import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

from pydantic import ValidationError

from dfsim.config import Settings
from dfsim.config_loader import PolicyProfile
from dfsim.correlation import build_correlation
from dfsim.errors import ConfigurationError
from dfsim.models import PlayerRecord
from dfsim.optimizer import StackingRule, optimize
from dfsim.pool import ContestExportError, export_lineups_to_csv
from dfsim.scoring import Strategy
from dfsim.simulation import ContestConfig, SimulationResult, simulate_lineups


def _stack_rule(value: str) -> StackingRule:
    """Parse ``type[:min[:max]][@TEAM,TEAM]``, e.g. ``team:3@KC`` or ``mini:2:3``."""

    spec, _, teams = value.partition("@")
    parts = spec.split(":")
    try:
        return StackingRule.create(
            parts[0],
            min_players=int(parts[1]) if len(parts) > 1 and parts[1] else 2,
            max_players=int(parts[2]) if len(parts) > 2 and parts[2] else None,
            teams=teams.split(",") if teams else (),
        )
    except (ConfigurationError, ValueError) as exc:
        raise argparse.ArgumentTypeError(f"invalid stack {value!r}: {exc}") from exc


def _fraction_pair(value: str) -> tuple[str, float]:
    key, sep, raw = value.partition("=")
    try:
        if not sep or not key:
            raise ValueError("expected KEY=FRACTION")
        return key, float(raw)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"invalid exposure {value!r}: {exc}") from exc


def _parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Generate and simulate DFS lineups from a player pool")
    parser.add_argument("players", type=Path, help="Path to player pool JSON")
    parser.add_argument("--sport", default="NFL", help="Sport key (e.g., NFL, NBA, MLB, NHL, GOLF)")
    parser.add_argument("--platform", default="DK", help="Platform key (DK or FD)")
    parser.add_argument("--lineups", type=int, default=20, help="Number of lineups to build")
    parser.add_argument(
        "--strategy",
        default=Strategy.BALANCED.value,
        choices=[strategy.value for strategy in Strategy],
        help="Objective used to score players",
    )
    parser.add_argument("--min-different", type=int, default=1, help="Minimum players differing between lineups")
    parser.add_argument("--salary-cap", type=int, default=None, help="Override the platform salary cap")
    parser.add_argument("--min-salary", type=int, default=None, help="Minimum total salary per lineup")
    parser.add_argument("--lock", nargs="*", default=None, help="Player IDs to force into every lineup")
    parser.add_argument("--exclude", nargs="*", default=None, help="Player IDs to remove from consideration")
    parser.add_argument("--max-team", type=int, default=None, help="Maximum players from one team")
    parser.add_argument(
        "--max-exposure",
        type=float,
        default=None,
        help="Maximum fraction of lineups any single player can appear in (0-1)",
    )
    parser.add_argument(
        "--stack",
        type=_stack_rule,
        action="append",
        default=[],
        help="Stacking rule type[:min[:max]][@TEAM,TEAM] (team, game or mini); repeatable",
    )
    parser.add_argument(
        "--min-exposure", type=_fraction_pair, nargs="*", default=None, metavar="ID=FRAC",
        help="Minimum fraction of lineups for specific players",
    )
    parser.add_argument(
        "--player-exposure", type=_fraction_pair, nargs="*", default=None, metavar="ID=FRAC",
        help="Per-player maximum exposure overriding --max-exposure",
    )
    parser.add_argument(
        "--team-exposure", type=_fraction_pair, nargs="*", default=None, metavar="TEAM=FRAC",
        help="Maximum fraction of lineups using any player from a team",
    )
    parser.add_argument("--workers", type=int, default=None, help="Worker processes (default from DFSIM_WORKERS)")
    parser.add_argument("--timeout", type=float, default=None, help="Seconds before returning partial results")
    parser.add_argument("--policy", type=Path, default=None, help="Policy profile JSON with correlation/event overrides")
    parser.add_argument("--simulate", type=int, default=None, metavar="N", help="Simulate each lineup N times")
    parser.add_argument("--seed", type=int, default=None, help="Seed for the simulation")
    parser.add_argument("--events", action="store_true", help="Apply injury/blowout/bonus events while simulating")
    parser.add_argument("--field-size", type=int, default=None, help="Contest field size for ROI estimates")
    parser.add_argument("--entry-fee", type=float, default=None, help="Contest entry fee")
    parser.add_argument("--contest-type", default="gpp", choices=["gpp", "cash"], help="Contest payout structure")
    parser.add_argument("--output", type=Path, default=Path("lineups.csv"), help="Output CSV path")
    parser.add_argument("--contest-export", type=Path, default=None, help="Write a platform upload CSV")
    return parser.parse_args(argv)


def load_pool(path: Path) -> tuple[List[PlayerRecord], Dict[str, List[float]]]:
    """Read players (and optional score histories) from a JSON file.

    Accepts either a list of player objects or ``{"players": [...],
    "histories": {"player_id": [scores, ...]}}``.
    """

    try:
        data: Any = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise ConfigurationError(f"Invalid player pool JSON {path}: {exc}") from exc
    histories: Dict[str, List[float]] = {}
    if isinstance(data, dict):
        histories = {str(k): [float(v) for v in values] for k, values in data.get("histories", {}).items()}
        data = data.get("players", [])
    if not isinstance(data, list):
        raise ConfigurationError(f"Player pool {path} must be a list of players")
    try:
        players = [PlayerRecord.model_validate(item) for item in data]
    except ValidationError as exc:
        raise ConfigurationError(f"Invalid player in {path}: {exc}") from exc
    return players, histories


def _write_lineups(path: Path, lineups, results: Dict[str, SimulationResult]) -> None:
    with path.open("w", newline="", encoding="utf-8") as f:
        writer = csv.writer(f)
        header = [
            "lineup_id",
            "strategy",
            "score",
            "salary",
            "projection",
            "player_ids",
            "player_names",
            "teams",
            "slots",
        ]
        if results:
            header += ["sim_mean", "sim_std", "sim_p90", "prob_exceed_target", "risk_score", "roi_mean", "cash_probability"]
        writer.writerow(header)
        for lineup in lineups:
            row = [
                lineup.lineup_id,
                lineup.strategy,
                f"{lineup.score:.3f}",
                lineup.salary,
                f"{lineup.projection:.2f}",
                " ".join(lineup.player_ids),
                " ".join(player.name for player in lineup.players),
                " ".join(player.team for player in lineup.players),
                " ".join(assignment.slot for assignment in lineup.assignments),
            ]
            result = results.get(lineup.lineup_id)
            if result is not None:
                row += [
                    f"{result.mean:.2f}",
                    f"{result.std:.2f}",
                    f"{result.percentiles[90]:.2f}",
                    f"{result.prob_exceed_target:.3f}",
                    f"{result.risk_score:.1f}",
                    "-" if result.roi is None else f"{result.roi.mean:.1f}",
                    "-" if result.cash_probability is None else f"{result.cash_probability:.3f}",
                ]
            elif results:
                row += ["-"] * 7
            writer.writerow(row)


def main(argv: Optional[Sequence[str]] = None) -> None:
    args = _parse_args(argv)
    settings = Settings.from_env()
    logging.basicConfig(level=settings.log_level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    try:
        players, histories = load_pool(args.players)
        profile = PolicyProfile.load(args.policy) if args.policy else PolicyProfile()
        correlation_policy = profile.correlation_policy()

        correlation = None
        if args.strategy == Strategy.CORRELATION_WEIGHTED.value or args.simulate:
            correlation = build_correlation(players, args.sport, policy=correlation_policy)
            if correlation.degraded_to_independent:
                print("Correlation matrix could not be repaired; players are treated as independent")

        result = optimize(
            players,
            sport=args.sport,
            platform=args.platform,
            salary_cap=args.salary_cap,
            num_lineups=args.lineups,
            min_different_players=args.min_different,
            strategy=args.strategy,
            correlation=correlation,
            histories=histories,
            lock_player_ids=args.lock,
            exclude_player_ids=args.exclude,
            max_exposure=args.max_exposure,
            max_from_one_team=args.max_team,
            min_salary=args.min_salary,
            stacking_rules=args.stack,
            min_exposure=dict(args.min_exposure or ()),
            player_max_exposure=dict(args.player_exposure or ()),
            team_max_exposure=dict(args.team_exposure or ()),
            workers=args.workers,
            timeout=args.timeout,
            settings=settings,
        )
        if not result.feasible:
            raise SystemExit(f"Infeasible: {result.infeasible_reason} (slots: {', '.join(result.infeasible_slots)})")
        print(f"Built {len(result.lineups)}/{result.requested} lineups in {result.stats.elapsed:.2f}s")
        if result.shortfall:
            print(f"Shortfall of {result.shortfall} lineups under the diversity constraints")
        if result.incomplete:
            print("Lineup search stopped early; results are partial")
        for violation in result.exposure_violations:
            print(f"Exposure not met: {violation}")

        sims: Dict[str, SimulationResult] = {}
        if args.simulate and result.lineups:
            contest = None
            if args.field_size is not None or args.entry_fee is not None:
                contest = ContestConfig(
                    field_size=args.field_size or 1_000,
                    entry_fee=args.entry_fee or 1.0,
                    contest_type=args.contest_type,
                )
            batch = simulate_lineups(
                result.lineups,
                players,
                sport=args.sport,
                platform=args.platform,
                correlation=correlation,
                iterations=args.simulate,
                events=profile.event_config() if args.events else None,
                contest=contest,
                seed=args.seed,
                workers=args.workers,
                timeout=args.timeout,
                histories=histories,
                salary_cap=args.salary_cap,
                correlation_policy=correlation_policy,
                settings=settings,
            )
            sims = {item.lineup_id: item for item in batch.results}
            print(
                f"Simulated {batch.iterations_completed}/{batch.iterations_requested} iterations "
                f"(correlation: {batch.correlation_method}, seed entropy {batch.seed_entropy})"
            )
            if batch.incomplete:
                print("Simulation stopped early; statistics cover completed iterations only")

        _write_lineups(args.output, result.lineups, sims)
        print(f"Wrote lineups to {args.output}")
        if args.contest_export:
            args.contest_export.write_text(
                export_lineups_to_csv(result.lineups, sport=args.sport, platform=args.platform),
                encoding="utf-8",
            )
            print(f"Wrote contest upload to {args.contest_export}")
    except (ConfigurationError, ContestExportError) as exc:
        raise SystemExit(f"error: {exc}") from exc


if __name__ == "__main__":
    main()
