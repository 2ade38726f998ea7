"""Lightweight REST client for the dfsim API."""

from __future__ import annotations

import argparse
import json
from pathlib import Path

import httpx


def load_players(path: Path) -> list[dict]:
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise SystemExit(f"Invalid player pool JSON: {exc}") from exc
    if isinstance(data, dict):
        data = data.get("players", [])
    return data


def main() -> None:
    parser = argparse.ArgumentParser(description="Interact with the dfsim REST API")
    parser.add_argument("base_url", help="Base URL of the API, e.g. http://localhost:8000")
    parser.add_argument("players", type=Path, nargs="?", help="Player pool JSON")
    parser.add_argument("--sport", default="NFL")
    parser.add_argument("--platform", default="DK")
    parser.add_argument("--lineups", type=int, default=20, help="Number of lineups to request")
    parser.add_argument("--strategy", default="balanced")
    parser.add_argument("--simulate", type=int, default=None, metavar="N", help="Simulate lineups N times")
    parser.add_argument("--seed", type=int, default=None)
    parser.add_argument("--correlation-only", action="store_true", help="Fetch the correlation matrix and exit")
    parser.add_argument("--health", action="store_true", help="Check service health and exit")
    parser.add_argument("--timeout", type=float, default=120.0, help="HTTP timeout in seconds")
    args = parser.parse_args()

    with httpx.Client(base_url=args.base_url, timeout=args.timeout) as client:
        if args.health:
            resp = client.get("/health")
            resp.raise_for_status()
            print(json.dumps(resp.json(), indent=2))
            return

        if args.players is None:
            raise SystemExit("players file is required unless using --health")
        players = load_players(args.players)

        if args.correlation_only:
            resp = client.post("/correlation", json={"sport": args.sport, "players": players})
            if resp.status_code == 400:
                raise SystemExit(f"request rejected: {resp.json().get('detail')}")
            resp.raise_for_status()
            print(json.dumps(resp.json(), indent=2))
            return

        payload = {
            "sport": args.sport,
            "platform": args.platform,
            "players": players,
            "lineups": args.lineups,
            "strategy": args.strategy,
        }
        endpoint = "/optimize"
        if args.simulate:
            endpoint = "/simulate"
            payload["iterations"] = args.simulate
            if args.seed is not None:
                payload["seed"] = args.seed
        resp = client.post(endpoint, json=payload)
        if resp.status_code == 400:
            raise SystemExit(f"request rejected: {resp.json().get('detail')}")
        resp.raise_for_status()
        print(json.dumps(resp.json(), indent=2))


if __name__ == "__main__":
    main()
