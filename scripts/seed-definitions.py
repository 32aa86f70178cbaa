#!/usr/bin/env python3
"""
seed-definitions.py — Register sample metric definitions with the metricstore API.

Creates a handful of metric definitions (skipping codes that already exist)
and, with --with-snapshots, records one snapshot per definition for
yesterday's daily bucket so the lookup and range endpoints have data.

Usage:
    python scripts/seed-definitions.py
    python scripts/seed-definitions.py --api-url http://localhost:8788 --with-snapshots
    python scripts/seed-definitions.py --file my-definitions.json
"""

import argparse
import json
import random
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path
from urllib.error import HTTPError, URLError
from urllib.request import Request, urlopen


# ANSI color codes
class C:
    RED = "\033[91m"
    GREEN = "\033[92m"
    YELLOW = "\033[93m"
    CYAN = "\033[96m"
    BOLD = "\033[1m"
    DIM = "\033[2m"
    RESET = "\033[0m"


def colored(text: str, color: str) -> str:
    return f"{color}{text}{C.RESET}"


SAMPLE_DEFINITIONS = [
    {
        "code": "beneficios_concedidos",
        "name": "Benefícios concedidos",
        "granularity": "day",
        "unit": "benefícios",
        "decimal_places": 0,
    },
    {
        "code": "valor_pago",
        "name": "Valor pago",
        "granularity": "day",
        "prefix": "R$ ",
        "decimal_places": 2,
        "alert_threshold": "1000000",
    },
    {
        "code": "tempo_medio_analise",
        "name": "Tempo médio de análise",
        "granularity": "day",
        "suffix": " dias",
        "decimal_places": 1,
    },
]


def request_json(method: str, url: str, payload: dict | None = None) -> tuple[int, dict | list | None]:
    """Send a JSON request. Returns (status, decoded body)."""
    data = json.dumps(payload).encode("utf-8") if payload is not None else None
    req = Request(
        url,
        data=data,
        headers={"Content-Type": "application/json"},
        method=method,
    )
    try:
        with urlopen(req, timeout=10) as resp:
            body = resp.read().decode("utf-8")
            return resp.status, json.loads(body) if body else None
    except HTTPError as e:
        body = e.read().decode("utf-8", errors="replace")
        try:
            return e.code, json.loads(body)
        except json.JSONDecodeError:
            return e.code, {"detail": body}


def ensure_definition(api_url: str, definition: dict) -> dict | None:
    """Create a definition, or fetch the existing one with the same code."""
    status, body = request_json("POST", f"{api_url}/v1/definitions", definition)
    if status == 201:
        print(f"  {colored('created', C.GREEN)}  {definition['code']}")
        return body
    if status == 409:
        status, body = request_json("GET", f"{api_url}/v1/definitions/code/{definition['code']}")
        if status == 200:
            print(f"  {colored('exists', C.YELLOW)}   {definition['code']} (v{body['version']})")
            return body
    print(f"  {colored('failed', C.RED)}   {definition['code']}: HTTP {status} {body}")
    return None


def record_sample_snapshot(api_url: str, definition: dict) -> bool:
    """Record a random value for yesterday's UTC day."""
    today = datetime.now(timezone.utc).replace(hour=0, minute=0, second=0, microsecond=0)
    start = today - timedelta(days=1)
    payload = {
        "definition_id": definition["id"],
        "period_start": start.isoformat(),
        "period_end": today.isoformat(),
        "granularity": "day",
        "dimensions": {"source": "seed"},
        "value": str(round(random.uniform(10, 5000), 2)),
        "duration_ms": random.randint(5, 500),
    }
    status, body = request_json("POST", f"{api_url}/v1/snapshots", payload)
    if status == 201:
        revision = colored(f"(revision {body['revision']})", C.DIM)
        print(
            f"  {colored('snapshot', C.CYAN)} {definition['code']} = "
            f"{body['formatted_value']} {revision}"
        )
        return True
    print(f"  {colored('failed', C.RED)}   snapshot for {definition['code']}: HTTP {status} {body}")
    return False


def load_definitions(path: str | None) -> list[dict]:
    if path is None:
        return SAMPLE_DEFINITIONS
    file_path = Path(path)
    if not file_path.exists():
        print(colored(f"Error: {file_path} not found", C.RED))
        sys.exit(1)
    with open(file_path) as f:
        data = json.load(f)
    if not isinstance(data, list):
        print(colored("Error: definitions file must contain a JSON array", C.RED))
        sys.exit(1)
    return data


def main() -> None:
    parser = argparse.ArgumentParser(description="Seed metric definitions into metricstore")
    parser.add_argument("--api-url", default="http://localhost:8788", help="API base URL")
    parser.add_argument("--file", help="JSON file with an array of definitions")
    parser.add_argument(
        "--with-snapshots",
        action="store_true",
        help="Also record a sample snapshot for yesterday per definition",
    )
    args = parser.parse_args()
    api_url = args.api_url.rstrip("/")

    print(colored(f"\nSeeding metric definitions into {api_url}\n", C.BOLD))

    try:
        definitions = [ensure_definition(api_url, d) for d in load_definitions(args.file)]
    except URLError as e:
        print(colored(f"Error: cannot reach {api_url}: {e.reason}", C.RED))
        sys.exit(1)

    created = [d for d in definitions if d is not None]
    failures = len(definitions) - len(created)

    if args.with_snapshots:
        print()
        failures += sum(1 for d in created if not record_sample_snapshot(api_url, d))

    print()
    if failures:
        print(colored(f"Done with {failures} failure(s).", C.RED))
        sys.exit(1)
    print(colored(f"Done. {len(created)} definition(s) ready.", C.GREEN))


if __name__ == "__main__":
    main()
