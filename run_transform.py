# /run_transform.py

import argparse
import asyncio
import json
import sys

import requests
from dotenv import load_dotenv

from core.identity import stable_entity
from core.models import EntityType


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Run one NodeWeaver transform against an entity.")
    parser.add_argument("transform_id", nargs="?", help="Transform id, e.g. dns_resolve")
    parser.add_argument("entity_type", nargs="?", choices=[t.value for t in EntityType], help="Entity type")
    parser.add_argument("value", nargs="?", help="Entity value, e.g. example.com")
    parser.add_argument("--param", action="append", default=[], metavar="KEY=VALUE",
                        help="Transform parameter (repeatable)")
    parser.add_argument("--api-url", help="Run through a running API (e.g. http://localhost:8000) instead of in-process")
    parser.add_argument("--no-merge", action="store_true", help="Do not merge the result into the API's graph")
    parser.add_argument("--list", action="store_true", help="List the available transforms and exit")
    args = parser.parse_args(argv)
    if not args.list and not (args.transform_id and args.entity_type and args.value):
        parser.error("transform_id, entity_type and value are required unless --list is given")
    return args


def parse_params(pairs):
    params = {}
    for pair in pairs:
        key, sep, value = pair.partition("=")
        if not sep:
            raise SystemExit(f"Invalid --param '{pair}', expected KEY=VALUE")
        params[key] = value
    return params


def run_remote(args, params) -> dict:
    base = args.api_url.rstrip("/")
    if args.list:
        response = requests.get(f"{base}/transforms/", timeout=10)
        response.raise_for_status()
        return response.json()

    entity = stable_entity(EntityType(args.entity_type), args.value)
    payload = {
        "transformId": args.transform_id,
        "entity": entity.model_dump(mode="json"),
        "params": params,
        "merge": not args.no_merge,
    }
    response = requests.post(f"{base}/transforms/execute", json=payload, timeout=120)
    response.raise_for_status()
    return response.json()


def run_local(args, params) -> dict:
    from core.config import settings
    from core.context import build_context
    from core.database import InMemoryGraphStore

    ctx = build_context(settings, store=InMemoryGraphStore())
    if args.list:
        return [t.describe() for t in ctx.registry.all()]

    entity = stable_entity(EntityType(args.entity_type), args.value)
    result = asyncio.run(ctx.engine.execute_transform(args.transform_id, entity, params))
    return result.model_dump(mode="json")


def main(argv=None):
    """
    Runs a transform either in-process or through the HTTP API and prints the
    result as JSON. Exits non-zero when the transform fails.
    """
    load_dotenv()
    args = parse_args(argv)
    params = parse_params(args.param)

    try:
        output = run_remote(args, params) if args.api_url else run_local(args, params)
    except requests.RequestException as e:
        print(f"Error: API call failed: {e}", file=sys.stderr)
        return 2

    print(json.dumps(output, indent=2, ensure_ascii=False))
    if isinstance(output, dict) and output.get("success") is False:
        return 1
    return 0


if __name__ == '__main__':
    sys.exit(main())
