import argparse
import json
import logging
import sys
from typing import Any, Dict, Optional, Sequence

import pandas as pd

from prodrec.config import ClientConfig
from prodrec.errors import ProdRecError
from prodrec.services.endpoint import RecommendationEndpoint
from prodrec.utils.logger import get_logger

LOGGER = logging.getLogger("prodrec.cli")


def _parse_param(raw: str) -> tuple:
    """`name=value` with JSON values where they parse (`true`, `30`), strings otherwise."""
    name, sep, value = raw.partition("=")
    if not sep or not name:
        raise argparse.ArgumentTypeError(f"expected name=value, got {raw!r}")
    try:
        return name, json.loads(value)
    except ValueError:
        return name, value


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="prodrec", description="Drive a hosted product-recommendations service.")
    parser.add_argument("--service-url", help="Service base URL (env PRODREC_SERVICE_URL)")
    parser.add_argument("--admin-key", help="Admin key (env PRODREC_ADMIN_KEY)")
    parser.add_argument("--rec-key", help="Recommendation key (env PRODREC_REC_KEY)")
    parser.add_argument("--timeout", type=float, help="Per-request timeout in seconds")
    sub = parser.add_subparsers(dest="command", required=True)

    status = sub.add_parser("status", help="Show a model's descriptor")
    status.add_argument("model_id")

    train = sub.add_parser("train", help="Train a new model")
    train.add_argument("--description", required=True)
    train.add_argument("--param", action="append", type=_parse_param, default=[], metavar="NAME=VALUE",
                       help="Training parameter, repeatable (e.g. usageRelativePath=usage/)")
    train.add_argument("--no-wait", action="store_true", help="Return as soon as the job is submitted")
    train.add_argument("--deadline", type=float, help="Stop waiting after this many seconds")

    delete = sub.add_parser("delete", help="Delete a model")
    delete.add_argument("model_id")
    delete.add_argument("--yes", action="store_true", help="Skip the confirmation prompt")

    for name, what in (("recommend-users", "user IDs"), ("recommend-items", "item IDs")):
        rec = sub.add_parser(name, help=f"Top-k recommendations for {what}")
        rec.add_argument("model_id")
        rec.add_argument("ids", nargs="*", help=what)
        rec.add_argument("--csv", help="Read input from a CSV file (user/item/time/event/weight columns)")
        rec.add_argument("-k", type=int, default=10)
        rec.add_argument("--output", help="Write the result table to this CSV file instead of stdout")
    return parser


def _recommend_input(args: argparse.Namespace) -> Any:
    if args.csv:
        return pd.read_csv(args.csv)
    return list(args.ids)


def _emit_table(table: pd.DataFrame, output: Optional[str]) -> None:
    if output:
        table.to_csv(output, index=False)
        LOGGER.info("Wrote %d rows to %s", len(table), output)
    else:
        print(table.to_string(index=False))


def _describe(model) -> Dict[str, Any]:
    snap = model.snapshot
    return {
        "id": snap.id,
        "description": snap.description,
        "endpoint": model.model_url,
        "creation_time": snap.creation_time.isoformat() if snap.creation_time else None,
        "status": snap.status,
        "status_message": snap.status_message,
        "parameters": snap.parameters,
        "statistics": snap.statistics,
    }


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = _build_parser().parse_args(argv)
    get_logger("prodrec", stream=sys.stderr)

    try:
        config = ClientConfig.from_env(
            service_url=args.service_url,
            admin_key=args.admin_key,
            rec_key=args.rec_key,
            timeout=args.timeout,
        )
        endpoint = RecommendationEndpoint.from_config(config)

        if args.command == "train":
            params: Dict[str, Any] = dict(args.param)
            params["description"] = args.description
            model = endpoint.train_model(params, wait=not args.no_wait, deadline=args.deadline)
            print(json.dumps(_describe(model), indent=2, default=str))
            return 0

        model = endpoint.get_model(args.model_id)
        if args.command == "status":
            print(json.dumps(_describe(model), indent=2, default=str))
        elif args.command == "delete":
            if not model.delete(confirm=not args.yes):
                return 1
        elif args.command == "recommend-users":
            _emit_table(model.user_recommendations(_recommend_input(args), k=args.k), args.output)
        elif args.command == "recommend-items":
            _emit_table(model.item_recommendations(_recommend_input(args), k=args.k), args.output)
        return 0
    except ProdRecError as exc:
        LOGGER.error("%s", exc)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
