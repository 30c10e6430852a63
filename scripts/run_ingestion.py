"""
Run catalog ingestion once from the CLI and print the JSON summary.
"""

from __future__ import annotations

import argparse
import json

from app.ingestion.errors import SourceConfigError
from app.logging_utils import configure_logging
from app.schemas.ingestion import CatalogRunResponse
from app.services.catalog_ingestion_service import get_catalog_ingestion_service


def main() -> int:
    parser = argparse.ArgumentParser(description="Run anime catalog ingestion.")
    parser.add_argument(
        "--source",
        dest="source",
        default=None,
        help="Optional source name; all configured sources run when omitted.",
    )
    parser.add_argument(
        "--test",
        dest="test_mode",
        action="store_true",
        help="Cap every budget to one page or a few IDs.",
    )
    parser.add_argument(
        "--reset",
        dest="reset_position",
        type=int,
        default=None,
        help="Reset --source's cursor to this position instead of running.",
    )
    parser.add_argument("--log-level", dest="log_level", default=None)
    args = parser.parse_args()

    configure_logging(args.log_level)
    service = get_catalog_ingestion_service()

    try:
        if args.reset_position is not None:
            if not args.source:
                parser.error("--reset requires --source")
            position = service.reset(args.source, args.reset_position)
            print(json.dumps({"success": True, "source": args.source, "position": position}, indent=2))
            return 0
        summary = service.run(args.source, test_mode=args.test_mode)
    except SourceConfigError as exc:
        print(json.dumps({"success": False, "error": str(exc)}, indent=2))
        return 2

    response = CatalogRunResponse.from_run(summary, test_mode=args.test_mode)
    print(response.model_dump_json(indent=2))
    return 0 if summary.success else 1


if __name__ == "__main__":
    raise SystemExit(main())
