"""CLI entry point for the hookrelay server."""

import argparse
import os


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(
        prog="hookrelay-server",
        description="hookrelay — verify, record and dispatch provider webhooks",
    )
    parser.add_argument("--host", default="0.0.0.0", help="Bind host (default: 0.0.0.0)")
    parser.add_argument("--port", type=int, default=8080, help="Bind port (default: 8080)")
    parser.add_argument(
        "--local",
        action="store_true",
        help="Local dev mode: SQLite database, in-memory publisher, no Redis required",
    )
    args = parser.parse_args(argv)

    if args.local:
        os.environ["HOOKRELAY_LOCAL_MODE"] = "1"
        os.environ.setdefault("HOOKRELAY_JSON_LOGS", "0")

    import uvicorn

    uvicorn.run("hookrelay.main:app", host=args.host, port=args.port)


if __name__ == "__main__":
    main()
