from __future__ import annotations

import argparse

from mediauploader.cli.context import CLIContext
from mediauploader.web.app import SandboxSettings, create_app


def register(subparsers: argparse._SubParsersAction[argparse.ArgumentParser]) -> None:
    parser = subparsers.add_parser("serve", help="Run a local resumable upload sandbox server")
    parser.add_argument("--host", default="127.0.0.1")
    parser.add_argument("--port", type=int, default=8765)
    parser.add_argument("--token", help="Only accept this bearer token (default: accept any)")
    parser.add_argument(
        "--commit-limit",
        type=int,
        default=None,
        help="Keep at most this many bytes per content request to force partial commits",
    )
    parser.set_defaults(handler=run)


def run(args: argparse.Namespace, ctx: CLIContext) -> int:
    try:
        import uvicorn
    except Exception as exc:  # pragma: no cover
        raise RuntimeError("uvicorn is required for serve mode. Install project dependencies.") from exc

    app = create_app(SandboxSettings(access_token=args.token, commit_limit_bytes=args.commit_limit))
    ctx.console.print(
        f"Sandbox upload endpoint: http://{args.host}:{args.port}/upload/files/",
    )
    uvicorn.run(app, host=args.host, port=args.port)
    return 0
