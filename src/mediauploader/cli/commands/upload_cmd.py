from __future__ import annotations

import argparse
import asyncio
import json
import mimetypes
from pathlib import Path
from typing import Any

from rich.progress import (
    BarColumn,
    DownloadColumn,
    Progress,
    TextColumn,
    TimeRemainingColumn,
    TransferSpeedColumn,
)
from rich.table import Table

from mediauploader.application.services.status_poll_service import (
    ProcessingEvent,
    VideoStatusPoller,
)
from mediauploader.application.services.upload_service import start_upload
from mediauploader.cli.context import CLIContext
from mediauploader.core.config import UploaderSettings
from mediauploader.core.errors import ValidationError
from mediauploader.domain.models.upload import (
    DEFAULT_CONTENT_TYPE,
    UploadCallbacks,
    UploadJob,
    UploadProgress,
)
from mediauploader.domain.models.video import DEFAULT_CATEGORY_ID, PRIVACY_STATUSES, VideoMetadata
from mediauploader.infrastructure.transport.base import TransportAdapter
from mediauploader.infrastructure.transport.httpx_transport import HttpxTransport


def register(subparsers: argparse._SubParsersAction[argparse.ArgumentParser]) -> None:
    parser = subparsers.add_parser("upload", help="Upload a media file through a resumable session")
    parser.add_argument("path", help="Local file to upload")
    parser.add_argument("--title", help="Video title")
    parser.add_argument("--description", help="Video description")
    parser.add_argument("--tag", action="append", dest="tags", help="Video tag (repeatable)")
    parser.add_argument("--category-id", type=int, default=DEFAULT_CATEGORY_ID)
    parser.add_argument("--privacy", choices=PRIVACY_STATUSES, default="public")
    parser.add_argument("--metadata-json", type=Path, help="JSON file with the full resource metadata")
    parser.add_argument("--content-type", help="Override the guessed content type")
    parser.add_argument("--token", help="OAuth bearer token (default: $MEDIAUP_ACCESS_TOKEN)")
    parser.add_argument("--chunk-size", type=int, help="Bytes per request; 0 sends everything at once")
    parser.add_argument(
        "--upload-url",
        help="Base upload endpoint; --file-id and uploadType=resumable are appended (default: $MEDIAUP_UPLOAD_URL)",
    )
    parser.add_argument(
        "--initiation-url",
        help="Exact URL for the session request, used as given instead of --upload-url",
    )
    parser.add_argument("--file-id", help="Replace an existing resource instead of creating one")
    parser.add_argument("--poll", action="store_true", help="Wait for server-side processing to finish")
    parser.set_defaults(handler=run)


def run(args: argparse.Namespace, ctx: CLIContext) -> int:
    path = Path(args.path).expanduser()
    if not path.is_file():
        raise ValidationError(f"File not found: {path}")

    token = ctx.require_token(args.token)

    metadata, params = _build_metadata(args)
    job = UploadJob(
        content=path.read_bytes(),
        credential=token,
        content_type=args.content_type or mimetypes.guess_type(path.name)[0] or DEFAULT_CONTENT_TYPE,
        name=path.name,
        metadata=metadata,
        params=params,
        chunk_size=ctx.chunk_size(args.chunk_size),
        file_id=args.file_id,
        base_url=args.upload_url or ctx.settings.upload_url,
        upload_url=args.initiation_url,
    )
    return asyncio.run(_upload(job, args, ctx))


async def _upload(job: UploadJob, args: argparse.Namespace, ctx: CLIContext) -> int:
    transport = _build_transport(ctx.settings)
    progress = Progress(
        TextColumn("{task.description}"),
        BarColumn(),
        DownloadColumn(),
        TransferSpeedColumn(),
        TimeRemainingColumn(),
        console=ctx.console,
    )
    try:
        with progress:
            task = progress.add_task(f"Uploading {job.name}", total=job.size)

            def on_progress(update: UploadProgress) -> None:
                progress.update(task, completed=update.bytes_sent)

            handle = start_upload(job, UploadCallbacks(on_progress=on_progress), transport=transport)
            result = await handle.wait()
            progress.update(task, completed=job.size)

        table = Table(title="Upload Result")
        table.add_column("File", overflow="fold")
        table.add_column("Status")
        table.add_column("Resource id", overflow="fold")
        table.add_row(job.name, str(result.status_code), result.resource_id or "-")
        ctx.console.print(table)

        if args.poll and result.resource_id:
            poller = VideoStatusPoller(
                transport,
                credential=job.credential or "",
                api_url=ctx.settings.api_url,
                interval_seconds=ctx.settings.status_poll_interval_seconds,
            )

            def on_event(event: ProcessingEvent) -> None:
                ctx.console.print(f"{event.video_id}: {event.state}")

            await poller.poll(result.resource_id, on_event=on_event)
    finally:
        await transport.aclose()
    return 0


def _build_metadata(args: argparse.Namespace) -> tuple[dict[str, Any] | None, dict[str, str]]:
    if args.metadata_json is not None:
        try:
            metadata = json.loads(args.metadata_json.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            raise ValidationError(f"Cannot read metadata file {args.metadata_json}: {exc}") from exc
        if not isinstance(metadata, dict):
            raise ValidationError(f"Metadata file {args.metadata_json} must hold a JSON object.")
        return metadata, {"part": ",".join(metadata.keys())}

    if args.title is None and args.description is None:
        return None, {}

    video = VideoMetadata(
        title=args.title or "",
        description=args.description or "",
        category_id=args.category_id,
        privacy_status=args.privacy,
    )
    if args.tags:
        video.tags = list(args.tags)
    return video.to_resource(), video.upload_params()


def _build_transport(settings: UploaderSettings) -> TransportAdapter:
    return HttpxTransport(timeout_seconds=settings.request_timeout_seconds)
