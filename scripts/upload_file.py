import argparse
import asyncio
import json
import time
from pathlib import Path

from chunked_upload.client import UploadClient
from chunked_upload.config import settings
from chunked_upload.errors import UploadError, UploadFailedError
from chunked_upload.log import configure_logging
from chunked_upload.metrics import metrics_text
from chunked_upload.tracing import setup_tracing
from chunked_upload.uploader import UploadOptions


async def _upload(args: argparse.Namespace) -> dict:
    path = Path(args.path)
    options = UploadOptions(
        parallelism=args.parallelism,
        max_part_retries=args.max_part_retries,
        file_attributes={"description": args.description} if args.description else {},
    )
    async with UploadClient(args.base_url, args.token or None) as client:
        if args.file_id:
            return await client.upload_new_version(args.file_id, path, options=options)
        return await client.upload_file(args.folder_id, args.name or path.name, path, options=options)


def main() -> int:
    parser = argparse.ArgumentParser(description="Upload a large file through an upload session.")
    parser.add_argument("path", help="File to upload")
    target = parser.add_mutually_exclusive_group(required=True)
    target.add_argument("--folder-id", help="Folder to create the file in")
    target.add_argument("--file-id", help="File to upload a new version of")
    parser.add_argument("--name", default="", help="File name for a new file. Defaults to the local name.")
    parser.add_argument("--description", default="", help="Optional description set at commit")
    parser.add_argument("--base-url", default=settings.upload_base_url, help="Upload API base URL")
    parser.add_argument("--token", default="", help="Bearer token. Defaults to ACCESS_TOKEN from the environment.")
    parser.add_argument("--parallelism", type=int, default=settings.parallelism, help="Concurrent part uploads")
    parser.add_argument(
        "--max-part-retries",
        type=int,
        default=settings.max_part_retries,
        help="Retries per part after a connection failure",
    )
    parser.add_argument("--metrics", action="store_true", help="Print Prometheus metrics after the upload")
    args = parser.parse_args()

    configure_logging()
    setup_tracing()

    started = time.perf_counter()
    try:
        file_resource = asyncio.run(_upload(args))
    except UploadFailedError as exc:
        print(f"[FAIL] {exc}")
        print(f"Upload session {exc.session.id} can be inspected or committed again.")
        return 1
    except UploadError as exc:
        print(f"[FAIL] {exc}")
        return 1

    elapsed = time.perf_counter() - started
    print(json.dumps(file_resource, indent=2, sort_keys=True))
    print(f"\nUploaded {args.path} in {elapsed:.2f}s")
    if args.metrics:
        print(metrics_text())
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
