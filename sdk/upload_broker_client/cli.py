"""CLI: upload-broker upload | download-url."""
import argparse
import json
import os
import sys
from pathlib import Path

from .client import BrokerClient, BrokerError, ScanInfected, ScanPending


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(prog="upload-broker", description="Upload files through an upload broker")
    parser.add_argument("--base-url", default=os.environ.get("UPLOAD_BROKER_URL", "http://localhost:8000"), help="Broker base URL")
    parser.add_argument("--token", default=os.environ.get("UPLOAD_BROKER_TOKEN"), help="Bearer token (AUTH_MODE=jwt)")
    sub = parser.add_subparsers(dest="command", required=True)

    # upload
    p_upload = sub.add_parser("upload", help="Upload local files (multipart above the threshold)")
    p_upload.add_argument("files", nargs="+", help="Local file paths to upload")
    p_upload.add_argument("--prefix", default="", help="Key prefix, e.g. uploads/")
    p_upload.add_argument("--content-type", default=None, help="Content type for all files")
    p_upload.set_defaults(func=cmd_upload)

    # download-url
    p_get = sub.add_parser("download-url", help="Print a download URL once the virus scan is clean")
    p_get.add_argument("key", help="Object key")
    p_get.add_argument("--expires", type=int, default=None, help="URL lifetime in seconds")
    p_get.add_argument("--wait", action="store_true", help="Poll while the scan is pending")
    p_get.set_defaults(func=cmd_download_url)

    args = parser.parse_args(argv)
    client = BrokerClient(base_url=args.base_url, token=args.token)
    try:
        return args.func(client, args)
    except (BrokerError, OSError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    finally:
        client.close()


def cmd_upload(client: BrokerClient, args: argparse.Namespace) -> int:
    paths = [Path(f) for f in args.files]
    missing = [p for p in paths if not p.exists()]
    if missing:
        print(f"Missing files: {missing}", file=sys.stderr)
        return 1
    result = {}
    for p in paths:
        out = client.upload_file(p, key=f"{args.prefix}{p.name}", content_type=args.content_type)
        result[p.name] = out["key"]
        print(f"  {p.name} -> {out['key']} ({out['parts']} part(s))", file=sys.stderr)
    print(json.dumps(result, indent=2))
    return 0


def cmd_download_url(client: BrokerClient, args: argparse.Namespace) -> int:
    try:
        if args.wait:
            out = client.wait_for_download_url(args.key, expires=args.expires)
        else:
            out = client.presign_get(args.key, expires=args.expires)
    except ScanPending:
        print("Virus scan in progress; try again later", file=sys.stderr)
        return 2
    except ScanInfected:
        print("File failed security scan", file=sys.stderr)
        return 3
    print(out["url"])
    return 0


if __name__ == "__main__":
    sys.exit(main())
