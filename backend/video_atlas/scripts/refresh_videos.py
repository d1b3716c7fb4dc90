from __future__ import annotations

import argparse
import sys

from backend.video_atlas.config import load_settings
from backend.video_atlas.dependencies import build_catalog_service
from backend.video_atlas.logging_config import configure_application_logging
from backend.video_atlas.services.youtube_service import YouTubeServiceError


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Refresh or read the locally cached Video Atlas feed.",
    )
    parser.add_argument(
        "--force",
        action="store_true",
        help="Refetch from YouTube even when the cache is still fresh.",
    )
    parser.add_argument(
        "--channel",
        action="append",
        default=[],
        metavar="CHANNEL_ID",
        help="Channel id to aggregate (repeatable). Defaults to VIDEO_ATLAS_CHANNEL_IDS.",
    )
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    args = _parse_args(argv)
    settings = load_settings(validate_api_key=False)
    configure_application_logging(settings)

    channel_ids: list[str] = args.channel or settings.channel_ids
    if not channel_ids:
        print("No channels configured. Pass --channel or set VIDEO_ATLAS_CHANNEL_IDS.")
        return 2

    catalog = build_catalog_service(settings)

    try:
        result = catalog.get_videos_with_metadata(channel_ids, force_refresh=args.force)
    except YouTubeServiceError as exc:
        print(f"Failed to load videos: {exc}", file=sys.stderr)
        return 1

    source = "cache" if result.cache_hit else "youtube"
    print(f"{len(result.videos)} videos from {source}")
    print("published_at\tvideo_id\tchannel_title\tlocation\ttitle")
    for video in result.videos:
        print(
            "\t".join(
                [
                    video.published_at.date().isoformat(),
                    video.video_id,
                    video.channel_title,
                    video.location_label or "-",
                    video.title,
                ]
            )
        )
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
