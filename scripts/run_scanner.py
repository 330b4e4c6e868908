#!/usr/bin/env python3
"""Scan for cataloged works from a webcam or a recorded video.

Loads the feature model, the tenant's saved dataset and the catalog, then
logs every stable match until the video ends, the duration elapses or
Ctrl+C is pressed.

Usage:
    python scripts/run_scanner.py
    python scripts/run_scanner.py --video data/visit.mp4
    python scripts/run_scanner.py --tenant museum-1 --duration 60
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from pathlib import Path

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from visual_scanner.config import Config
from visual_scanner.exceptions import ModelLoadError, PermissionDenied
from visual_scanner.factory import create_engine
from visual_scanner.interfaces import StableMatch
from visual_scanner.logging_config import setup_logging

logger = setup_logging(__name__)


def parse_args() -> argparse.Namespace:
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(
        description="Recognize cataloged works in real time",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )

    parser.add_argument(
        "--video",
        type=str,
        default=None,
        help="Read frames from a video file instead of the webcam",
    )

    parser.add_argument(
        "--tenant",
        type=str,
        default=None,
        help="Tenant ID (overrides .env TENANT_ID value)",
    )

    parser.add_argument(
        "--duration",
        type=float,
        default=0.0,
        help="Stop after this many seconds (0 = run until interrupted)",
    )

    return parser.parse_args()


def print_section(title: str) -> None:
    """Print a section divider."""
    print()
    print("=" * 70)
    print(f"  {title}")
    print("=" * 70)


async def scan(args: argparse.Namespace, config: Config) -> int:
    engine = create_engine(config, video_path=args.video, tenant_id=args.tenant)

    matches: list[StableMatch] = []

    def show_match(match: StableMatch) -> None:
        matches.append(match)
        title = match.entity.display_name if match.entity.known else "(not in catalog)"
        print(f"✓ Match: {match.label} {title} [{match.confidence:.2f}]")

    engine.on_match(show_match)
    engine.on_no_match(lambda: print("… scanning"))

    print_section("Step 1: Loading")
    try:
        await engine.load()
    except ModelLoadError as e:
        print(f"❌ Error: {e}")
        print()
        print("Export a MobileNet feature model to ONNX and set MODEL_PATH in .env")
        return 1

    print(f"✓ Labels in dataset: {engine.dataset.num_classes()}")
    if engine.dataset.num_classes() == 0:
        print("  Dataset is empty; teach some works first:")
        print("     python scripts/train_scanner.py --label WORK_ID")

    print_section("Step 2: Scanning")
    try:
        await engine.begin()
    except (FileNotFoundError, RuntimeError) as e:
        print(f"❌ Error: {e}")
        return 1
    except PermissionDenied as e:
        print(f"❌ Error: {e}")
        print()
        print("Troubleshooting:")
        print("  - Check if camera is connected")
        print("  - Try a different camera ID (CAMERA_ID in .env)")
        print("  - Close other applications using the camera")
        return 1

    print("Press Ctrl+C to quit")
    print()

    async with engine:
        if args.duration > 0:
            try:
                await asyncio.wait_for(asyncio.shield(engine.join()), timeout=args.duration)
            except asyncio.TimeoutError:
                logger.info(f"Duration of {args.duration:.0f}s elapsed")
        else:
            await engine.join()

    print_section("Summary")
    print(f"Cycles:      {engine.cycles_completed}")
    print(f"Inferences:  {engine.inferences}")
    print(f"Matches:     {len(matches)}")
    return 0


def main() -> None:
    """Main function."""
    args = parse_args()

    config = Config.from_env()
    print_section("Visual Scanner")
    print(config)

    try:
        code = asyncio.run(scan(args, config))
    except KeyboardInterrupt:
        print()
        logger.info("Interrupted by user")
        code = 0

    sys.exit(code)


if __name__ == "__main__":
    main()
