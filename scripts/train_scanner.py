#!/usr/bin/env python3
"""Teach the scanner a work.

Captures sharp frames of a work from the webcam (or a video), stores their
embeddings under the work's label and saves the tenant dataset.

Usage:
    python scripts/train_scanner.py --label art-12
    python scripts/train_scanner.py --label art-12 --num-examples 20
    python scripts/train_scanner.py --label art-12 --video data/art-12.mp4
    python scripts/train_scanner.py --remove art-12
    python scripts/train_scanner.py --reset
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from pathlib import Path

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from visual_scanner.config import Config
from visual_scanner.enrollment import RECOMMENDED_EXAMPLES, TrainingService
from visual_scanner.exceptions import ModelLoadError, PermissionDenied
from visual_scanner.factory import create_engine
from visual_scanner.logging_config import setup_logging

logger = setup_logging(__name__)


def parse_args() -> argparse.Namespace:
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(
        description="Capture reference examples for a work",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )

    group = parser.add_mutually_exclusive_group(required=True)
    group.add_argument("--label", type=str, help="Label (work ID) to teach")
    group.add_argument("--remove", type=str, help="Label to forget")
    group.add_argument("--reset", action="store_true", help="Forget every label of the tenant")

    parser.add_argument(
        "--num-examples",
        type=int,
        default=None,
        help="Examples to capture (overrides .env NUM_TRAINING_EXAMPLES value)",
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
        "--no-display",
        action="store_true",
        help="Disable preview window (headless mode)",
    )

    return parser.parse_args()


async def train(args: argparse.Namespace, config: Config) -> int:
    engine = create_engine(config, video_path=args.video, tenant_id=args.tenant)

    try:
        await engine.load()
    except ModelLoadError as e:
        print(f"❌ Error: {e}")
        return 1

    if args.remove:
        engine.remove_label(args.remove)
        engine.save()
        print(f"✓ Removed '{args.remove}'")
        return 0

    if args.reset:
        removed = engine.dataset.num_classes()
        engine.clear_dataset()
        engine.save()
        print(f"✓ Cleared {removed} label(s)")
        return 0

    num_examples = args.num_examples or config.num_training_examples
    service = TrainingService(engine, min_sharpness=config.min_sharpness)

    try:
        with engine.camera as source:
            captured = service.enroll_from_source(
                source,
                args.label,
                num_examples=num_examples,
                display=not args.no_display,
            )
    except (PermissionDenied, FileNotFoundError, RuntimeError) as e:
        print(f"❌ Error: {e}")
        return 1

    if captured == 0:
        print(f"❌ No usable frames captured for '{args.label}'")
        return 1

    engine.save()

    total = engine.dataset.example_counts().get(args.label, 0)
    print(f"✓ Captured {captured} example(s); '{args.label}' now has {total}")
    if total < RECOMMENDED_EXAMPLES:
        print(f"  Capture at least {RECOMMENDED_EXAMPLES} examples for reliable matches")

    return 0


def main() -> None:
    """Main function."""
    args = parse_args()

    config = Config.from_env()
    logger.info(f"Loaded config: {config}")

    try:
        code = asyncio.run(train(args, config))
    except KeyboardInterrupt:
        print()
        logger.info("Interrupted by user")
        code = 1

    sys.exit(code)


if __name__ == "__main__":
    main()
