#!/usr/bin/env python3
"""Probe every clip in the catalog and report which ones would play."""

import asyncio

from chorus.catalog.store import ClipStore
from chorus.config import settings
from chorus.engine.ffmpeg import FFmpegEngine
from chorus.playback.validator import Validator


async def main() -> None:
    store = ClipStore.from_settings(settings)
    engine = FFmpegEngine.from_settings(settings)
    validator = Validator.from_settings(settings, engine)

    clips = store.list_clips()
    eligible = {c.id for c in await validator.eligible(clips)}

    print("=" * 50)
    print("CATALOG CHECK")
    print("=" * 50)
    print(f"Store: {store.root}")
    print(f"Clips: {len(clips)} | Eligible: {len(eligible)}")
    print()
    for clip in clips:
        mark = "OK  " if clip.id in eligible else "SKIP"
        print(f"  [{mark}] {clip.id}  {clip.size_bytes:>9} B  {clip.created_at:%Y-%m-%d %H:%M:%S}")

    master = store.master()
    if master is not None:
        print()
        print(f"Master: {master.path} ({master.size_bytes} B)")


if __name__ == "__main__":
    asyncio.run(main())
