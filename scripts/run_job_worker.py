"""Run the job worker from the command line.

Single tick by default, which is what a cron or Cloud Scheduler job wants. `--loop` keeps
ticking with a short idle sleep for local development.
"""

from __future__ import annotations

import argparse
import asyncio
import logging

from app.config import get_settings
from app.core.logging import _initialize_logging
from app.jobs.worker import run_worker_tick

logger = logging.getLogger("scripts.run_job_worker")


def _parse_args() -> argparse.Namespace:
  parser = argparse.ArgumentParser(description="Process queued story, audio and image jobs.")
  parser.add_argument("--loop", action="store_true", help="Keep ticking until interrupted.")
  parser.add_argument("--idle-sleep", type=float, default=5.0, help="Seconds to wait after an empty tick in --loop mode.")
  return parser.parse_args()


async def _run(loop: bool, idle_sleep: float) -> int:
  settings = get_settings()
  _initialize_logging(settings)
  while True:
    result = await run_worker_tick(settings)
    if not loop:
      return result.processed
    if result.processed == 0:
      await asyncio.sleep(idle_sleep)


def main() -> None:
  args = _parse_args()
  try:
    processed = asyncio.run(_run(args.loop, args.idle_sleep))
  except KeyboardInterrupt:
    logger.info("Worker interrupted; exiting.")
    return
  logger.info("Worker tick processed %s job(s)", processed)


if __name__ == "__main__":
  main()
