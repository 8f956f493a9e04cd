#!/usr/bin/env python
"""
Staggered downloads example using fiberflow.

Simulates fetching several files whose downloads take different amounts of
time. Each download is written as plain sequential code and runs in its own
logical thread; the event loop interleaves them. A download that takes longer
than the timeout is cancelled and reports how it was interrupted.

Usage:
  staggered_downloads.py [--timeout=<seconds>] [--trace]

Options:
  --timeout=<seconds>  Cancel downloads still running after this long [default: 0.25].
  --trace              Log every context transition (same as FIBERFLOW_TRACE=1).
"""

import logging
from contextlib import nullcontext

import docopt
from dotenv import load_dotenv
from fiberflow import FutureCancelled, async_, await_, delay, get_event_loop, parallel
from fiberflow.config import configure_logging, get_trace_instrument
from fiberflow.core.event_loop.instrumentation import LogInstrument

# FIBERFLOW_LOG_LEVEL and FIBERFLOW_TRACE may come from a .env file.
load_dotenv()
configure_logging()

logger = logging.getLogger(__name__)

args = docopt.docopt(__doc__)

FILES = {
    "index.html": 0.05,
    "style.css": 0.1,
    "logo.png": 0.2,
    "video.mp4": 1.0,
}


@async_
def download(name: str, seconds: float) -> str:
    received = 0
    chunks = 4
    try:
        for _ in range(chunks):
            delay(seconds / chunks)
            received += 1
            logger.debug(f"{name}: chunk {received}/{chunks}")
    except FutureCancelled:
        return f"{name}: cancelled after {received}/{chunks} chunks"
    return f"{name}: done"


def main() -> None:
    timeout = float(args["--timeout"])
    instrument = LogInstrument() if args["--trace"] else get_trace_instrument()

    with instrument or nullcontext():
        downloads = [download(name, seconds) for name, seconds in FILES.items()]

        def cancel_stragglers() -> None:
            for future in downloads:
                future.cancel()

        _ = get_event_loop().call_later(timeout, cancel_stragglers)
        results = await_(parallel([lambda future=future: future for future in downloads]))

    for line in results:
        print(line)


if __name__ == "__main__":
    main()
