"""
Standalone expiry-sweeper sidecar process.

Permanently deletes messages whose expires_at has passed, using the same app
configuration as the web app. Intended to be deployed as a separate
process/container (or a cron job with --once) so web workers can leave
ANONWALL_SWEEPER unset.

Usage examples:
  python -m anonwall.sweeper            # run forever on ANONWALL_SWEEP_INTERVAL
  python -m anonwall.sweeper --once     # single sweep, then exit

Environment:
  - ANONWALL_SWEEPER: defaults to 1 in this sidecar. With 0 there is nothing
    to run and the sidecar exits with status 1 (use --once for cron).
  - All other app env vars (DB, cache, etc.) are honored via create_app().
"""

import argparse
import os
import signal
import sys
import time

from dotenv import load_dotenv

from . import create_app
from .helpers import stop_expiry_sweeper, sweep_expired_messages, sweeper_running


def run_once(app) -> int:
    with app.app_context():
        deleted = sweep_expired_messages()
    print(f"Cleaned up {deleted} expired message(s).", flush=True)
    return deleted


def main(argv=None):
    ap = argparse.ArgumentParser(description="Delete expired messages")
    ap.add_argument(
        "--once", action="store_true", help="Run a single sweep and exit"
    )
    args = ap.parse_args(argv)

    load_dotenv()

    if args.once:
        os.environ["ANONWALL_SWEEPER"] = "0"
        run_once(create_app())
        return 0

    # Ensure the sweeper is enabled for the sidecar
    os.environ.setdefault("ANONWALL_SWEEPER", "1")

    create_app()

    # create_app() starts the sweeper only when ANONWALL_SWEEPER=1
    if not sweeper_running():
        print(
            "[sweeper] ANONWALL_SWEEPER is not 1; nothing to run, exiting.",
            file=sys.stderr,
            flush=True,
        )
        return 1
    print("[sweeper] sidecar started.", flush=True)

    def _handle_sig(signum, frame):
        print(f"[sweeper] received signal {signum}; stopping sweeper...", flush=True)
        try:
            stop_expiry_sweeper()
        finally:
            sys.exit(0)

    signal.signal(signal.SIGINT, _handle_sig)
    signal.signal(signal.SIGTERM, _handle_sig)

    # Keep the process alive while the thread does the work
    try:
        while True:
            time.sleep(1.0)
    except KeyboardInterrupt:
        _handle_sig(signal.SIGINT, None)


if __name__ == "__main__":
    sys.exit(main())
