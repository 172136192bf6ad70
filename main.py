import argparse
import dataclasses
import logging
import signal
import sys
import threading

from spascan.config import load_settings
from spascan.output import render_inventory
from spascan.scanner import publish_report, run_scan


def _setup_logging() -> None:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s - %(message)s",
        stream=sys.stderr,
    )


def _install_stop_handlers(stop_event: threading.Event) -> None:
    def _request_stop(signum, _frame) -> None:
        logging.getLogger(__name__).warning("Received signal %s, finishing current provider then stopping", signum)
        stop_event.set()

    signal.signal(signal.SIGTERM, _request_stop)
    signal.signal(signal.SIGINT, _request_stop)


def main() -> int:
    parser = argparse.ArgumentParser(description="Spa availability scanner: publishes open booking slots as JSON")
    parser.add_argument("--print", dest="echo", action="store_true", help="Also print the JSON to stdout")
    parser.add_argument("--output-dir", help="Where appointments.json/.md5 go (overrides OUTPUT_DIR)")
    args = parser.parse_args()

    _setup_logging()
    settings = load_settings()
    if args.output_dir:
        settings = dataclasses.replace(settings, output_dir=args.output_dir)

    stop_event = threading.Event()
    _install_stop_handlers(stop_event)

    report = run_scan(settings, stop_event=stop_event)
    if report is None:
        logging.getLogger(__name__).error("Scan failed, no inventory written.")
        return 1

    if args.echo:
        print(render_inventory(report.to_payload()))

    publish_report(settings, report)
    return 0


def cli() -> None:
    raise SystemExit(main())


if __name__ == "__main__":
    cli()
