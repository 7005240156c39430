"""Entrypoint for loading a payment from the command line.

This module wires the API client, connectivity probe and fetch controller
together, prints every status change and waits for a final outcome.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path

from . import config
from .api import PaymentAPI
from .connectivity import ConnectivityMonitor, ConnectivityProbe
from .controller import FetchController
from .errors import FetchError
from .logger import setup_logging
from .models.fetch_state import FetchSnapshot, FetchState
from .view import render_fetch_status

logger = logging.getLogger(__name__)

_FINAL_STATES = (FetchState.SUCCESS, FetchState.FAILED)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="resilient-fetch",
        description="Load a payment record, retrying through flaky connectivity.",
    )
    parser.add_argument("payment_id", help="Payment id to load")
    parser.add_argument(
        "--receipt",
        type=Path,
        default=None,
        help="Also download the PDF receipt to this path",
    )
    parser.add_argument(
        "--no-probe",
        action="store_true",
        help="Assume the network is up instead of probing the API host",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Log every fetch state transition",
    )
    return parser


async def load_payment(
    payment_id: str,
    api: PaymentAPI,
    monitor: ConnectivityMonitor,
    out=None,
) -> FetchSnapshot:
    """Run a controller for `payment_id` until it succeeds or fails."""
    stream = out or sys.stdout
    done = asyncio.Event()
    controller = FetchController(api.get_payment, monitor=monitor)

    def _on_snapshot(snapshot: FetchSnapshot) -> None:
        print(render_fetch_status(snapshot), file=stream, flush=True)
        if snapshot.state in _FINAL_STATES:
            done.set()

    controller.subscribe(_on_snapshot)
    try:
        controller.request(payment_id)
        await done.wait()
        return controller.snapshot
    finally:
        controller.dispose()


async def _run(args: argparse.Namespace) -> int:
    monitor = ConnectivityMonitor()
    probe = ConnectivityProbe(monitor)
    async with PaymentAPI() as api:
        if not args.no_probe:
            await probe.probe_once()
            probe.start()
        try:
            snapshot = await load_payment(args.payment_id, api, monitor)
            if snapshot.state != FetchState.SUCCESS:
                return 1
            if args.receipt is not None:
                try:
                    pdf = await api.generate_receipt(args.payment_id)
                except FetchError as exc:
                    logger.error("Failed to generate receipt: %s", exc)
                    return 1
                args.receipt.write_bytes(pdf)
                logger.info("Wrote receipt to %s (%d bytes)", args.receipt, len(pdf))
            return 0
        finally:
            await probe.stop()


def run(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(verbose=args.verbose)
    logger.info("Loading payment %s from %s", args.payment_id, config.API_URL)
    try:
        return asyncio.run(_run(args))
    except KeyboardInterrupt:
        return 130


if __name__ == "__main__":
    sys.exit(run())
