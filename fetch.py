#!/usr/bin/env python3
import argparse
import json
import logging
import sys
from concurrent.futures import ThreadPoolExecutor
from typing import Dict, Optional

from reqlib.client import Client
from reqlib.config import DEFAULT_MAX_QUEUE, DEFAULT_MAX_WORKER, DEFAULT_USER_AGENT, ClientConfig
from reqlib.context import with_timeout
from reqlib.errors import ReqError
from reqlib.prometheus_exporter import PrometheusExporter


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Fetch URLs through a bounded worker pool and print one JSON line per URL.")
    parser.add_argument("urls", nargs="*", help="URLs or paths to fetch. Read from stdin when omitted.")
    parser.add_argument("--base-url", default="", help="Prefix joined onto every URL.")
    parser.add_argument("--method", default="GET", help="HTTP method to use.")
    parser.add_argument("-H", "--header", dest="headers", action="append", default=[], help="Extra header, 'Key: Value'.")
    parser.add_argument("--workers", type=int, default=DEFAULT_MAX_WORKER, help="Number of concurrent workers.")
    parser.add_argument("--queue", type=int, default=DEFAULT_MAX_QUEUE, help="Calls allowed to wait for a worker.")
    parser.add_argument("--timeout", type=float, default=15.0, help="Per-call deadline in seconds (0 for none).")
    parser.add_argument("--max-redirects", type=int, default=10, help="Redirects to follow before giving up.")
    parser.add_argument("--user-agent", default=DEFAULT_USER_AGENT, help="User-Agent header to send.")
    parser.add_argument("-v", "--verbose", action="count", default=0, help="Increase logging verbosity.")
    parser.add_argument("--metrics-interval", type=float, default=0.0, help="Seconds between perf logs (0 to disable).")
    parser.add_argument("--prometheus-port", type=int, default=None, help="Serve Prometheus metrics on this port.")
    return parser.parse_args(argv)


def parse_header(raw: str) -> tuple:
    key, sep, value = raw.partition(":")
    if not sep or not key.strip():
        raise argparse.ArgumentTypeError(f"malformed header {raw!r}, expected 'Key: Value'")
    return key.strip(), value.strip()


def fetch_one(client: Client, method: str, url: str, timeout: float) -> Dict[str, object]:
    ctx = with_timeout(None, timeout) if timeout > 0 else None
    record: Dict[str, object] = {"url": url}
    try:
        with client.do(ctx, url, method) as resp:
            body = resp.bytes()
            record.update(status=resp.status, final_url=resp.url, bytes=len(body))
    except ReqError as e:
        record.update(error=type(e).__name__, message=str(e))
    finally:
        if ctx is not None:
            ctx.cancel()
    return record


def main(argv=None) -> int:
    args = parse_args(argv)
    log_level = logging.WARNING
    if args.verbose == 1:
        log_level = logging.INFO
    elif args.verbose >= 2:
        log_level = logging.DEBUG
    logging.basicConfig(
        level=log_level,
        format="%(asctime)s %(levelname)s %(threadName)s %(message)s",
    )

    urls = args.urls or [line.strip() for line in sys.stdin if line.strip()]
    config = ClientConfig(
        base_url=args.base_url,
        max_worker=max(1, args.workers),
        max_queue=max(0, args.queue),
        max_redirects=max(0, args.max_redirects),
        user_agent=args.user_agent,
        headers=tuple(parse_header(h) for h in args.headers),
        metrics_interval=max(0.0, args.metrics_interval),
    )

    failed = 0
    with Client(config) as client:
        exporter: Optional[PrometheusExporter] = None
        if args.prometheus_port is not None:
            exporter = PrometheusExporter(client.metrics, port=args.prometheus_port)
            exporter.start()
            logging.info("Prometheus metrics available at http://0.0.0.0:%d/metrics", args.prometheus_port)
        try:
            # callers beyond workers + queue just block in submit()
            with ThreadPoolExecutor(max_workers=config.max_worker + config.max_queue) as ex:
                for record in ex.map(lambda u: fetch_one(client, args.method, u, args.timeout), urls):
                    if "error" in record:
                        failed += 1
                    print(json.dumps(record), flush=True)
        finally:
            if exporter:
                exporter.stop()
    return 1 if failed else 0


if __name__ == "__main__":
    sys.exit(main())
