## ─────────────────────────────────────────────────────────────────────────────
## client.py  —  HTTP client for the analyzer API, with analysis polling
## ─────────────────────────────────────────────────────────────────────────────
import argparse
import json
import logging
import mimetypes
import os
import sys
import time
from typing import Optional

import requests
from dotenv import load_dotenv

load_dotenv()

logger = logging.getLogger(__name__)

API_BASE: str = os.getenv("API_BASE", "http://127.0.0.1:8000")
POLL_INTERVAL_SECONDS = 3.0


class AnalysisTimeout(Exception):
    """Polling gave up before the report's analysis appeared."""


class HealthReportClient:
    """Thin wrapper over the REST API. `session` may be any requests-compatible client."""

    def __init__(self, base_url: str = API_BASE, session=None, timeout: float = 30):
        self.base_url = base_url.rstrip("/")
        self.session = session or requests.Session()
        self.timeout = timeout

    def _url(self, path: str) -> str:
        return f"{self.base_url}{path}"

    def _get(self, path: str):
        resp = self.session.get(self._url(path), timeout=self.timeout)
        resp.raise_for_status()
        return resp.json()

    def upload(self, path: str, mime_type: Optional[str] = None) -> str:
        """Upload a document and return the new report id."""
        mime_type = mime_type or mimetypes.guess_type(path)[0] or "application/octet-stream"
        with open(path, "rb") as f:
            files = {"file": (os.path.basename(path), f, mime_type)}
            resp = self.session.post(
                self._url("/api/reports/upload"), files=files, timeout=self.timeout
            )
        resp.raise_for_status()
        return resp.json()["reportId"]

    def list_reports(self) -> list[dict]:
        return self._get("/api/reports")

    def get_report(self, report_id: str) -> dict:
        return self._get(f"/api/reports/{report_id}")

    def dashboard(self) -> dict:
        return self._get("/api/dashboard")

    def wait_for_analysis(
        self,
        report_id: str,
        interval: float = POLL_INTERVAL_SECONDS,
        max_attempts: Optional[int] = None,
    ) -> dict:
        """
        Poll the report until its analysis is present and return the report.

        With `max_attempts=None` this polls until the analysis shows up, however
        long that takes. Pass a cap to raise AnalysisTimeout instead.
        """
        attempt = 0
        while True:
            attempt += 1
            report = self.get_report(report_id)
            if report.get("analysis") is not None:
                logger.debug(f"[Report {report_id}] Analysis available after {attempt} poll(s)")
                return report
            if max_attempts is not None and attempt >= max_attempts:
                raise AnalysisTimeout(
                    f"Report {report_id} still has no analysis after {attempt} poll(s)"
                )
            time.sleep(interval)


def main(argv: Optional[list[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Health Report Analyzer client")
    parser.add_argument("--base-url", default=API_BASE)
    sub = parser.add_subparsers(dest="command", required=True)

    up = sub.add_parser("upload", help="upload a document")
    up.add_argument("path")
    up.add_argument("--wait", action="store_true", help="poll until the analysis is ready")
    up.add_argument("--interval", type=float, default=POLL_INTERVAL_SECONDS)
    up.add_argument("--max-attempts", type=int, default=None)

    show = sub.add_parser("show", help="print one report")
    show.add_argument("report_id")

    sub.add_parser("list", help="list all reports")

    args = parser.parse_args(argv)
    client = HealthReportClient(args.base_url)

    try:
        if args.command == "upload":
            report_id = client.upload(args.path)
            if not args.wait:
                print(json.dumps({"reportId": report_id}))
                return 0
            result = client.wait_for_analysis(
                report_id, interval=args.interval, max_attempts=args.max_attempts
            )
        elif args.command == "show":
            result = client.get_report(args.report_id)
        else:
            result = client.list_reports()
    except (requests.RequestException, AnalysisTimeout) as e:
        print(f"error: {e}", file=sys.stderr)
        return 1

    print(json.dumps(result, indent=2))
    return 0


if __name__ == "__main__":
    sys.exit(main())
