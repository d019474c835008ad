"""Preflight checks for the Tet Family Moment backend configuration.

Run this before starting the web service to catch common misconfiguration:
  python scripts/preflight.py

Optional network checks:
  python scripts/preflight.py --check-http
"""

from __future__ import annotations

import argparse
import os
import sys
from dataclasses import dataclass, field
from pathlib import Path
from urllib.parse import urlparse

import httpx
from dotenv import load_dotenv


VALID_RESOLUTIONS = {"720p", "1080p"}
VALID_ASPECT_RATIOS = {"16:9", "9:16"}


@dataclass
class Report:
    passed: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    failures: list[str] = field(default_factory=list)

    def ok(self, message: str) -> None:
        self.passed.append(message)

    def warn(self, message: str) -> None:
        self.warnings.append(message)

    def fail(self, message: str) -> None:
        self.failures.append(message)

    @property
    def has_failures(self) -> bool:
        return bool(self.failures)


def _load_environment() -> None:
    """Load local env files in precedence order without overwriting existing vars."""
    server_dir = Path(__file__).resolve().parent.parent
    for env_file in (server_dir / ".env.local", server_dir / ".env", server_dir.parent / ".env"):
        if env_file.exists():
            load_dotenv(env_file, override=False)


def _is_valid_http_url(value: str) -> bool:
    parsed = urlparse((value or "").strip())
    return parsed.scheme in {"http", "https"} and bool(parsed.netloc)


def _env_int(name: str, default: int, report: Report, *, minimum: int = 1) -> int:
    raw = os.getenv(name, str(default)).strip()
    try:
        value = int(raw)
    except ValueError:
        report.fail(f"{name} must be an integer. Got: {raw!r}")
        return default
    if value < minimum:
        report.fail(f"{name} must be >= {minimum}. Got: {value}")
    return value


def _env_float(name: str, default: float, report: Report, *, minimum: float = 0.0) -> float:
    raw = os.getenv(name, str(default)).strip()
    try:
        value = float(raw)
    except ValueError:
        report.fail(f"{name} must be a number. Got: {raw!r}")
        return default
    if value < minimum:
        report.fail(f"{name} must be >= {minimum}. Got: {value}")
    return value


def _mask(value: str) -> str:
    """Mask secret values for safe console output."""
    trimmed = value.strip()
    if len(trimmed) < 8:
        return "***"
    return f"{trimmed[:4]}...{trimmed[-4:]}"


def _api_key() -> str:
    return (os.getenv("GEMINI_API_KEY") or os.getenv("API_KEY") or "").strip()


def check_credentials(report: Report) -> None:
    key = _api_key()
    if not key:
        report.fail("GEMINI_API_KEY (or API_KEY) is required for portrait generation.")
        return
    if not key.startswith("AIza"):
        report.warn("GEMINI_API_KEY does not start with 'AIza'; verify key value.")
    report.ok(f"Gemini API key detected ({_mask(key)}).")

    base = (os.getenv("GEMINI_API_BASE") or "https://generativelanguage.googleapis.com/v1beta").strip()
    if not _is_valid_http_url(base):
        report.fail(f"GEMINI_API_BASE is not a valid HTTP(S) URL: {base!r}")
    else:
        report.ok(f"GEMINI_API_BASE={base}")


def check_video_settings(report: Report) -> None:
    """Validate the knobs that shape the long-running video operation."""
    poll = _env_float("VIDEO_POLL_INTERVAL_SECONDS", 10, report, minimum=1.0)
    if poll > 30:
        report.warn("VIDEO_POLL_INTERVAL_SECONDS is high; finished videos may take longer to surface.")

    max_wait = _env_float("VIDEO_MAX_WAIT_SECONDS", 900, report, minimum=0.0)
    if max_wait == 0:
        report.warn("VIDEO_MAX_WAIT_SECONDS=0 disables the polling ceiling; stuck jobs poll forever.")
    elif max_wait < poll:
        report.fail("VIDEO_MAX_WAIT_SECONDS must be >= VIDEO_POLL_INTERVAL_SECONDS.")

    resolution = (os.getenv("VIDEO_RESOLUTION", "720p") or "").strip()
    if resolution not in VALID_RESOLUTIONS:
        report.fail(f"VIDEO_RESOLUTION must be one of {sorted(VALID_RESOLUTIONS)}. Got: {resolution!r}")

    aspect = (os.getenv("VIDEO_ASPECT_RATIO", "16:9") or "").strip()
    if aspect not in VALID_ASPECT_RATIOS:
        report.fail(f"VIDEO_ASPECT_RATIO must be one of {sorted(VALID_ASPECT_RATIOS)}. Got: {aspect!r}")

    _env_float("VIDEO_PROGRESS_INTERVAL_SECONDS", 3, report, minimum=0.5)
    report.ok("Video settings parsed successfully.")


def check_upload_guardrails(report: Report) -> None:
    max_files = _env_int("MAX_UPLOAD_FILES", 5, report)
    if max_files > 5:
        report.warn("MAX_UPLOAD_FILES above 5 may exceed what the image model composes well.")
    _env_int("MAX_UPLOAD_BYTES", 12 * 1024 * 1024, report, minimum=1024)
    report.ok("Upload guardrails parsed successfully.")


def check_http_health(report: Report, *, timeout_seconds: float) -> None:
    """List models with the configured key to confirm reachability and auth."""
    key = _api_key()
    if not key:
        report.warn("Skipping HTTP check: no API key configured.")
        return
    base = (os.getenv("GEMINI_API_BASE") or "https://generativelanguage.googleapis.com/v1beta").rstrip("/")
    try:
        with httpx.Client(timeout=timeout_seconds) as client:
            response = client.get(f"{base}/models", headers={"x-goog-api-key": key})
    except httpx.HTTPError as exc:
        report.fail(f"{base} not reachable ({exc}).")
        return
    if response.status_code in {401, 403}:
        report.fail(f"Gemini rejected the API key (HTTP {response.status_code}).")
    elif response.status_code >= 400:
        report.fail(f"Gemini model listing failed with HTTP {response.status_code}.")
    else:
        report.ok(f"Gemini API reachable (HTTP {response.status_code}).")


def print_report(report: Report) -> None:
    for message in report.passed:
        print(f"[PASS] {message}")
    for message in report.warnings:
        print(f"[WARN] {message}")
    for message in report.failures:
        print(f"[FAIL] {message}")
    print(
        f"\nSummary: {len(report.passed)} passed, {len(report.warnings)} warnings, {len(report.failures)} failures."
    )


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Tet Family Moment preflight checks")
    parser.add_argument(
        "--check-http",
        action="store_true",
        help="Call the Gemini API with the configured key before booting the backend.",
    )
    parser.add_argument(
        "--http-timeout",
        type=float,
        default=5.0,
        help="Timeout (seconds) for preflight HTTP probes (default: 5.0).",
    )
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    """Run preflight suite and return process exit code."""
    args = parse_args(argv)
    _load_environment()
    report = Report()

    check_credentials(report)
    check_video_settings(report)
    check_upload_guardrails(report)
    if args.check_http:
        check_http_health(report, timeout_seconds=max(args.http_timeout, 0.1))

    print_report(report)
    return 1 if report.has_failures else 0


if __name__ == "__main__":
    sys.exit(main())
