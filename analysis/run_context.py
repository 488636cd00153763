"""Run directories, console capture, and the filtering manifest for analysis scripts.

Both phase scripts (eda, mixture) run inside a RunContext:

    with RunContext(scope=args.country, analysis_name="eda", params=vars(args),
                    primer=EDA_PRIMER) as ctx:
        ctx.manifest.update(build_filtering_manifest(...))
        df.write_parquet(ctx.data_dir / "trend_count.parquet")
        save_fig(fig, ctx.plots_dir / "policies_per_year.png")

Layout of one run:

    results/<country>/<analysis>/<date>/
        plots/  data/
        run_log.txt              everything printed during the run
        filtering_manifest.json  ctx.manifest (record counts, selected model, ...)
        run_info.json            params, status, error, manifest, outputs, git commit
    results/<country>/<analysis>/README.md   primer
    results/<country>/<analysis>/latest  ->  <date>   (successful runs only)
"""

from __future__ import annotations

import io
import json
import re
import subprocess
import sys
from contextlib import redirect_stdout
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from types import TracebackType
from typing import Any


def _normalize_scope(scope: str) -> str:
    """Directory name for a country or other scope label ("United Kingdom" -> "united_kingdom")."""
    return re.sub(r"[^a-z0-9]+", "_", scope.strip().lower()).strip("_") or "all"


def _jsonable(value: Any) -> Any:
    """Plain JSON value for argparse params: enums by value, paths as strings."""
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, Path):
        return str(value)
    if isinstance(value, dict):
        return {str(k): _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    return value


def _git_commit() -> str:
    try:
        out = subprocess.run(
            ["git", "rev-parse", "HEAD"], capture_output=True, text=True, timeout=5
        )
    except (OSError, subprocess.SubprocessError):
        return "unknown"
    return out.stdout.strip() if out.returncode == 0 else "unknown"


class _Tee(io.TextIOBase):
    """Console stream that also keeps a copy of everything written."""

    def __init__(self, console: io.TextIOBase) -> None:
        self.console = console
        self.captured = io.StringIO()

    def write(self, text: str) -> int:
        self.console.write(text)
        return self.captured.write(text)

    def flush(self) -> None:
        self.console.flush()


class RunContext:
    """One analysis run for one country.

    Scripts fill ``manifest`` as they go; it is written on exit whether the
    run succeeded or failed, so a failed mixture sweep still records how many
    policies it was given and why it stopped.
    """

    def __init__(
        self,
        scope: str,
        analysis_name: str,
        params: dict | None = None,
        results_root: Path | None = None,
        primer: str | None = None,
    ) -> None:
        self.scope = _normalize_scope(scope)
        self.analysis_name = analysis_name
        self.params = _jsonable(params or {})
        self.manifest: dict[str, Any] = {}

        self.run_date = datetime.now(timezone.utc).strftime("%Y-%m-%d")
        self.analysis_dir = (results_root or Path("results")) / self.scope / analysis_name
        self.run_dir = self.analysis_dir / self.run_date
        self.plots_dir = self.run_dir / "plots"
        self.data_dir = self.run_dir / "data"

        self._primer = primer
        self._tee: _Tee | None = None
        self._redirect: redirect_stdout | None = None
        self._started: datetime | None = None

    def __enter__(self) -> RunContext:
        self.plots_dir.mkdir(parents=True, exist_ok=True)
        self.data_dir.mkdir(exist_ok=True)
        if self._primer:
            (self.analysis_dir / "README.md").write_text(self._primer, encoding="utf-8")

        self._tee = _Tee(sys.stdout)
        self._redirect = redirect_stdout(self._tee)
        self._redirect.__enter__()
        self._started = datetime.now(timezone.utc)
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        if self._redirect is not None:
            self._redirect.__exit__(None, None, None)
        log = self._tee.captured.getvalue() if self._tee else ""
        (self.run_dir / "run_log.txt").write_text(log, encoding="utf-8")

        manifest = _jsonable(self.manifest)
        self._write_json("filtering_manifest.json", manifest)
        self._write_json(
            "run_info.json",
            {
                "analysis": self.analysis_name,
                "scope": self.scope,
                "run_date": self.run_date,
                "timestamp_start": self._started.isoformat() if self._started else None,
                "timestamp_end": datetime.now(timezone.utc).isoformat(),
                "status": "failed" if exc_type else "completed",
                "error": f"{exc_type.__name__}: {exc_val}" if exc_type else None,
                "params": self.params,
                "manifest": manifest,
                "outputs": self.outputs(),
                "git_commit": _git_commit(),
                "python_version": sys.version,
            },
        )

        if exc_type is None:
            latest = self.analysis_dir / "latest"
            if latest.is_symlink() or latest.exists():
                latest.unlink()
            latest.symlink_to(self.run_date)

    def outputs(self) -> dict[str, list[str]]:
        """File names written so far under data/ and plots/."""
        return {
            "data": sorted(p.name for p in self.data_dir.iterdir()),
            "plots": sorted(p.name for p in self.plots_dir.iterdir()),
        }

    def _write_json(self, name: str, payload: dict) -> None:
        with open(self.run_dir / name, "w") as f:
            json.dump(payload, f, indent=2, default=str)
