"""OpenClaw cron-backed job client."""

from __future__ import annotations

import json
import logging
import time
from collections.abc import Callable, Iterator, Sequence
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

from zettelclaw.scheduler.base import JobError, JobErrorCode, ScheduledJob, SubmitOptions
from zettelclaw.scheduler.command import CommandResult, CommandRunError, CommandRunner, run_command
from zettelclaw.scheduler.failure_classifier import classify_finished_run
from zettelclaw.scheduler.models import ModelInfo, parse_models

logger = logging.getLogger(__name__)

RELATIVE_TRANSPORT = "relative"
ABSOLUTE_TRANSPORT = "absolute"
MODELS_COMMAND_TIMEOUT_SECONDS = 10.0


@dataclass(slots=True)
class RetryPolicy:
    """Bounded exponential backoff."""

    attempts: int
    base_delay_seconds: float
    max_delay_seconds: float

    def delay(self, attempt: int) -> float:
        """Delay before the attempt following ``attempt`` (1-based)."""

        return min(self.base_delay_seconds * (2 ** (attempt - 1)), self.max_delay_seconds)


SUBMIT_RETRY_POLICY = RetryPolicy(attempts=3, base_delay_seconds=0.9, max_delay_seconds=6.0)
POLL_RETRY_POLICY = RetryPolicy(attempts=5, base_delay_seconds=1.0, max_delay_seconds=8.0)
RUNS_LIMIT = 30


class OpenClawJobClient:
    """Schedule one-shot agent runs through ``openclaw cron`` and poll for results."""

    def __init__(  # noqa: PLR0913
        self,
        *,
        executable: str = "openclaw",
        runner: CommandRunner = run_command,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
        now: Callable[[], datetime] = lambda: datetime.now(tz=UTC),
        poll_interval_seconds: float = 3.0,
        command_timeout_seconds: float = 60.0,
        poll_command_timeout_seconds: float = 30.0,
        submit_retry: RetryPolicy = SUBMIT_RETRY_POLICY,
        poll_retry: RetryPolicy = POLL_RETRY_POLICY,
        on_debug: Callable[[str], None] | None = None,
    ) -> None:
        self.executable = executable
        self.poll_interval_seconds = poll_interval_seconds
        self.command_timeout_seconds = command_timeout_seconds
        self.poll_command_timeout_seconds = poll_command_timeout_seconds
        self.submit_retry = submit_retry
        self.poll_retry = poll_retry
        self._runner = runner
        self._sleep = sleep
        self._clock = clock
        self._now = now
        self._on_debug = on_debug or (lambda _msg: None)

    # -- submission -----------------------------------------------------------

    def submit(self, payload: str, options: SubmitOptions) -> ScheduledJob:
        failures: list[str] = []
        for mode, at_value in self._transport_variants():
            args = _build_cron_add_args(payload=payload, options=options, at_value=at_value)
            try:
                job_id = self._submit_with_retries(args)
            except JobError as error:
                if error.code == JobErrorCode.CLI_NOT_FOUND:
                    raise
                logger.warning(
                    "Scheduling via %s transport failed for %s: %s",
                    mode,
                    options.session_name,
                    error.describe(),
                )
                failures.append(f"{mode}: {error.details or error}")
                continue
            self._debug(f"Scheduled job {job_id} ({options.session_name}) via {mode} transport")
            return ScheduledJob(job_id=job_id, mode=mode)

        raise JobError(
            JobErrorCode.SCHEDULING_FAILED,
            "Could not schedule agent cron job (relative + absolute attempts failed).",
            "; ".join(failures),
        )

    def _transport_variants(self) -> Iterator[tuple[str, str]]:
        yield RELATIVE_TRANSPORT, "+0s"
        # Timestamp is taken lazily so it reflects the moment of the fallback attempt.
        yield ABSOLUTE_TRANSPORT, self._now().isoformat().replace("+00:00", "Z")

    def _submit_with_retries(self, args: list[str]) -> str:
        policy = self.submit_retry
        attempts = max(1, policy.attempts)
        last_error: JobError | None = None

        for attempt in range(1, attempts + 1):
            try:
                result = self._run(args, timeout_seconds=self.command_timeout_seconds)
                if result.ok:
                    return _parse_cron_add_job_id(result.stdout)
                last_error = JobError(
                    JobErrorCode.COMMAND_FAILED,
                    "openclaw cron add failed.",
                    result.failure_detail([self.executable, *args]),
                )
            except JobError as error:
                if error.code == JobErrorCode.CLI_NOT_FOUND:
                    raise
                last_error = error

            if attempt < attempts:
                delay = policy.delay(attempt)
                self._debug(
                    f"cron add attempt {attempt}/{attempts} failed ({last_error}); "
                    f"retrying in {delay:.1f}s",
                )
                self._sleep(delay)

        if last_error is None:
            raise RuntimeError("Retry loop finished without an error to report.")
        raise last_error

    # -- polling --------------------------------------------------------------

    def await_completion(self, job_id: str, timeout_seconds: float) -> str:
        started_at = self._clock()
        transient_failures = 0
        polls = 0

        while self._clock() - started_at < timeout_seconds:
            polls += 1
            try:
                entries = self._poll_runs(job_id)
            except JobError as error:
                if error.code == JobErrorCode.CLI_NOT_FOUND:
                    raise
                transient_failures += 1
                if transient_failures >= self.poll_retry.attempts:
                    raise JobError(
                        error.code,
                        f"openclaw cron runs failed repeatedly while waiting for job {job_id}.",
                        error.details or str(error),
                    ) from error
                delay = self.poll_retry.delay(transient_failures)
                self._debug(
                    f"Poll {polls} for job {job_id} failed "
                    f"({transient_failures}/{self.poll_retry.attempts}): {error}; "
                    f"backing off {delay:.1f}s",
                )
                self._sleep(delay)
                continue

            transient_failures = 0
            finished = _latest_finished_entry(entries)
            elapsed = self._clock() - started_at
            if finished is None:
                self._debug(
                    f"Poll {polls} for job {job_id}: {len(entries)} entries, "
                    f"not finished after {elapsed:.1f}s",
                )
                self._sleep(self.poll_interval_seconds)
                continue

            return self._summary_from_finished(job_id, finished, elapsed)

        raise JobError(
            JobErrorCode.TIMEOUT,
            f"Timed out waiting for cron job {job_id}.",
            f"no finished run after {timeout_seconds:.0f}s",
        )

    def _poll_runs(self, job_id: str) -> list[dict[str, Any]]:
        args = ["cron", "runs", "--id", job_id, "--limit", str(RUNS_LIMIT)]
        result = self._run(args, timeout_seconds=self.poll_command_timeout_seconds)
        if not result.ok:
            raise JobError(
                JobErrorCode.COMMAND_FAILED,
                "openclaw cron runs failed.",
                result.failure_detail([self.executable, *args]),
            )
        try:
            payload = json.loads(result.stdout)
        except json.JSONDecodeError as error:
            raise JobError(
                JobErrorCode.INVALID_JSON,
                f"openclaw cron runs returned invalid JSON for job {job_id}.",
                str(error),
            ) from error
        if not isinstance(payload, dict):
            raise JobError(
                JobErrorCode.INVALID_JSON,
                f"openclaw cron runs returned a non-object payload for job {job_id}.",
                result.stdout[:200],
            )
        raw_entries = payload.get("entries")
        if not isinstance(raw_entries, list):
            return []
        return [entry for entry in raw_entries if isinstance(entry, dict)]

    def _summary_from_finished(
        self,
        job_id: str,
        entry: dict[str, Any],
        elapsed: float,
    ) -> str:
        status = entry.get("status")
        summary = entry.get("summary") if isinstance(entry.get("summary"), str) else ""
        error = entry.get("error") if isinstance(entry.get("error"), str) else ""
        classification = classify_finished_run(
            status=status if isinstance(status, str) else None,
            summary=summary,
            error=error,
        )
        if not classification.succeeded:
            raise JobError(
                JobErrorCode.JOB_FAILED,
                f"Cron job {job_id} finished with status '{status}'.",
                classification.detail,
            )
        if classification.delivery_failure:
            logger.warning(
                "Cron job %s reported delivery failure but produced a summary: %s",
                job_id,
                classification.detail,
            )
        self._debug(f"Job {job_id} finished after {elapsed:.1f}s ({len(summary)} chars)")
        return summary

    # -- models ---------------------------------------------------------------

    def list_models(self) -> list[ModelInfo]:
        args = ["models", "list", "--json"]
        result = self._run(args, timeout_seconds=MODELS_COMMAND_TIMEOUT_SECONDS)
        if not result.ok or not result.stdout.strip():
            raise JobError(
                JobErrorCode.COMMAND_FAILED,
                "Could not list models from OpenClaw. Is the gateway running?",
                result.stderr.strip() or None,
            )
        models = parse_models(result.stdout)
        self._debug(f"Loaded {len(models)} model(s)")
        return models

    # -- removal --------------------------------------------------------------

    def remove(self, job_id: str) -> None:
        try:
            result = self._run(["cron", "rm", job_id], timeout_seconds=15.0)
        except Exception as error:  # noqa: BLE001
            logger.debug("Could not remove cron job %s: %s", job_id, error)
            return
        if not result.ok:
            logger.debug("openclaw cron rm %s exited with code %s", job_id, result.status)

    # -- helpers --------------------------------------------------------------

    def _run(self, args: Sequence[str], *, timeout_seconds: float) -> CommandResult:
        argv = [self.executable, *args]
        try:
            return self._runner(argv, timeout_seconds)
        except CommandRunError as error:
            if error.not_found:
                raise JobError(
                    JobErrorCode.CLI_NOT_FOUND,
                    f"{self.executable} CLI was not found on PATH.",
                ) from error
            raise JobError(
                JobErrorCode.COMMAND_FAILED,
                f"openclaw {' '.join(args[:2])} failed.",
                str(error),
            ) from error

    def _debug(self, message: str) -> None:
        logger.debug(message)
        self._on_debug(message)


def _build_cron_add_args(*, payload: str, options: SubmitOptions, at_value: str) -> list[str]:
    args = [
        "cron",
        "add",
        "--at",
        at_value,
        "--session",
        options.session_target,
        "--name",
        options.session_name,
        "--message",
        payload,
    ]
    if not options.announce:
        args.append("--no-deliver")
    if options.delete_after_run:
        args.append("--delete-after-run")
    args.extend(["--timeout-seconds", str(options.timeout_seconds), "--json"])
    if options.model:
        args.extend(["--model", options.model])
    return args


def _parse_cron_add_job_id(stdout: str) -> str:
    try:
        payload = json.loads(stdout)
    except json.JSONDecodeError as error:
        raise JobError(
            JobErrorCode.INVALID_JSON,
            "openclaw cron add returned invalid JSON.",
            str(error),
        ) from error
    job_id = payload.get("id") if isinstance(payload, dict) else None
    if not isinstance(job_id, str) or not job_id.strip():
        raise JobError(
            JobErrorCode.SCHEDULING_FAILED,
            "openclaw cron add did not return a job id.",
            stdout.strip()[:200],
        )
    return job_id.strip()


def _latest_finished_entry(entries: list[dict[str, Any]]) -> dict[str, Any] | None:
    finished = [entry for entry in entries if entry.get("action") == "finished"]
    if not finished:
        return None
    return max(finished, key=_entry_timestamp)


def _entry_timestamp(entry: dict[str, Any]) -> float:
    value = entry.get("ts")
    if isinstance(value, bool) or not isinstance(value, int | float):
        return 0.0
    return float(value)
