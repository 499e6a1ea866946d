"""Evidence validation: resolve finding citations against a snapshot.

Checks, in order:
1. a snapshot is present and reachable (else unknown)
2. the cited path exists inside the snapshot (else invalid)
3. line >= 1, line_end >= line, line_end <= file length (else invalid)
4. quoted_text, whitespace-normalized, occurs in the cited lines
   (valid); no quote or no match leaves the claim unknown

Read failures never fail the run: they raise CitationResolutionError
internally and surface as unknown.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import tarfile
import zipfile
from collections.abc import Sequence
from concurrent.futures import Future, ThreadPoolExecutor

from concordance.analysis.schemas import (
    CanonicalAssessment,
    CitationCheck,
    ValidatedFinding,
    ValidatedSet,
)
from concordance.analysis.snapshot import Snapshot, safe_relative_path
from concordance.constants import (
    CITATION_TIMEOUT_SECONDS,
    VALIDATION_MAX_WORKERS,
    Validity,
)
from concordance.ingestion.schemas import Citation
from concordance.resilience.errors import CitationResolutionError

logger = logging.getLogger(__name__)

_READ_ERRORS = (
    OSError,
    UnicodeDecodeError,
    zipfile.BadZipFile,
    tarfile.TarError,
)


def normalize_whitespace(text: str) -> str:
    return " ".join(text.split())


def resolve_citation(
    citation: Citation, snapshot: Snapshot | None
) -> CitationCheck:
    """Classify one citation as valid, invalid or unknown."""
    if snapshot is None:
        return CitationCheck(
            validity=Validity.UNKNOWN,
            reason="No snapshot supplied",
        )
    try:
        return _check_location(citation, snapshot)
    except CitationResolutionError as exc:
        return CitationCheck(
            validity=Validity.UNKNOWN, reason=str(exc)
        )


def _check_location(
    citation: Citation, snapshot: Snapshot
) -> CitationCheck:
    label = citation.label
    if not snapshot.is_available():
        msg = "Snapshot unavailable"
        raise CitationResolutionError(msg, path=citation.path)

    if safe_relative_path(citation.path) is None:
        return CitationCheck(
            validity=Validity.INVALID,
            reason=f"Path escapes snapshot: {citation.path}",
        )

    try:
        lines = snapshot.read_lines(citation.path)
    except _READ_ERRORS as exc:
        msg = f"Cannot read file: {exc}"
        raise CitationResolutionError(
            msg, path=citation.path
        ) from exc

    if lines is None:
        # The root may have vanished between the check and the read
        if not snapshot.is_available():
            msg = "Snapshot unavailable"
            raise CitationResolutionError(msg, path=citation.path)
        return CitationCheck(
            validity=Validity.INVALID,
            reason=f"File not found: {citation.path}",
        )

    start = citation.line
    end = citation.last_line
    if start is None or end is None:
        if citation.line_end is not None:
            return CitationCheck(
                validity=Validity.INVALID,
                reason=f"line_end without line in {label}",
            )
        return CitationCheck(
            validity=Validity.UNKNOWN,
            reason=f"No line given for {label}",
        )

    if start < 1:
        return CitationCheck(
            validity=Validity.INVALID,
            reason=f"line < 1 in {label}",
        )
    if end < start:
        return CitationCheck(
            validity=Validity.INVALID,
            reason=f"line_end < line in {label}",
        )
    if end > len(lines):
        return CitationCheck(
            validity=Validity.INVALID,
            reason=(
                f"line {end} exceeds file length "
                f"({len(lines)}) in {label}"
            ),
        )

    quote = normalize_whitespace(citation.quoted_text or "")
    if not quote:
        return CitationCheck(
            validity=Validity.UNKNOWN,
            reason=f"No quoted text to confirm {label}",
        )
    window = normalize_whitespace(" ".join(lines[start - 1 : end]))
    if quote in window:
        return CitationCheck(validity=Validity.VALID)
    return CitationCheck(
        validity=Validity.UNKNOWN,
        reason=f"Quoted text not found at {label}",
    )


async def validate_assessments(
    assessments: Sequence[CanonicalAssessment],
    snapshot: Snapshot | None,
    *,
    max_workers: int = VALIDATION_MAX_WORKERS,
    timeout: float = CITATION_TIMEOUT_SECONDS,
) -> ValidatedSet:
    """Resolve every finding's citation on a bounded worker pool.

    At most ``max_workers`` resolutions (and so open files) run at
    once; a slot frees only when its read returns, so a hung read
    never lets a queued one start its clock early. A resolution
    exceeding ``timeout`` seconds from the moment its read begins is
    unknown. Results are keyed by (source_id, finding index), never
    by completion order.
    """
    ordered = sorted(assessments, key=lambda a: a.source_id)
    jobs: list[tuple[CanonicalAssessment, int]] = [
        (ca, idx)
        for ca in ordered
        for idx in range(len(ca.source.findings))
    ]
    available_at_start = (
        snapshot is not None and snapshot.is_available()
    )
    if snapshot is not None and not available_at_start:
        logger.warning(
            "event=snapshot_unavailable snapshot=%s", snapshot.label
        )

    slots = asyncio.Semaphore(max_workers)
    executor = ThreadPoolExecutor(
        max_workers=max_workers,
        thread_name_prefix="citation",
    )
    loop = asyncio.get_running_loop()

    def free_slot(_: Future[CitationCheck]) -> None:
        # A hung read may finish after the run's loop has closed
        with contextlib.suppress(RuntimeError):
            loop.call_soon_threadsafe(slots.release)

    def mark_started(started: asyncio.Future[None]) -> None:
        if not started.done():
            started.set_result(None)

    async def check(citation: Citation | None) -> CitationCheck:
        if citation is None:
            return CitationCheck(
                validity=Validity.UNKNOWN, reason="No citation"
            )
        await slots.acquire()
        started: asyncio.Future[None] = loop.create_future()

        def read() -> CitationCheck:
            loop.call_soon_threadsafe(mark_started, started)
            return resolve_citation(citation, snapshot)

        work = executor.submit(read)
        work.add_done_callback(free_slot)
        await started
        try:
            return await asyncio.wait_for(
                asyncio.wrap_future(work), timeout=timeout
            )
        except TimeoutError:
            logger.warning(
                "event=citation_timeout citation=%s timeout_s=%.1f",
                citation.label,
                timeout,
            )
            return CitationCheck(
                validity=Validity.UNKNOWN,
                reason=f"Resolution timed out after {timeout}s",
            )

    try:
        checks = await asyncio.gather(
            *(
                check(ca.source.findings[idx].citation)
                for ca, idx in jobs
            )
        )
    finally:
        executor.shutdown(wait=False, cancel_futures=True)

    findings = tuple(
        ValidatedFinding(
            source_id=ca.source_id,
            index=idx,
            finding=ca.source.findings[idx],
            category=ca.finding_categories[idx],
            validity=result.validity,
            reason=result.reason,
        )
        for (ca, idx), result in zip(jobs, checks, strict=True)
    )

    available = available_at_start and (
        snapshot is not None and snapshot.is_available()
    )
    validated = ValidatedSet(
        assessments=tuple(ordered),
        findings=findings,
        snapshot_available=available,
    )
    counts = validated.validity_counts()
    logger.info(
        "event=evidence_validated citations=%d valid=%d "
        "invalid=%d unknown=%d snapshot_available=%s",
        sum(counts.values()),
        counts[Validity.VALID],
        counts[Validity.INVALID],
        counts[Validity.UNKNOWN],
        available,
    )
    return validated
