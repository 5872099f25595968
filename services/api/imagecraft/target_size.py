# services/api/imagecraft/target_size.py

"""
Best-effort search for a derived asset close to a byte budget.

The provider only exposes coarse controls (quality, format, dimensions), so
we probe a small grid and measure each derived asset by fetching it. Probes
run strictly one after another: whether to issue the next one depends on the
size measured by the previous one.
"""

from __future__ import annotations

import logging
import math
from contextlib import aclosing
from dataclasses import dataclass
from typing import AsyncIterator, Awaitable, Callable, Iterable, Iterator, Optional

import httpx

from .exceptions import TransferHTTPError, UploadValidationError
from .provider import MediaProvider, UploadResult

LOG = logging.getLogger("imagecraft.search")

SUCCESS_BAND = 0.10       # within ±10% of target: stop probing
ACCEPTABLE_OVERSHOOT = 1.15  # never accept more than +15% over target
RESIZE_BAND = 0.20        # best outside ±20%: try smaller dimensions

MIN_TARGET_RATIO = 0.01
MAX_TARGET_RATIO = 0.95

FORMATS = ("webp", "jpg")
QUALITIES_MILD = (80, 70, 60, 50, 40)
QUALITIES_AGGRESSIVE = (70, 60, 50, 40, 30, 20)
QUALITIES_RESIZED = (60, 50, 40, 30)
RESIZE_FORMAT = "webp"

UPLOAD_FOLDER = "compressed-images"

Measure = Callable[[str], Awaitable[int]]


@dataclass(frozen=True)
class ProbePlan:
    format: str
    quality: int
    width: Optional[int] = None
    height: Optional[int] = None

    def transform_options(self) -> dict:
        opts = {"format": self.format, "quality": self.quality}
        if self.width and self.height:
            opts.update(width=self.width, height=self.height, crop="scale")
        return opts


@dataclass(frozen=True)
class CandidateResult:
    format: str
    quality: int
    size_bytes: int
    url: str
    width: Optional[int] = None
    height: Optional[int] = None


@dataclass
class SearchResult:
    url: str
    public_id: str
    size_bytes: int
    format: str
    quality: Optional[int]
    width: int
    height: int
    probes: int
    transformed: bool

    def target_achieved(self, target_bytes: int) -> int:
        return int(round(self.size_bytes / target_bytes * 100))

    def compression_ratio(self, original_bytes: int) -> int:
        return int(round((1 - self.size_bytes / original_bytes) * 100))


def validate_target(original_bytes: int, target_kb: Optional[int]) -> int:
    """Returns the target in bytes or raises UploadValidationError."""
    if target_kb is None or int(target_kb) <= 0:
        raise UploadValidationError("Invalid target size")

    target = int(target_kb) * 1024
    if target >= original_bytes:
        raise UploadValidationError("Target size must be smaller than original file size")
    if target < original_bytes * MIN_TARGET_RATIO:
        raise UploadValidationError(
            "Target size is too small to be achievable. Minimum is 1% of the original size"
        )
    if target > original_bytes * MAX_TARGET_RATIO:
        raise UploadValidationError(
            "Target size is too close to the original size to be worth compressing. Maximum is 95% of the original size"
        )
    return target


def quality_candidates(target_bytes: int, original_bytes: int) -> tuple[int, ...]:
    if target_bytes / original_bytes > 0.5:
        return QUALITIES_MILD
    return QUALITIES_AGGRESSIVE


def grid_plans(target_bytes: int, original_bytes: int) -> Iterator[ProbePlan]:
    qualities = quality_candidates(target_bytes, original_bytes)
    for fmt in FORMATS:
        for q in qualities:
            yield ProbePlan(format=fmt, quality=q)


def resize_plans(target_bytes: int, original_bytes: int, width: int, height: int) -> Iterator[ProbePlan]:
    scale = math.sqrt(target_bytes / original_bytes)
    w = max(1, int(round(width * scale)))
    h = max(1, int(round(height * scale)))
    for q in QUALITIES_RESIZED:
        yield ProbePlan(format=RESIZE_FORMAT, quality=q, width=w, height=h)


def distance(size_bytes: int, target_bytes: int) -> int:
    return abs(size_bytes - target_bytes)


def is_acceptable(size_bytes: int, target_bytes: int) -> bool:
    return size_bytes <= target_bytes * ACCEPTABLE_OVERSHOOT


def within_band(size_bytes: int, target_bytes: int, band: float) -> bool:
    return distance(size_bytes, target_bytes) <= target_bytes * band


def within_success_band(candidate: CandidateResult, target_bytes: int) -> bool:
    return within_band(candidate.size_bytes, target_bytes, SUCCESS_BAND)


def closer(best: Optional[CandidateResult], candidate: CandidateResult, target_bytes: int) -> CandidateResult:
    # strict: on a tie the earlier (higher quality) candidate stays
    if best is None or distance(candidate.size_bytes, target_bytes) < distance(best.size_bytes, target_bytes):
        return candidate
    return best


class _ProbeCounter:
    def __init__(self):
        self.issued = 0


async def measured_candidates(
    provider: MediaProvider,
    public_id: str,
    plans: Iterable[ProbePlan],
    measure: Measure,
    counter: _ProbeCounter,
) -> AsyncIterator[CandidateResult]:
    """
    Lazily turns plans into measured candidates. A probe that fails is
    logged and skipped; the stream just moves on to the next plan.
    """
    for plan in plans:
        url = provider.transform(public_id, **plan.transform_options())
        counter.issued += 1
        try:
            size = await measure(url)
        except (httpx.HTTPError, TransferHTTPError) as e:
            LOG.warning("probe failed format=%s quality=%s: %s", plan.format, plan.quality, e)
            continue
        LOG.debug("probe format=%s quality=%s size=%s", plan.format, plan.quality, size)
        yield CandidateResult(
            format=plan.format,
            quality=plan.quality,
            size_bytes=int(size),
            url=url,
            width=plan.width,
            height=plan.height,
        )


async def _best_of(
    stream: AsyncIterator[CandidateResult],
    target_bytes: int,
    best: Optional[CandidateResult],
) -> Optional[CandidateResult]:
    async with aclosing(stream) as candidates:
        async for cand in candidates:
            if not is_acceptable(cand.size_bytes, target_bytes):
                continue
            best = closer(best, cand, target_bytes)
            if within_success_band(cand, target_bytes):
                break
    return best


def http_measure(client: httpx.AsyncClient) -> Measure:
    async def _measure(url: str) -> int:
        resp = await client.get(url)
        if resp.status_code < 200 or resp.status_code >= 300:
            raise TransferHTTPError(resp.status_code, resp.reason_phrase)
        return len(resp.content)
    return _measure


async def find_target_size(
    provider: MediaProvider,
    data: bytes,
    target_bytes: int,
    measure: Measure,
    *,
    folder: str = UPLOAD_FOLDER,
    dimensions: Optional[tuple[int, int]] = None,
) -> SearchResult:
    """
    `dimensions` are the locally decoded (width, height); they stand in when
    the provider does not report any (e.g. HEIC pass-through).
    """
    original_bytes = len(data)

    # Upload failures propagate: without a stored original there is nothing to return.
    uploaded: UploadResult = await provider.upload(data, folder=folder)
    width = uploaded.width or (dimensions[0] if dimensions else 0)
    height = uploaded.height or (dimensions[1] if dimensions else 0)

    counter = _ProbeCounter()
    best = await _best_of(
        measured_candidates(provider, uploaded.public_id, grid_plans(target_bytes, original_bytes), measure, counter),
        target_bytes,
        None,
    )

    needs_resize = best is None or not within_band(best.size_bytes, target_bytes, RESIZE_BAND)
    if needs_resize and width and height:
        LOG.info("quality sweep missed target=%s (best=%s); trying smaller dimensions",
                 target_bytes, best.size_bytes if best else None)
        best = await _best_of(
            measured_candidates(
                provider,
                uploaded.public_id,
                resize_plans(target_bytes, original_bytes, width, height),
                measure,
                counter,
            ),
            target_bytes,
            best,
        )

    if best is None:
        LOG.info("no acceptable candidate after %s probes; returning untransformed upload", counter.issued)
        return SearchResult(
            url=uploaded.url,
            public_id=uploaded.public_id,
            size_bytes=uploaded.bytes or original_bytes,
            format=uploaded.format,
            quality=None,
            width=width,
            height=height,
            probes=counter.issued,
            transformed=False,
        )

    LOG.info("target=%s best=%s format=%s quality=%s probes=%s",
             target_bytes, best.size_bytes, best.format, best.quality, counter.issued)
    return SearchResult(
        url=best.url,
        public_id=uploaded.public_id,
        size_bytes=best.size_bytes,
        format=best.format,
        quality=best.quality,
        width=best.width or width,
        height=best.height or height,
        probes=counter.issued,
        transformed=True,
    )
