"""Part planning for multipart transfers."""

import logging
import math
from typing import List, NamedTuple

from .config import MAX_PART_COUNT, MAX_PART_SIZE, MIN_PART_SIZE
from .exceptions import InvalidPartSizeError, TransferClientError

logger = logging.getLogger(__name__)


class PartLimits(NamedTuple):
    """Protocol-imposed bounds on part size and count."""

    min_part_size: int = MIN_PART_SIZE
    max_part_size: int = MAX_PART_SIZE
    max_part_count: int = MAX_PART_COUNT


DEFAULT_LIMITS = PartLimits()


class UploadPart(NamedTuple):
    part_number: int
    offset: int
    size: int


class DownloadPart(NamedTuple):
    part_number: int
    range_start: int
    range_end: int  # inclusive

    @property
    def size(self) -> int:
        return self.range_end - self.range_start + 1


def part_count(total_size: int, part_size: int, limits: PartLimits = DEFAULT_LIMITS) -> int:
    """Validate ``part_size`` against ``limits`` and return the number of parts.

    An empty object still gets one (empty) part.
    """
    if total_size < 0:
        raise TransferClientError(f"Invalid object size: {total_size}")
    if part_size < limits.min_part_size or part_size > limits.max_part_size:
        raise InvalidPartSizeError(
            f"Part size must be between {limits.min_part_size} and "
            f"{limits.max_part_size} bytes, got {part_size}",
            part_size,
        )

    count = max(1, math.ceil(total_size / part_size))
    if count > limits.max_part_count:
        raise InvalidPartSizeError(
            f"Part size {part_size} splits {total_size} bytes into {count} parts; "
            f"at most {limits.max_part_count} are allowed",
            part_size,
        )
    return count


def plan_upload_parts(
    total_size: int, part_size: int, limits: PartLimits = DEFAULT_LIMITS
) -> List[UploadPart]:
    """Split ``total_size`` bytes into upload parts of ``part_size`` bytes.

    The final part absorbs the remainder and may be smaller.
    """
    count = part_count(total_size, part_size, limits)
    parts = []
    for i in range(count):
        offset = i * part_size
        parts.append(UploadPart(i + 1, offset, min(part_size, total_size - offset)))
    logger.debug(f"Planned {count} upload parts of up to {part_size} bytes for {total_size} bytes")
    return parts


def plan_download_parts(
    total_size: int, part_size: int, limits: PartLimits = DEFAULT_LIMITS
) -> List[DownloadPart]:
    """Split ``total_size`` bytes into inclusive byte ranges of ``part_size`` bytes."""
    count = part_count(total_size, part_size, limits)
    parts = []
    for i in range(count):
        start = i * part_size
        end = min(start + part_size, total_size) - 1
        parts.append(DownloadPart(i + 1, start, end))
    logger.debug(f"Planned {count} download parts of up to {part_size} bytes for {total_size} bytes")
    return parts
