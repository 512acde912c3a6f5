# crop_resolver.py
"""
Crop rectangle resolution.

Turns one of two crop request shapes into a single validated rectangle:
 - edge crop:   { top, bottom, left, right }  pixels removed from each side
 - region crop: { cropX, cropY, cropWidth, cropHeight }  absolute target rectangle

Region fields win when cropWidth and cropHeight are both present; edge fields
are then ignored entirely.

Pure computation, no I/O. Invalid requests come back as CropError values,
the caller decides how to report them.
"""

import enum
import logging
from dataclasses import dataclass
from typing import Any, Mapping, Optional, Union

logger = logging.getLogger("crop_resolver")

EDGE_FIELDS = ("top", "bottom", "left", "right")
REGION_FIELDS = ("cropX", "cropY", "cropWidth", "cropHeight")

# ----------------- Data model -----------------

@dataclass(frozen=True)
class SourceDimensions:
    width: int
    height: int


@dataclass(frozen=True)
class EdgeCrop:
    top: int = 0
    bottom: int = 0
    left: int = 0
    right: int = 0


@dataclass(frozen=True)
class RegionCrop:
    width: int
    height: int
    x: int = 0
    y: int = 0


CropRequest = Union[EdgeCrop, RegionCrop]


@dataclass(frozen=True)
class CropRectangle:
    x: int
    y: int
    width: int
    height: int

    @property
    def right(self) -> int:
        return self.x + self.width

    @property
    def bottom(self) -> int:
        return self.y + self.height

    def ffmpeg_filter(self) -> str:
        # crop=width:height:x:y
        return f"crop={self.width}:{self.height}:{self.x}:{self.y}"


class CropErrorKind(enum.Enum):
    INVALID_DIMENSIONS = "InvalidDimensions"
    OUT_OF_BOUNDS = "OutOfBounds"


@dataclass(frozen=True)
class CropError:
    """
    Why a crop request was rejected.

    rect is the computed (invalid) rectangle; it is None when a field could not
    be parsed, in which case field/value name the offending input.
    """
    kind: CropErrorKind
    source: SourceDimensions
    rect: Optional[CropRectangle] = None
    field: Optional[str] = None
    value: Any = None

    @property
    def message(self) -> str:
        if self.rect is None:
            return f"Invalid crop values. {self.field} must be an integer, got '{self.value}'."
        r = self.rect
        if self.kind is CropErrorKind.OUT_OF_BOUNDS:
            return (
                f"Crop region exceeds video boundaries. Video is {self.source.width}x{self.source.height}, "
                f"crop would extend to {r.right}x{r.bottom}."
            )
        return f"Invalid crop values. Resulting dimensions would be {r.width}x{r.height} at ({r.x}, {r.y})."


class CropValueError(ValueError):
    def __init__(self, field: str, value: Any):
        super().__init__(f"{field} must be an integer, got {value!r}")
        self.field = field
        self.value = value

# ----------------- Request parsing -----------------

def _is_present(value: Any) -> bool:
    if value is None:
        return False
    if isinstance(value, str) and not value.strip():
        return False
    return True


def parse_int(field: str, value: Any, default: int = 0) -> int:
    """Coerce a single wire value to int; absent values give default."""
    if not _is_present(value):
        return default
    if isinstance(value, bool):
        raise CropValueError(field, value)
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        if value.is_integer():
            return int(value)
        raise CropValueError(field, value)
    if isinstance(value, str):
        try:
            return int(value.strip(), 10)
        except ValueError:
            raise CropValueError(field, value) from None
    raise CropValueError(field, value)


def parse_crop_request(fields: Mapping[str, Any]) -> CropRequest:
    """
    Build the crop request variant from raw request fields.

    Raises CropValueError when a present field is not an integer.
    """
    if _is_present(fields.get("cropWidth")) and _is_present(fields.get("cropHeight")):
        return RegionCrop(
            width=parse_int("cropWidth", fields.get("cropWidth")),
            height=parse_int("cropHeight", fields.get("cropHeight")),
            x=parse_int("cropX", fields.get("cropX")),
            y=parse_int("cropY", fields.get("cropY")),
        )
    return EdgeCrop(**{name: parse_int(name, fields.get(name)) for name in EDGE_FIELDS})

# ----------------- Resolution -----------------

def resolve(source: SourceDimensions, request: CropRequest) -> Union[CropRectangle, CropError]:
    if isinstance(request, RegionCrop):
        rect = CropRectangle(x=request.x, y=request.y, width=request.width, height=request.height)
        logger.info("Region crop: %dx%d -> %dx%d at (%d, %d)",
                    source.width, source.height, rect.width, rect.height, rect.x, rect.y)
    else:
        rect = CropRectangle(
            x=request.left,
            y=request.top,
            width=source.width - request.left - request.right,
            height=source.height - request.top - request.bottom,
        )
        logger.info("Edge crop: %dx%d -> %dx%d (removed: T:%d B:%d L:%d R:%d)",
                    source.width, source.height, rect.width, rect.height,
                    request.top, request.bottom, request.left, request.right)

    if rect.width <= 0 or rect.height <= 0 or rect.x < 0 or rect.y < 0:
        return CropError(CropErrorKind.INVALID_DIMENSIONS, source, rect)
    if rect.right > source.width or rect.bottom > source.height:
        return CropError(CropErrorKind.OUT_OF_BOUNDS, source, rect)
    return rect


def resolve_fields(source: SourceDimensions, fields: Mapping[str, Any]) -> Union[CropRectangle, CropError]:
    """Parse raw request fields and resolve them against source."""
    try:
        request = parse_crop_request(fields)
    except CropValueError as e:
        logger.info("Rejected crop field %s=%r", e.field, e.value)
        return CropError(CropErrorKind.INVALID_DIMENSIONS, source, field=e.field, value=e.value)
    return resolve(source, request)
