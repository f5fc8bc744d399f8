"""
Signature value parsing, validation and preview geometry.

A signature reaches us in one of three shapes:

- tagged ``drawn`` (alias ``draw``): strokes of ``{x, y, t}`` samples
- tagged ``typed`` (alias ``type``): free text plus optional font/color
- untagged: a bare array of point-sample arrays from before the tagged
  format existed (deprecated, read as ``drawn``)

Everything is normalized into ``DrawnSignature`` / ``TypedSignature``
before it is stored. Nothing here touches the database.
"""

from typing import Any, Optional, Union

from pydantic import TypeAdapter, ValidationError

from signdoc.common.errors import InvalidSignature, InvalidSignatureReason
from signdoc.config import settings
from signdoc.signatures.schemas import (
    DrawnSignature,
    RawDrawnSignature,
    RawPointSample,
    RawTypedSignature,
    SignaturePreview,
    TypedSignature,
)

DRAWN_TAGS = ("drawn", "draw")
TYPED_TAGS = ("typed", "type")

_legacy_strokes_adapter = TypeAdapter(list[list[RawPointSample]])


def validate_signature(raw: Any) -> Union[DrawnSignature, TypedSignature]:
    if isinstance(raw, DrawnSignature):
        return _drawn_from_strokes(raw.strokes, raw.color)
    if isinstance(raw, TypedSignature):
        return _typed_from_text(raw.text, raw.font_family, raw.color)
    if isinstance(raw, list):
        return _parse_legacy_strokes(raw)
    if not isinstance(raw, dict):
        raise InvalidSignature(InvalidSignatureReason.unrecognized_format)

    tag = raw.get("type")
    if tag in DRAWN_TAGS:
        return _parse_drawn(raw)
    if tag in TYPED_TAGS:
        return _parse_typed(raw)
    raise InvalidSignature(InvalidSignatureReason.unrecognized_format)


def is_valid_signature(raw: Any) -> bool:
    if raw is None:
        return False
    try:
        validate_signature(raw)
    except InvalidSignature:
        return False
    return True


def to_storage(signature: Union[DrawnSignature, TypedSignature]) -> dict:
    return signature.model_dump(mode="json")


def _parse_drawn(raw: dict) -> DrawnSignature:
    try:
        parsed = RawDrawnSignature.model_validate(raw)
    except ValidationError as exc:
        raise InvalidSignature(InvalidSignatureReason.unrecognized_format, str(exc)) from exc
    strokes = parsed.strokes if parsed.strokes is not None else parsed.signature_points
    if strokes is None:
        raise InvalidSignature(InvalidSignatureReason.empty_strokes)
    return _drawn_from_strokes([[point.normalized() for point in stroke] for stroke in strokes], parsed.color)


def _parse_typed(raw: dict) -> TypedSignature:
    try:
        parsed = RawTypedSignature.model_validate(raw)
    except ValidationError as exc:
        raise InvalidSignature(InvalidSignatureReason.unrecognized_format, str(exc)) from exc
    text = parsed.text if parsed.text is not None else parsed.typed_text
    return _typed_from_text(text, parsed.font_family, parsed.color)


def _parse_legacy_strokes(raw: list) -> DrawnSignature:
    # DEPRECATED: untagged point arrays predate the tagged format. Kept only
    # so old links and stored receipts keep working; do not extend.
    try:
        strokes = _legacy_strokes_adapter.validate_python(raw)
    except ValidationError as exc:
        raise InvalidSignature(InvalidSignatureReason.unrecognized_format, str(exc)) from exc
    return _drawn_from_strokes([[point.normalized() for point in stroke] for stroke in strokes], None)


def _drawn_from_strokes(strokes: list, color: Optional[str]) -> DrawnSignature:
    kept = [list(stroke) for stroke in strokes if stroke]
    if not kept:
        raise InvalidSignature(InvalidSignatureReason.empty_strokes)
    return DrawnSignature(strokes=kept, color=color)


def _typed_from_text(text: Optional[str], font_family: Optional[str], color: Optional[str]) -> TypedSignature:
    if text is None or not text.strip():
        raise InvalidSignature(InvalidSignatureReason.empty_text)
    return TypedSignature(text=text.strip(), font_family=font_family, color=color)


# ── Preview ────────────────────────────────────────────────────────────────────


def render_preview(
    signature: Union[DrawnSignature, TypedSignature],
    width: Optional[int] = None,
    height: Optional[int] = None,
    padding: Optional[int] = None,
) -> SignaturePreview:
    """Fit a signature into a fixed frame.

    Drawn signatures are scaled uniformly so the bounding box of all samples
    fills the padded frame, then centered. Typed signatures are centered
    with a font size derived from the frame and the text length.
    """
    width = width or settings.preview_width
    height = height or settings.preview_height
    padding = settings.preview_padding if padding is None else padding
    inner_w = max(width - 2 * padding, 1)
    inner_h = max(height - 2 * padding, 1)
    color = signature.color or settings.preview_default_color

    if isinstance(signature, TypedSignature):
        font_size = min(inner_h * 0.6, inner_w * 1.8 / max(len(signature.text), 1))
        return SignaturePreview(
            variant="typed",
            width=width,
            height=height,
            color=color,
            text=signature.text,
            font_family=signature.font_family,
            text_x=width / 2,
            text_y=height / 2,
            font_size=round(font_size, 2),
        )

    points = [point for stroke in signature.strokes for point in stroke]
    min_x = min(p.x for p in points)
    max_x = max(p.x for p in points)
    min_y = min(p.y for p in points)
    max_y = max(p.y for p in points)
    extent_w = max_x - min_x
    extent_h = max_y - min_y

    scales = []
    if extent_w > 0:
        scales.append(inner_w / extent_w)
    if extent_h > 0:
        scales.append(inner_h / extent_h)
    # A single dot has no extent; draw it at natural size.
    scale = min(scales) if scales else 1.0

    offset_x = (width - extent_w * scale) / 2 - min_x * scale
    offset_y = (height - extent_h * scale) / 2 - min_y * scale
    paths = [
        [(round(p.x * scale + offset_x, 2), round(p.y * scale + offset_y, 2)) for p in stroke]
        for stroke in signature.strokes
    ]
    return SignaturePreview(
        variant="drawn",
        width=width,
        height=height,
        color=color,
        stroke_width=settings.preview_stroke_width,
        paths=paths,
    )
