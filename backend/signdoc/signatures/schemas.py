from typing import Annotated, Literal, Optional, Union
from xml.sax.saxutils import escape, quoteattr

from pydantic import BaseModel, ConfigDict, Field, FiniteFloat, StringConstraints

# Hex (#rgb, #rgba, #rrggbb, #rrggbbaa) or a bare CSS color keyword.
Color = Annotated[
    str,
    StringConstraints(pattern=r"^(#([0-9A-Fa-f]{3,4}|[0-9A-Fa-f]{6}|[0-9A-Fa-f]{8})|[A-Za-z]{3,32})$"),
]
FontFamily = Annotated[str, StringConstraints(pattern=r"^[A-Za-z0-9 ,'\-]{1,64}$")]

# ── Canonical signature values ─────────────────────────────────────────────────


class PointSample(BaseModel):
    x: FiniteFloat
    y: FiniteFloat
    t: FiniteFloat = 0

    model_config = ConfigDict(frozen=True)


class DrawnSignature(BaseModel):
    type: Literal["drawn"] = "drawn"
    strokes: list[list[PointSample]]
    color: Optional[Color] = None

    @property
    def sample_count(self) -> int:
        return sum(len(stroke) for stroke in self.strokes)


class TypedSignature(BaseModel):
    type: Literal["typed"] = "typed"
    text: str
    font_family: Optional[FontFamily] = None
    color: Optional[Color] = None


Signature = Annotated[Union[DrawnSignature, TypedSignature], Field(discriminator="type")]


# ── Wire shapes accepted on input ──────────────────────────────────────────────
# The signing page historically posted camelCase keys and the short tags
# "draw" / "type"; both spellings are accepted and normalized.


class RawPointSample(BaseModel):
    x: FiniteFloat
    y: FiniteFloat
    t: Optional[FiniteFloat] = None
    time: Optional[FiniteFloat] = None
    timestamp: Optional[FiniteFloat] = None

    model_config = ConfigDict(extra="ignore")

    def normalized(self) -> PointSample:
        for value in (self.t, self.time, self.timestamp):
            if value is not None:
                return PointSample(x=self.x, y=self.y, t=value)
        return PointSample(x=self.x, y=self.y)


class RawDrawnSignature(BaseModel):
    strokes: Optional[list[list[RawPointSample]]] = None
    signature_points: Optional[list[list[RawPointSample]]] = Field(default=None, alias="signaturePoints")
    color: Optional[Color] = None

    model_config = ConfigDict(extra="ignore", populate_by_name=True)


class RawTypedSignature(BaseModel):
    text: Optional[str] = None
    typed_text: Optional[str] = Field(default=None, alias="typedText")
    font_family: Optional[FontFamily] = Field(default=None, alias="fontFamily")
    color: Optional[Color] = None

    model_config = ConfigDict(extra="ignore", populate_by_name=True)


# ── Preview ────────────────────────────────────────────────────────────────────


class SignaturePreview(BaseModel):
    """Frame-bounded vector description of a signature, ready to rasterize."""

    variant: Literal["drawn", "typed"]
    width: int
    height: int
    color: str
    stroke_width: float = 0
    paths: list[list[tuple[float, float]]] = []
    text: Optional[str] = None
    font_family: Optional[str] = None
    text_x: Optional[float] = None
    text_y: Optional[float] = None
    font_size: Optional[float] = None

    def to_svg(self) -> str:
        color = quoteattr(self.color)
        parts = [
            f'<svg xmlns="http://www.w3.org/2000/svg" width="{self.width}" height="{self.height}" '
            f'viewBox="0 0 {self.width} {self.height}">'
        ]
        if self.variant == "drawn":
            for path in self.paths:
                if len(path) == 1:
                    x, y = path[0]
                    parts.append(f'<circle cx="{x:.2f}" cy="{y:.2f}" r="{self.stroke_width / 2:.2f}" fill={color}/>')
                    continue
                points = " ".join(f"{x:.2f},{y:.2f}" for x, y in path)
                parts.append(
                    f'<polyline points="{points}" fill="none" stroke={color} '
                    f'stroke-width="{self.stroke_width}" stroke-linecap="round" stroke-linejoin="round"/>'
                )
        else:
            font = quoteattr(self.font_family or "cursive")
            parts.append(
                f'<text x="{self.text_x:.2f}" y="{self.text_y:.2f}" font-family={font} '
                f'font-size="{self.font_size:.2f}" fill={color} text-anchor="middle" '
                f'dominant-baseline="middle">{escape(self.text or "")}</text>'
            )
        parts.append("</svg>")
        return "".join(parts)
