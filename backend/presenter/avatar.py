"""
Avatar presenter.

Responsibilities:
- Render the avatar for a variant as a standalone SVG document
- Describe the available variants for the variant picker

Non-responsibilities:
- NO animation timing (see presenter.mouth)
- NO knowledge of session state beyond the two flags it is given
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from constants import AVATAR_VARIANT_DEFAULT, AVATAR_VARIANTS


class UnknownVariant(ValueError):
    """Requested avatar variant is not one of AVATAR_VARIANTS."""


# ---------------------------------------------------------------------
# Variant features
# ---------------------------------------------------------------------

@dataclass(frozen=True)
class AvatarFeatures:
    label: str
    description: str
    skin_color: str
    hair_color: str
    eye_shape: str        # "almond" | "large" | "medium"
    eyebrow_style: str    # "straight" | "thick" | "arched"
    face_shape: str       # "oval" | "round" | "square"
    nose_path: str
    hair_path: str
    accessory: str = ""


FEATURES: dict[str, AvatarFeatures] = {
    "chinese": AvatarFeatures(
        label="Chinese",
        description="East Asian features with warm skin tone",
        skin_color="#F5D5AE",
        hair_color="#1C1C1C",
        eye_shape="almond",
        eyebrow_style="straight",
        face_shape="oval",
        nose_path="M30,29 L30,34 M29,32 L31,32",
        hair_path="M12,16 Q30,6 48,16 Q44,10 30,8 Q16,10 12,16",
    ),
    "indian": AvatarFeatures(
        label="Indian",
        description="South Asian features with rich skin tone",
        skin_color="#8B4513",
        hair_color="#0F0F0F",
        eye_shape="large",
        eyebrow_style="thick",
        face_shape="round",
        nose_path="M30,27 L30,36 M27,31 L33,31 M28,34 L32,34",
        hair_path="M10,18 Q30,4 50,18 Q46,8 30,6 Q14,8 10,18",
        accessory='<circle cx="30" cy="20" r="1" fill="#FFD700" opacity="0.8"/>',
    ),
    "malay": AvatarFeatures(
        label="Malay",
        description="Southeast Asian features with golden skin tone",
        skin_color="#D2B48C",
        hair_color="#2C1810",
        eye_shape="medium",
        eyebrow_style="arched",
        face_shape="square",
        nose_path="M30,28 L30,35 M28,32 L32,32",
        hair_path="M11,17 Q30,5 49,17 Q45,9 30,7 Q15,9 11,17",
        accessory=(
            '<path d="M25,18 Q30,16 35,18" stroke="#8B4513" '
            'stroke-width="0.5" fill="none" opacity="0.6"/>'
        ),
    ),
}

# (rx, ry) of the face ellipse
_FACE: dict[str, tuple[float, float]] = {
    "oval": (17, 21),
    "round": (19, 19),
    "square": (18.5, 20),
}

# (white rx, white ry, iris r, glint r, glint dx)
_EYE: dict[str, tuple[float, float, float, float, float]] = {
    "almond": (3.5, 1.8, 1.8, 0.4, 0.3),
    "large": (4, 2.5, 2, 0.6, 0.5),
    "medium": (3.2, 2.2, 1.6, 0.5, 0.4),
}

# (left path, right path, stroke width)
_EYEBROWS: dict[str, tuple[str, str, float]] = {
    "straight": ("M19,21.5 L25,21.5", "M35,21.5 L41,21.5", 2),
    "thick": ("M18,21 Q22,19 26,21", "M34,21 Q38,19 42,21", 2.5),
    "arched": ("M19,22 Q22,19.5 25,21", "M35,21 Q38,19.5 41,22", 1.8),
}

_GLOW = "filter:drop-shadow(0 0 10px rgba(59, 130, 246, 0.5))"


def list_variants() -> list[dict[str, Any]]:
    """Variant metadata for the picker, in display order."""
    return [
        {
            "id": variant,
            "label": FEATURES[variant].label,
            "description": FEATURES[variant].description,
            "default": variant == AVATAR_VARIANT_DEFAULT,
        }
        for variant in AVATAR_VARIANTS
    ]


def features_for(variant: str) -> AvatarFeatures:
    try:
        return FEATURES[variant]
    except KeyError as exc:
        raise UnknownVariant(f"unknown avatar variant: {variant!r}") from exc


# ---------------------------------------------------------------------
# Rendering
# ---------------------------------------------------------------------

def render_svg(variant: str, *, talking: bool, mouth_open: bool = False) -> str:
    """
    Render one frame of the avatar.

    mouth_open only matters while talking: a silent avatar always shows
    the closed smile.

    Raises:
        UnknownVariant
    """
    f = features_for(variant)
    rx, ry = _FACE[f.face_shape]
    style = f' style="{_GLOW}"' if talking else ""

    parts = [
        f'<svg xmlns="http://www.w3.org/2000/svg" width="320" height="320" '
        f'viewBox="0 0 60 60" data-variant="{variant}"{style}>',
        '<circle cx="30" cy="30" r="28" fill="#f8fafc" stroke="#e2e8f0" stroke-width="2"/>',
        f'<path d="{f.hair_path}" fill="{f.hair_color}" stroke="{f.hair_color}" stroke-width="1"/>',
        f'<ellipse cx="30" cy="32" rx="{rx}" ry="{ry}" fill="{f.skin_color}"/>',
        _eyes(f),
        _eyebrows(f),
        f'<g stroke="{f.skin_color}" stroke-width="1" fill="none" opacity="0.6">'
        f'<path d="{f.nose_path}"/></g>',
        _mouth(talking=talking, mouth_open=mouth_open),
        '<circle cx="18" cy="32" r="2" fill="#FF69B4" opacity="0.2"/>',
        '<circle cx="42" cy="32" r="2" fill="#FF69B4" opacity="0.2"/>',
        f'<rect x="25" y="48" width="10" height="8" fill="{f.skin_color}"/>',
        '<path d="M20,55 L25,50 L35,50 L40,55 L40,60 L20,60 Z" fill="#4A90E2"/>',
        '<path d="M25,50 L30,55 L35,50" stroke="#2563EB" stroke-width="1" fill="none"/>',
        f.accessory,
        "</svg>",
    ]
    return "".join(parts)


def _eyes(f: AvatarFeatures) -> str:
    white_rx, white_ry, iris_r, glint_r, glint_dx = _EYE[f.eye_shape]
    out = []
    # Glints point toward the nose
    for cx, dx in ((22, glint_dx), (38, -glint_dx)):
        out.append(f'<ellipse cx="{cx}" cy="25" rx="{white_rx}" ry="{white_ry}" fill="white"/>')
        out.append(f'<circle cx="{cx}" cy="25" r="{iris_r}" fill="#2C1810"/>')
        out.append(
            f'<circle cx="{cx + dx:g}" cy="{25 - glint_dx:g}" r="{glint_r}" fill="white"/>'
        )
    return "".join(out)


def _eyebrows(f: AvatarFeatures) -> str:
    left, right, width = _EYEBROWS[f.eyebrow_style]
    return "".join(
        f'<path d="{d}" stroke="{f.hair_color}" stroke-width="{width}" fill="none"/>'
        for d in (left, right)
    )


def _mouth(*, talking: bool, mouth_open: bool) -> str:
    if talking and mouth_open:
        return (
            '<g data-mouth="open">'
            '<ellipse cx="30" cy="38" rx="4" ry="3" fill="#8B0000"/>'
            '<ellipse cx="30" cy="37" rx="3" ry="1" fill="#FF6B6B" opacity="0.6"/>'
            "</g>"
        )
    if talking:
        return (
            '<g data-mouth="half">'
            '<ellipse cx="30" cy="38" rx="3" ry="1.5" fill="#8B0000"/>'
            "</g>"
        )
    return (
        '<g data-mouth="closed">'
        '<path d="M27,38 Q30,40 33,38" stroke="#8B0000" stroke-width="2" fill="none"/>'
        "</g>"
    )
