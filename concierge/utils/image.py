"""Pillow helpers for quality checks, concept scoring, and sketch conversion.

All metrics work on a grayscale copy and return plain floats in [0, 1]
(except ``laplacian_variance``, which is unbounded).
"""

from __future__ import annotations

import base64
import io

from PIL import Image, ImageFilter, ImageOps

NORMALIZE_SIZE = 1024
HASH_SIZE = 8

# Pixel bands used by clarity/AR metrics (0 = black ink, 255 = paper)
INK_MAX = 63
PAPER_MIN = 193
LIGHT_MIN = 201
LINEART_CUTOFF = 128
FRAME_FRACTION = 0.10


def open_image(data: bytes) -> Image.Image:
    """Decode bytes into a fully loaded PIL image."""
    img = Image.open(io.BytesIO(data))
    img.load()  # Force full decode to catch truncation
    return img


def png_bytes(img: Image.Image) -> bytes:
    buf = io.BytesIO()
    img.save(buf, format="PNG")
    return buf.getvalue()


def data_url(data: bytes, media_type: str = "image/png") -> str:
    return f"data:{media_type};base64,{base64.b64encode(data).decode('ascii')}"


def shortest_side(img: Image.Image) -> int:
    return min(img.size)


def laplacian_variance(img: Image.Image) -> float:
    """Edge energy of a grayscale image; low values mean a blurry photo."""
    gray = img.convert("L")
    # Normalize to NORMALIZE_SIZE on shortest side for consistent measurement
    w, h = gray.size
    shortest = min(w, h)
    if shortest > NORMALIZE_SIZE:
        scale = NORMALIZE_SIZE / shortest
        gray = gray.resize((int(w * scale), int(h * scale)), Image.LANCZOS)
    w, h = gray.size
    if max(w, h) > NORMALIZE_SIZE * 4:
        scale = (NORMALIZE_SIZE * 4) / max(w, h)
        gray = gray.resize((max(1, int(w * scale)), max(1, int(h * scale))), Image.LANCZOS)

    laplacian = gray.filter(ImageFilter.Kernel((3, 3), [0, 1, 0, 1, -4, 1, 0, 1, 0], scale=1))
    hist = laplacian.histogram()
    total = sum(hist)
    if not total:
        return 0.0
    mean = sum(value * count for value, count in enumerate(hist)) / total
    return sum(count * (value - mean) ** 2 for value, count in enumerate(hist)) / total


def clarity(img: Image.Image) -> float:
    """Share of pixels that are decisively ink or paper.

    Stencil-ready line work is close to 1.0; muddy midtones pull it down.
    """
    hist = img.convert("L").histogram()
    total = sum(hist)
    if not total:
        return 0.0
    return (sum(hist[: INK_MAX + 1]) + sum(hist[PAPER_MIN:])) / total


def ar_fitness(img: Image.Image) -> float:
    """Share of light pixels in the outer frame of the image.

    A clean border means the design can be cut out and overlaid on skin
    without a visible box around it.
    """
    gray = img.convert("L")
    w, h = gray.size
    bw = max(1, int(w * FRAME_FRACTION))
    bh = max(1, int(h * FRAME_FRACTION))
    strips = [
        gray.crop((0, 0, w, bh)),
        gray.crop((0, h - bh, w, h)),
        gray.crop((0, bh, bw, h - bh)),
        gray.crop((w - bw, bh, w, h - bh)),
    ]
    light = total = 0
    for strip in strips:
        hist = strip.histogram()
        light += sum(hist[LIGHT_MIN:])
        total += sum(hist)
    return light / total if total else 0.0


def average_hash(img: Image.Image) -> int:
    """64-bit perceptual hash: 8x8 grayscale thumbnail thresholded at its mean."""
    thumb = img.convert("L").resize((HASH_SIZE, HASH_SIZE), Image.BILINEAR)
    # 8-bit grayscale: one byte per pixel
    pixels = list(thumb.tobytes())
    mean = sum(pixels) / len(pixels)
    bits = 0
    for p in pixels:
        bits = (bits << 1) | (1 if p > mean else 0)
    return bits


def hamming(a: int, b: int) -> int:
    return bin(a ^ b).count("1")


def to_lineart(img: Image.Image) -> Image.Image:
    """Threshold to pure black line work on white paper."""
    gray = ImageOps.autocontrast(img.convert("L"))
    return gray.point(lambda p: 0 if p < LINEART_CUTOFF else 255)


def to_overlay(img: Image.Image, opacity: float = 0.85) -> Image.Image:
    """RGBA overlay: ink becomes black at ``opacity``, paper becomes transparent."""
    lineart = to_lineart(img)
    alpha = ImageOps.invert(lineart).point(lambda p: int(p * opacity))
    overlay = Image.new("RGBA", lineart.size, (0, 0, 0, 0))
    overlay.putalpha(alpha)
    return overlay


def to_svg(img: Image.Image) -> bytes:
    """Wrap line art in a minimal SVG document (embedded PNG)."""
    lineart = to_lineart(img)
    w, h = lineart.size
    href = data_url(png_bytes(lineart))
    svg = (
        f'<svg xmlns="http://www.w3.org/2000/svg" width="{w}" height="{h}" '
        f'viewBox="0 0 {w} {h}"><image href="{href}" width="{w}" height="{h}"/></svg>'
    )
    return svg.encode("utf-8")
