from typing import Optional, Sequence, Tuple
import numpy as np
import cv2


# =========================
# Filter primitives
# =========================

def to_grayscale(img: np.ndarray) -> np.ndarray:
    if img.ndim == 2:
        return img
    return cv2.cvtColor(img, cv2.COLOR_BGR2GRAY)


def resize_inside(img: np.ndarray, max_w: int, max_h: int) -> np.ndarray:
    """
    Aspect-preserving resize so the image fits inside max_w x max_h.
    Enlarges small images too.
    """
    h, w = img.shape[:2]
    scale = min(max_w / float(w), max_h / float(h))
    new_w = max(1, int(round(w * scale)))
    new_h = max(1, int(round(h * scale)))
    if (new_w, new_h) == (w, h):
        return img
    interp = cv2.INTER_CUBIC if scale > 1.0 else cv2.INTER_AREA
    return cv2.resize(img, (new_w, new_h), interpolation=interp)


def normalize_histogram(img: np.ndarray) -> np.ndarray:
    return cv2.normalize(img, None, 0, 255, cv2.NORM_MINMAX)


def modulate(img: np.ndarray, brightness: float = 1.0, contrast: float = 1.0) -> np.ndarray:
    out = (img.astype(np.float32) - 128.0) * contrast + 128.0
    out = out * brightness
    return np.clip(out, 0, 255).astype(np.uint8)


def linear(img: np.ndarray, a: float, b: float) -> np.ndarray:
    out = img.astype(np.float32) * a + b
    return np.clip(out, 0, 255).astype(np.uint8)


def blur(img: np.ndarray, sigma: float) -> np.ndarray:
    return cv2.GaussianBlur(img, (0, 0), sigma)


def sharpen(img: np.ndarray, sigma: float = 1.0, amount: float = 0.5) -> np.ndarray:
    # Unsharp mask
    return cv2.addWeighted(img, 1.0 + amount, cv2.GaussianBlur(img, (0, 0), sigma), -amount, 0)


def extract_region(img: np.ndarray, left: int, top: int, width: int, height: int) -> np.ndarray:
    return img[top:top + height, left:left + width]


# =========================
# Regions of interest
# =========================

def is_normalized_box(box: Sequence[float]) -> bool:
    return all(0.0 <= float(v) <= 1.0 for v in box)


def resolve_box(box: Sequence[float], width: int, height: int) -> Tuple[int, int, int, int]:
    """
    Converts an (x, y, w, h) box into pixel crop params clamped to the image.
    A box is taken as ratios when all four values lie in [0, 1].
    """
    if len(box) != 4:
        raise ValueError(f"Bounding box needs 4 values, got {len(box)}")

    x, y, bw, bh = (float(v) for v in box)
    if is_normalized_box(box):
        x, y, bw, bh = x * width, y * height, bw * width, bh * height

    left = max(0, int(round(x)))
    top = max(0, int(round(y)))
    crop_w = max(0, min(width - left, int(round(bw))))
    crop_h = max(0, min(height - top, int(round(bh))))
    return left, top, crop_w, crop_h


def crop_region(
    img: np.ndarray,
    box: Sequence[float],
    min_w: int = 100,
    min_h: int = 75,
) -> Optional[np.ndarray]:
    """Returns the crop, or None when it is too small to read a plate from."""
    h, w = img.shape[:2]
    left, top, crop_w, crop_h = resolve_box(box, w, h)
    if crop_w < min_w or crop_h < min_h:
        return None
    return extract_region(img, left, top, crop_w, crop_h)


# =========================
# Enhancement variants
# =========================

def focused_variant(img: np.ndarray) -> np.ndarray:
    h, w = img.shape[:2]
    if w < 10 or h < 10:
        return img
    gray = to_grayscale(img)
    gray = resize_inside(gray, max(w * 2, 600), max(h * 2, 400))
    gray = normalize_histogram(gray)
    gray = modulate(gray, brightness=1.1, contrast=1.8)
    return sharpen(gray)


def high_contrast_variant(img: np.ndarray) -> np.ndarray:
    gray = resize_inside(to_grayscale(img), 800, 600)
    gray = normalize_histogram(gray)
    gray = linear(gray, 2.0, -128.0)
    return sharpen(gray, sigma=1.0, amount=1.0)


def edge_enhanced_variant(img: np.ndarray) -> np.ndarray:
    gray = resize_inside(to_grayscale(img), 800, 600)
    gray = blur(gray, 0.3)
    gray = sharpen(gray, sigma=2.0, amount=1.5)
    gray = modulate(gray, brightness=1.3, contrast=1.4)
    return normalize_histogram(gray)


def upscaled_variant(img: np.ndarray) -> np.ndarray:
    gray = resize_inside(to_grayscale(img), 1200, 900)
    gray = sharpen(gray, sigma=1.5, amount=1.0)
    gray = modulate(gray, brightness=1.2, contrast=1.5)
    return normalize_histogram(gray)


VARIANT_BUILDERS = (
    ("focused", focused_variant, "Focused version"),
    ("high_contrast", high_contrast_variant, "High contrast version"),
    ("edge_enhanced", edge_enhanced_variant, "Edge enhanced version"),
    ("upscaled", upscaled_variant, "Upscaled version for detail"),
)
