# Copyright (c) 2026 Mohammed Hassan. All rights reserved.
# Proprietary and confidential. Unauthorized copying, modification, distribution, or use is prohibited.

from PIL import Image, UnidentifiedImageError

ASPECT_RATIOS = {
    "1:1": (1, 1),
    "4:5": (4, 5),
    "1.91:1": (1.91, 1),
    "9:16": (9, 16),
}

def probe_image(path: str) -> tuple[int, int] | None:
    """Returns (width, height), or None when Pillow cannot read the file."""
    try:
        with Image.open(path) as img:
            return img.size
    except (UnidentifiedImageError, OSError):
        return None

def ratio_box(width: int, height: int, ratio: str) -> tuple[int, int, int, int]:
    """Largest centred box with the named aspect ratio that fits inside width x height."""
    if ratio not in ASPECT_RATIOS:
        raise ValueError(f"Unsupported aspect ratio: {ratio}")
    rw, rh = ASPECT_RATIOS[ratio]
    target = rw / rh

    if width / height > target:
        new_w, new_h = int(round(height * target)), height
    else:
        new_w, new_h = width, int(round(width / target))
    new_w, new_h = min(new_w, width), min(new_h, height)

    left = (width - new_w) // 2
    top = (height - new_h) // 2
    return left, top, left + new_w, top + new_h

def crop_image(src_path: str, dest_path: str, *, box: tuple[int, int, int, int] | None = None,
               ratio: str | None = None) -> tuple[int, int]:
    """
    Crops to a pixel box (left, top, right, bottom) or a named ratio and writes dest_path.
    Returns the new (width, height).
    """
    with Image.open(src_path) as img:
        width, height = img.size
        if box is None:
            if not ratio:
                raise ValueError("Either a crop box or an aspect ratio is required")
            box = ratio_box(width, height, ratio)

        left, top, right, bottom = box
        if left < 0 or top < 0 or right > width or bottom > height or right <= left or bottom <= top:
            raise ValueError("Crop box lies outside the image")

        cropped = img.crop(box)
        if cropped.mode not in ("RGB", "L") and dest_path.lower().endswith((".jpg", ".jpeg")):
            cropped = cropped.convert("RGB")
        cropped.save(dest_path)
        return cropped.size
