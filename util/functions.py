# util/functions.py
import re
from typing import Any, Optional
from util.constants import EXTENSION_MEDIA_TYPES, IMAGE_MEDIA_TYPES, PDF_MEDIA_TYPE

_AMOUNT_NOISE = re.compile(r"[^\d.,\-]")


def parse_amount(value: Any) -> Optional[float]:
    """
    Coerce a model-emitted number ("$ 1,234.50", "1.234,50", 12) into a float.
    Returns None when nothing numeric is left.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    raw = _AMOUNT_NOISE.sub("", str(value))
    if not raw or not re.search(r"\d", raw):
        return None

    # The right-most separator is the decimal one when both appear.
    if "," in raw and "." in raw:
        if raw.rfind(",") > raw.rfind("."):
            raw = raw.replace(".", "").replace(",", ".")
        else:
            raw = raw.replace(",", "")
    elif "," in raw:
        head, _, tail = raw.rpartition(",")
        # "1,234" is a thousands group, "12,5" a decimal comma
        if len(tail) == 3 and head and "," not in head:
            raw = head + tail
        else:
            raw = raw.replace(",", ".") if raw.count(",") == 1 else raw.replace(",", "")
    try:
        return float(raw)
    except ValueError:
        return None


def ncm_digits(code: Optional[str]) -> str:
    """'8471.60.52' -> '84716052'"""
    return re.sub(r"\D", "", code or "")


def resolve_media_type(filename: Optional[str], content_type: Optional[str]) -> Optional[str]:
    """
    Map an upload to a vision-API media type. Extension wins over the declared
    content type; returns None for anything the pipeline cannot read.
    """
    ext = (filename or "").lower().rsplit(".", 1)[-1] if filename and "." in filename else ""
    if ext in EXTENSION_MEDIA_TYPES:
        return EXTENSION_MEDIA_TYPES[ext]
    ctype = (content_type or "").lower()
    if ctype == PDF_MEDIA_TYPE:
        return PDF_MEDIA_TYPE
    return IMAGE_MEDIA_TYPES.get(ctype)
