from typing import List
import fitz
from core.entities import PdfInfo
from util.timing import timed
import logging

logger = logging.getLogger(__name__)


def inspect_pdf(file_bytes: bytes) -> PdfInfo:
    """
    Return page count and encryption status.

    A document is ENCRYPTED when the strict read reports a password requirement
    or an encryption dictionary but a permissive read (empty user password)
    still yields its pages. Splitting such a file produces blank pages, so the
    caller sends it whole. Unreadable input counts as a single, plain page.
    """
    try:
        with fitz.open(stream=file_bytes, filetype="pdf") as doc:
            encrypted = bool(
                doc.needs_pass
                or doc.is_encrypted
                or (doc.metadata or {}).get("encryption")
            )
            if doc.needs_pass:
                doc.authenticate("")
            pages = doc.page_count
    except Exception:
        # do not log payloads
        logger.error("pdf.inspect.error", exc_info=True)
        return PdfInfo(page_count=1, encrypted=False)

    info = PdfInfo(page_count=max(1, pages), encrypted=encrypted)
    logger.info("pdf.inspect pages=%d encrypted=%s", info.page_count, info.encrypted)
    return info


def split_pdf_pages(file_bytes: bytes) -> List[bytes]:
    """
    Return one self-contained single-page PDF per page, in page order.
    Single-page input comes back untouched as [file_bytes].
    Any failure returns [] so the caller can fall back to the whole document.
    """
    try:
        with timed(logger, "pdf.split"):
            with fitz.open(stream=file_bytes, filetype="pdf") as src:
                if src.page_count <= 1:
                    return [file_bytes]
                out: List[bytes] = []
                for i in range(src.page_count):
                    with fitz.open() as single:
                        single.insert_pdf(src, from_page=i, to_page=i)
                        out.append(single.tobytes(garbage=3, deflate=True))
    except Exception:
        logger.error("pdf.split.error", exc_info=True)
        return []

    logger.info("pdf.split.pages count=%d", len(out))
    return out
