from typing import Final

ROOT: Final[str] = "aduana"

INVOICES: Final[str] = f"{ROOT}:invoices"
RESULTS: Final[str] = f"{INVOICES}:result"  # extracted + classified lines
BLOBS: Final[str] = f"{INVOICES}:blob"
CATALOG: Final[str] = f"{ROOT}:catalog"  # learned (provider, sku) -> ncm
PROVIDERS: Final[str] = f"{ROOT}:providers"
