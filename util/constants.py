class InternalURIs:
    API = "/api"
    V1 = API + "/v1"
    INVOICES = V1 + "/invoices"
    INVOICE = INVOICES + "/{invoice_id}"
    PROCESS_INVOICE = INVOICE + "/process"
    APPROVE_INVOICE = INVOICE + "/approve"
    INVOICE_ITEM = INVOICE + "/items/{line_number}"
    NCM_SEARCH = V1 + "/ncm/search"


# Media types accepted by the vision API, keyed by upload content type / extension.
IMAGE_MEDIA_TYPES = {
    "image/jpeg": "image/jpeg",
    "image/jpg": "image/jpeg",
    "image/png": "image/png",
    "image/webp": "image/webp",
    "image/gif": "image/gif",
}
PDF_MEDIA_TYPE = "application/pdf"

EXTENSION_MEDIA_TYPES = {
    "jpg": "image/jpeg",
    "jpeg": "image/jpeg",
    "png": "image/png",
    "webp": "image/webp",
    "gif": "image/gif",
    "pdf": PDF_MEDIA_TYPE,
}
