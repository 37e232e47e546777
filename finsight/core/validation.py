"""Defines constants for file upload validation."""

# Accepted extensions, split by how the normalizer treats them
TABULAR_EXTENSIONS: set[str] = {".xlsx", ".xls", ".csv"}
OPAQUE_EXTENSIONS: set[str] = {".pdf"}
ALLOWED_EXTENSIONS: set[str] = TABULAR_EXTENSIONS | OPAQUE_EXTENSIONS

MAX_FILE_SIZE: int = 25 * 1024 * 1024  # 25 MB per file

# Maximum number of files allowed in a single request
MAX_FILES: int = 20

MAX_TOTAL_SIZE: int = 100 * 1024 * 1024  # 100 MB total upload limit

# MIME type mapping for the selection boundary
MIME_MAPPING: dict[str, str] = {
    ".xlsx": "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    ".xls": "application/vnd.ms-excel",
    ".csv": "text/csv",
    ".pdf": "application/pdf",
}

# Declared or sniffed media types accepted in place of a known suffix
MEDIA_TYPE_EXTENSIONS: dict[str, str] = {
    "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet": ".xlsx",
    "application/vnd.ms-excel": ".xls",
    "text/csv": ".csv",
    "application/csv": ".csv",
    "application/pdf": ".pdf",
}
