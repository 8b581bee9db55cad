"""
Postcode Finder Upload Services
===============================
Spreadsheet upload, parsing, address column detection and dedupe.
The HTTP routes live in postcode_finder.upload.router.
"""

from .upload_handler import (
    UploadHandler,
    FileType,
    FileTooLargeError,
    UnsupportedFileError,
)

from .document_parser import (
    DocumentParserService,
    CSVParser,
    ExcelParser,
    ParsedSheet,
    DedupeResult,
    JobInputError,
    find_address_column,
    dedupe_rows,
)

__all__ = [
    "UploadHandler",
    "FileType",
    "FileTooLargeError",
    "UnsupportedFileError",
    "DocumentParserService",
    "CSVParser",
    "ExcelParser",
    "ParsedSheet",
    "DedupeResult",
    "JobInputError",
    "find_address_column",
    "dedupe_rows",
]
