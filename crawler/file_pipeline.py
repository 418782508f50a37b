import os
from typing import Dict

import fitz  # pymupdf
from docx import Document
from openpyxl import load_workbook
from pptx import Presentation
from PIL import Image

from models import AssetType


def _document_metadata(path: str, ext: str) -> Dict[str, str]:
    if ext == ".pdf":
        doc = fitz.open(path)
        try:
            text_len = sum(len(page.get_text()) for page in doc)
            return {"pages": str(doc.page_count), "text_length": str(text_len)}
        finally:
            doc.close()

    if ext == ".docx":  # python-docx cannot read legacy .doc
        doc = Document(path)
        paragraphs = [p.text for p in doc.paragraphs]
        return {
            "paragraphs": str(len(paragraphs)),
            "text_length": str(sum(len(p) for p in paragraphs)),
        }

    if ext == ".pptx":
        prs = Presentation(path)
        return {"slides": str(len(prs.slides))}

    if ext == ".xlsx":
        wb = load_workbook(path, read_only=True, data_only=True)
        try:
            return {"sheets": str(len(wb.sheetnames))}
        finally:
            wb.close()

    if ext in (".txt", ".csv"):
        with open(path, "r", encoding="utf-8", errors="ignore") as f:
            return {"text_length": str(len(f.read()))}

    return {}


def extract_file_metadata(path: str, asset_type: AssetType) -> Dict[str, str]:
    """Cheap facts about a downloaded file. Blocking; run it in a worker thread."""
    ext = os.path.splitext(path)[1].lower()

    if asset_type == AssetType.IMAGE:
        with Image.open(path) as img:
            w, h = img.size
            return {"width": str(w), "height": str(h), "format": img.format or ""}

    if asset_type == AssetType.DOCUMENT:
        return _document_metadata(path, ext)

    return {}
