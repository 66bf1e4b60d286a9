"""
Parallel design upload checklist.

During "Pending Parallel Design Uploads" Arsitek, Struktur and MEP each
upload a fixed set of named documents. A document counts as uploaded when
a file tagged with the division's role has the document name in its original file
name, compared lower-cased with all whitespace removed ("Gambar Denah Rev2.pdf"
matches "Gambar Denah", "gambar_denah.pdf" does not).
"""

import re

from tracker.models.user import Role

REQUIRED_PARALLEL_DOCUMENTS: dict[str, tuple[str, ...]] = {
    Role.ARSITEK.value: (
        "Gambar Denah",
        "Gambar Tampak",
        "Gambar Potongan",
        "Gambar 3D",
    ),
    Role.STRUKTUR.value: (
        "Perhitungan Struktur",
        "Gambar Struktur",
    ),
    Role.MEP.value: (
        "Gambar Instalasi Listrik",
        "Gambar Instalasi Air Bersih",
        "Gambar Instalasi Air Kotor",
    ),
}

_WHITESPACE = re.compile(r"\s+")


def normalize(text: str | None) -> str:
    return _WHITESPACE.sub("", (text or "").lower())


def _file_fields(f):
    if isinstance(f, dict):
        return f.get("name"), f.get("uploaderRole")
    return f.name, f.uploader_role


def document_uploaded(files, division: str, document: str) -> bool:
    """True if some file uploaded by ``division`` carries ``document`` in its name."""
    wanted = normalize(document)
    for f in files:
        name, role = _file_fields(f)
        if role == division and wanted in normalize(name):
            return True
    return False


def checklist(files) -> dict[str, dict[str, bool]]:
    """``{division: {document: uploaded?}}`` for every parallel division."""
    return {
        division: {doc: document_uploaded(files, division, doc) for doc in docs}
        for division, docs in REQUIRED_PARALLEL_DOCUMENTS.items()
    }


def missing_documents(files, division: str) -> list[str]:
    return [
        doc for doc in REQUIRED_PARALLEL_DOCUMENTS.get(division, ())
        if not document_uploaded(files, division, doc)
    ]


def division_complete(files, division: str) -> bool:
    return division in REQUIRED_PARALLEL_DOCUMENTS and not missing_documents(files, division)
