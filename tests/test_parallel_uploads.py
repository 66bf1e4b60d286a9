"""
Parallel design upload checklist tests.
"""

from tracker.services.parallel_uploads import (
    REQUIRED_PARALLEL_DOCUMENTS,
    checklist,
    division_complete,
    document_uploaded,
    missing_documents,
    normalize,
)


def _file(name, role):
    return {"name": name, "uploaderRole": role, "path": f"p/{name}"}


def _all_for(division):
    return [_file(f"{doc}.pdf", division) for doc in REQUIRED_PARALLEL_DOCUMENTS[division]]


class TestMatching:
    def test_normalize(self):
        assert normalize("  Gambar  Denah\tRev2 ") == "gambardenahrev2"
        assert normalize(None) == ""

    def test_name_contains_document(self):
        files = [_file("Final Gambar Denah Rev2.pdf", "Arsitek")]
        assert document_uploaded(files, "Arsitek", "Gambar Denah")

    def test_whitespace_and_case_insensitive(self):
        files = [_file("gambardenah.PDF", "Arsitek")]
        assert document_uploaded(files, "Arsitek", "Gambar Denah")

    def test_underscore_does_not_match(self):
        files = [_file("gambar_denah.pdf", "Arsitek")]
        assert not document_uploaded(files, "Arsitek", "Gambar Denah")

    def test_other_division_upload_does_not_count(self):
        files = [_file("Gambar Struktur.pdf", "Arsitek")]
        assert not document_uploaded(files, "Struktur", "Gambar Struktur")


class TestChecklist:
    def test_empty(self):
        result = checklist([])
        assert set(result) == {"Arsitek", "Struktur", "MEP"}
        assert not any(v for docs in result.values() for v in docs.values())

    def test_missing_documents(self):
        files = [_file("Perhitungan Struktur.xlsx", "Struktur")]
        assert missing_documents(files, "Struktur") == ["Gambar Struktur"]

    def test_division_complete(self):
        files = _all_for("MEP")
        assert division_complete(files, "MEP")
        assert not division_complete(files, "Arsitek")

    def test_unknown_division_is_never_complete(self):
        assert not division_complete(_all_for("MEP"), "Owner")
        assert missing_documents([], "Owner") == []
