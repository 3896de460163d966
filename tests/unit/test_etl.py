"""
Unit Tests — ETL Transformer
════════════════════════════
  ✅ normalize_column_name: known mappings + idempotence
  ✅ row key count == number of non-empty normalized headers
  ✅ duplicate / blank headers
  ✅ paragraph / table / image mapping
  ✅ purity: same input → same output, input untouched
  ✅ unknown types skipped, malformed known types raise TransformError
  ✅ validation report + statistics
"""

from __future__ import annotations

import copy

import pytest

from docsearch.core.errors import TransformError
from docsearch.processing.etl import (
    build_table_structure,
    document_statistics,
    flatten_title,
    normalize_column_name,
    resolve_columns,
    table_text,
    transform_content_items,
    validate_search_documents,
)
from docsearch.schemas.documents import ContentType
from docsearch.schemas.search import TableRow

HEADER_SAMPLES = [
    "Revenue ($)",
    "Product Name",
    "  Units   Sold ",
    "ID",
    "%%%",
    "",
    "Already_normal",
    "Émission CO2",
]


@pytest.mark.unit
@pytest.mark.pipeline
class TestColumnNames:

    @pytest.mark.parametrize("header,expected", [
        ("Revenue ($)",  "revenue"),
        ("Product Name", "product_name"),
        ("  Units   Sold ", "units_sold"),
        ("ID", "id"),
        ("%%%", ""),
    ])
    def test_normalize(self, header, expected):
        assert normalize_column_name(header) == expected

    @pytest.mark.parametrize("header", HEADER_SAMPLES)
    def test_normalize_is_idempotent(self, header):
        once = normalize_column_name(header)
        assert normalize_column_name(once) == once

    def test_blank_headers_dropped_and_repeats_suffixed(self):
        assert resolve_columns(["Name", "", "name", "%%", "NAME"]) == [
            (0, "name"), (2, "name_2"), (4, "name_3"),
        ]

    def test_suffix_never_collides_with_a_real_column(self):
        assert resolve_columns(["a", "a_2", "a"]) == [(0, "a"), (1, "a_2"), (2, "a_3")]


@pytest.mark.unit
@pytest.mark.pipeline
class TestTableStructure:

    def test_row_key_count_matches_non_empty_headers(self):
        headers = ["ID", "", "Product Name", "Revenue ($)", "!!"]
        rows = [["1", "x", "MacBook", "$1"], ["2"]]

        structured = build_table_structure(rows, headers)

        non_empty = len([h for h in headers if normalize_column_name(h)])
        assert all(len(r.row) == non_empty for r in structured)

    def test_missing_cells_become_empty_strings(self):
        structured = build_table_structure([["2"]], ["ID", "Name"])
        assert structured == [TableRow(row_number=1, row={"id": "2", "name": ""})]

    def test_first_row_is_header_without_explicit_headers(self):
        structured = build_table_structure([["ID", "Name"], ["1", "Mac"], ["2", "iPad"]])
        assert [r.row_number for r in structured] == [1, 2]
        assert structured[1].row == {"id": "2", "name": "iPad"}

    def test_empty_table(self):
        assert build_table_structure([]) == []

    def test_table_text(self):
        assert table_text(["A", "B"], [["1", "2"]]) == "A | B\n1 | 2"

    def test_flatten_title(self):
        assert flatten_title(["Q4", "Sales"]) == "Q4 Sales"
        assert flatten_title("Intro") == "Intro"
        assert flatten_title(None) == ""


@pytest.mark.unit
@pytest.mark.pipeline
class TestTransformContentItems:

    def test_maps_every_known_type(self, sample_content_items, test_document_id, test_owner_id):
        docs = transform_content_items(
            sample_content_items, doc_id=test_document_id, owner_id=test_owner_id, total_pages=2,
        )

        assert [d.type for d in docs] == [ContentType.PARAGRAPH, ContentType.IMAGE, ContentType.TABLE]
        assert all(d.doc_id == test_document_id and d.owner_id == test_owner_id for d in docs)
        assert all(d.total_pages == 2 for d in docs)

        paragraph, image, table = docs
        assert paragraph.title == "Introduction"
        assert paragraph.table_structured is None

        assert image.text == "Figure 1: Revenue by region"
        assert image.image.caption == "Figure 1: Revenue by region"
        assert image.image.metadata.format == "unknown"

        assert table.page_number == 2
        assert table.title == "Q4 2024 Sales Performance"
        assert table.text.splitlines()[1] == '1 | MacBook Pro 16" | 1,245 | $3,107,500'
        assert table.table_structured[0].row == {
            "id":           "1",
            "product_name": 'MacBook Pro 16"',
            "units_sold":   "1,245",
            "revenue":      "$3,107,500",
        }

    def test_index_body_uses_wire_names_and_omits_absent_blocks(self, sample_content_items):
        paragraph = transform_content_items(sample_content_items, "d1", "u1")[0]
        body = paragraph.to_index_body()
        assert body["pdf_id"] == "d1"
        assert body["user_id"] == "u1"
        assert "table_structured" not in body
        assert "image" not in body

    def test_is_pure(self, sample_content_items):
        before = copy.deepcopy(sample_content_items)
        first = transform_content_items(sample_content_items, "d1", "u1", 2)
        second = transform_content_items(sample_content_items, "d1", "u1", 2)
        assert first == second
        assert sample_content_items == before

    def test_unknown_type_is_skipped(self):
        docs = transform_content_items(
            [{"type": "chart", "text": "?"}, {"type": "paragraph", "text": "kept"}],
            "d1", "u1",
        )
        assert [d.text for d in docs] == ["kept"]

    def test_malformed_table_raises(self):
        with pytest.raises(TransformError) as exc_info:
            transform_content_items([{"type": "table", "rows": "not rows"}], "d1", "u1")
        assert exc_info.value.details

    def test_paragraph_without_text_raises(self):
        with pytest.raises(TransformError):
            transform_content_items([{"type": "paragraph", "title": "Intro"}], "d1", "u1")

    def test_missing_page_defaults_to_one(self):
        docs = transform_content_items([{"type": "paragraph", "text": "x", "page": None}], "d1", "u1")
        assert docs[0].page_number == 1


@pytest.mark.unit
@pytest.mark.pipeline
class TestValidationAndStatistics:

    def test_valid_documents(self, make_search_document):
        report = validate_search_documents([make_search_document()])
        assert report.is_valid
        assert report.document_count == 1

    def test_structured_rows_on_a_paragraph_is_an_error(self, make_search_document):
        doc = make_search_document(table_structured=[TableRow(row_number=1, row={"a": "1"})])
        report = validate_search_documents([doc])
        assert not report.is_valid

    def test_missing_ids_and_bad_pages_are_errors(self, make_search_document):
        doc = make_search_document(doc_id="", owner_id="", page_number=0)
        report = validate_search_documents([doc])
        assert len(report.errors) == 3

    def test_empty_paragraph_and_table_only_warn(self, make_search_document):
        docs = [
            make_search_document(text=""),
            make_search_document(type=ContentType.TABLE, table_structured=[]),
        ]
        report = validate_search_documents(docs)
        assert report.is_valid
        assert len(report.warnings) == 2

    def test_statistics(self, make_search_document):
        docs = [
            make_search_document(text="abc"),
            make_search_document(type=ContentType.IMAGE, page_number=2, text="de"),
        ]
        stats = document_statistics(docs)
        assert stats == {
            "total":             2,
            "by_type":           {"paragraph": 1, "image": 1},
            "by_page":           {1: 1, 2: 1},
            "total_text_length": 5,
        }
