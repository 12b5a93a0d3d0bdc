"""
Unit tests for row checksums and value vectors
"""

from pipeline.checksum import compute_row_checksum, normalize_row, transform_page_to_row_values
from schemas.mapping import MappingConfig


class TestComputeRowChecksum:

    def test_deterministic_and_short(self):
        checksum = compute_row_checksum(["a", 1, True])
        assert checksum == compute_row_checksum(["a", 1, True])
        assert len(checksum) == 16

    def test_order_matters(self):
        assert compute_row_checksum(["a", "b"]) != compute_row_checksum(["b", "a"])

    def test_integral_float_equals_int(self):
        """Sheets returns 3 for a cell written as 3.0"""
        assert compute_row_checksum(["x", 3.0]) == compute_row_checksum(["x", 3])
        assert compute_row_checksum(["x", 3.5]) != compute_row_checksum(["x", 3])

    def test_types_are_distinguished(self):
        assert compute_row_checksum(["1"]) != compute_row_checksum([1])
        assert compute_row_checksum([True]) != compute_row_checksum(["TRUE"])


class TestRowValues:

    def test_values_follow_column_order(self, mapping_config, make_page):
        mapping = MappingConfig.model_validate(mapping_config)
        page = make_page("p1", name="Write docs", status="Doing", count=2, tags=["a", "b"])

        assert transform_page_to_row_values(page, mapping.columns) == ["Write docs", "Doing", 2, "a, b"]

    def test_missing_property_is_empty(self, mapping_config, make_page):
        mapping = MappingConfig.model_validate(mapping_config)
        page = make_page("p1")
        del page["properties"]["Status"]

        assert transform_page_to_row_values(page, mapping.columns)[1] == ""

    def test_column_delimiter_option(self, mapping_config, make_page):
        mapping_config["columns"][3]["transformOptions"] = {"delimiter": " | "}
        mapping = MappingConfig.model_validate(mapping_config)
        page = make_page("p1", tags=["a", "b"])

        assert transform_page_to_row_values(page, mapping.columns)[3] == "a | b"


class TestNormalizeRow:

    def test_pads_trimmed_row(self):
        assert normalize_row(["a"], 3) == ["a", "", ""]

    def test_truncates_extra_cells(self):
        assert normalize_row(["a", "b", "2024-01-01T00:00:00Z"], 2) == ["a", "b"]

    def test_round_trip_checksum_is_stable(self):
        written = ["Task", "", 0, ""]
        read_back = ["Task", "", 0]  # trailing empties dropped by Sheets
        assert compute_row_checksum(normalize_row(read_back, len(written))) == compute_row_checksum(written)
