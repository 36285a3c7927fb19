import pytest

from batch_import.core.errors import InvalidFile, SourceUnavailable
from batch_import.services.csv_source import inspect_csv, iter_records, normalize_header


@pytest.mark.parametrize(
    "raw, expected",
    [("SKU*", "sku"), (" Cost Price* ", "cost_price"), ("attr_Color", "attr_color"), ("name *", "name")],
)
def test_normalize_header(raw, expected):
    assert normalize_header(raw) == expected


def test_inspect_counts_data_rows_and_skips_blank_lines():
    content = b"\xef\xbb\xbfsku*,name*,price*\n\nA,Alpha,1\n  ,  ,  \nB,Beta,2\n"

    summary = inspect_csv(content)

    assert summary.headers == ["sku", "name", "price"]
    assert summary.total_rows == 2


def test_malformed_rows_are_counted_not_rejected():
    summary = inspect_csv(b"sku,name,price\nA,Alpha\nB,Beta,2\n")

    assert summary.total_rows == 2


@pytest.mark.parametrize(
    "content, message",
    [
        (b"", "empty"),
        (b"   \n", "empty"),
        (b"sku,name,price\n", "no data rows"),
        (b"sku,name\nA,Alpha\n", "price"),
        (b"sku,name,price,Name\nA,B,1,C\n", "Duplicate"),
        (b"sku,name,price\nA,\xff\xfe,1\n", "UTF-8"),
    ],
)
def test_inspect_rejects_unusable_files(content, message):
    with pytest.raises(InvalidFile) as excinfo:
        inspect_csv(content)
    assert message in str(excinfo.value)


def test_inspect_enforces_size_limit():
    with pytest.raises(InvalidFile):
        inspect_csv(b"sku,name,price\nA,B,1\n", max_bytes=10)


def test_iter_records_numbers_rows_and_reports_parse_errors(tmp_path):
    path = tmp_path / "rows.csv"
    path.write_text('sku,name,price\nA,Alpha,1\n\nB,Beta\nC,"bad"x,3\nD,Delta,4\n', encoding="utf-8")

    records = list(iter_records(path))

    assert [record.row_number for record in records] == [1, 2, 3, 4]
    assert records[0].values == {"sku": "A", "name": "Alpha", "price": "1"}
    assert records[1].parse_error == "Expected 3 fields but found 2"
    assert records[2].parse_error.startswith("Malformed CSV row")
    assert records[3].values["sku"] == "D"


def test_iter_records_resumes_after_checkpoint(tmp_path):
    path = tmp_path / "rows.csv"
    path.write_text("sku,name,price\nA,a,1\nB,b,2\nC,c,3\n", encoding="utf-8")

    assert [record.values["sku"] for record in iter_records(path, start_after=2)] == ["C"]


def test_iter_records_missing_file(tmp_path):
    with pytest.raises(SourceUnavailable):
        list(iter_records(tmp_path / "gone.csv"))


def test_iter_records_header_changed_on_disk(tmp_path):
    path = tmp_path / "rows.csv"
    path.write_text("sku,name\nA,a\n", encoding="utf-8")

    with pytest.raises(SourceUnavailable):
        list(iter_records(path))
