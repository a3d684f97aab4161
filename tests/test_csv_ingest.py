import pytest

from mailbridge.services.csv_ingest import (
    MAX_CSV_BYTES,
    CSVInputError,
    Recipient,
    is_valid_email,
    parse_recipients,
    validate_upload,
)


def test_mixed_rows_are_reported_with_row_numbers():
    result = parse_recipients("email,name\na@x.com,Al\nbad-email,Bo\n,Cy\n")

    assert result.total_records == 3
    assert result.valid_emails == [Recipient(email="a@x.com", name="Al")]
    assert result.errors == [
        "Row 2: Invalid email format: bad-email",
        "Row 3: Missing email address",
    ]


def test_header_aliases_match_case_insensitively_and_trimmed():
    result = parse_recipients(" Full_Name , EMAIL_ADDRESS \nBo,bo@example.org\n")

    assert result.valid_emails == [Recipient(email="bo@example.org", name="Bo")]
    assert result.errors == []


def test_to_column_without_name_column():
    result = parse_recipients(b"to\ncy@example.com\n")

    assert result.valid_emails == [Recipient(email="cy@example.com", name="")]


def test_ragged_rows_are_tolerated():
    content = "name,email,company\nAl,al@example.com\nBo\nCy,cy@example.com,Acme,extra\n"
    result = parse_recipients(content)

    assert result.total_records == 3
    assert [r.email for r in result.valid_emails] == ["al@example.com", "cy@example.com"]
    assert result.errors == ["Row 2: Missing email address"]


def test_blank_rows_are_not_counted():
    result = parse_recipients("email,name\n\na@x.com,Al\n , \n\nb@x.com,Bo\n")

    assert result.total_records == 2
    assert len(result.valid_emails) == 2
    assert result.errors == []


def test_values_are_trimmed():
    result = parse_recipients("email,name\n  a@x.com  ,  Al  \n")

    assert result.valid_emails == [Recipient(email="a@x.com", name="Al")]


def test_utf8_bom_is_ignored():
    result = parse_recipients("\ufeffemail\na@x.com\n".encode("utf-8"))

    assert result.valid_emails == [Recipient(email="a@x.com")]


def test_missing_email_column_is_an_error():
    with pytest.raises(CSVInputError, match="'email' column"):
        parse_recipients("name,phone\nAl,555\n")


def test_empty_file_has_no_header():
    with pytest.raises(CSVInputError, match="headers"):
        parse_recipients(b"")


def test_non_utf8_content_is_rejected():
    with pytest.raises(CSVInputError):
        parse_recipients(b"email\n\xff\xfe\xfa@x.com\n")


def test_output_is_capped_at_100_recipients():
    rows = "\n".join(f"user{i}@example.com,User {i}" for i in range(150))
    result = parse_recipients(f"email,name\n{rows}\n")

    assert result.total_records == 150
    assert len(result.valid_emails) == 100
    assert result.valid_emails[-1].email == "user99@example.com"
    assert result.errors == ["Limited to first 100 emails"]


def test_to_dict_shape():
    data = parse_recipients("email,name\na@x.com,Al\n").to_dict()

    assert data == {
        "total_records": 1,
        "valid_emails": [{"email": "a@x.com", "name": "Al"}],
        "errors": [],
    }


@pytest.mark.parametrize("filename", ["list.txt", "list.csv.exe", "", None])
def test_validate_upload_rejects_non_csv_names(filename):
    with pytest.raises(CSVInputError, match="CSV file"):
        validate_upload(filename, 10)


def test_validate_upload_rejects_large_files():
    validate_upload("LIST.CSV", MAX_CSV_BYTES)
    with pytest.raises(CSVInputError, match="5MB"):
        validate_upload("list.csv", MAX_CSV_BYTES + 1)


@pytest.mark.parametrize(
    "value,expected",
    [
        ("a@x.com", True),
        ("first.last+tag@sub.example.co", True),
        ("bad-email", False),
        ("a@x", False),
        ("a b@x.com", False),
        ("", False),
    ],
)
def test_is_valid_email(value, expected):
    assert is_valid_email(value) is expected
