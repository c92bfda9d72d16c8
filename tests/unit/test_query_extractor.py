"""
Unit tests for the streaming query extractor
"""

import pytest
from core.exceptions import ExtractionError, InputError
from transfer.extractors.query_extractor import QueryExtractor, select_fields
from transfer.files import count_csv_rows


class TestExtractToFile:
    """Test query extraction into CSV files"""

    @pytest.mark.asyncio
    async def test_identity_transform_writes_every_record(self, tmp_path, make_connection, sample_records, csv_rows):
        connection = make_connection(pages=[sample_records[:2], sample_records[2:]])
        path = tmp_path / "accounts.csv"
        progress = []

        written = await QueryExtractor(connection).extract_to_file(
            "SELECT Id, Name, Industry FROM Account",
            path,
            progress_callback=lambda seen, kept: progress.append((seen, kept))
        )

        assert written == 3
        lines = path.read_text().splitlines()
        assert len(lines) == 4
        assert lines[0] == "Id,Name,Industry"
        assert csv_rows(path)[2] == {"Id": "001C", "Name": "Initech", "Industry": ""}
        assert progress == [(2, 2), (3, 3)]
        assert connection.queries == ["SELECT Id, Name, Industry FROM Account"]

    @pytest.mark.asyncio
    async def test_append_adds_rows_without_second_header(self, tmp_path, make_connection, sample_records):
        path = tmp_path / "accounts.csv"
        extractor = QueryExtractor(make_connection(pages=[sample_records]))

        await extractor.extract_to_file("SELECT Id, Name, Industry FROM Account", path)
        await extractor.extract_to_file("SELECT Id, Name, Industry FROM Account", path, append_to_existing_file=True)

        lines = path.read_text().splitlines()
        assert len(lines) == 7
        assert lines.count("Id,Name,Industry") == 1

    @pytest.mark.asyncio
    async def test_transform_dropping_everything(self, tmp_path, make_connection, sample_records):
        path = tmp_path / "accounts.csv"
        progress = []

        written = await QueryExtractor(make_connection(pages=[sample_records])).extract_to_file(
            "SELECT Id FROM Account",
            path,
            transform=lambda record: None,
            progress_callback=lambda seen, kept: progress.append((seen, kept))
        )

        assert written == 0
        assert count_csv_rows(path) == 0
        assert progress == [(3, 0)]

    @pytest.mark.asyncio
    async def test_transform_rewrites_records(self, tmp_path, make_connection, sample_records, csv_rows):
        path = tmp_path / "accounts.csv"

        def transform(record):
            if record["Name"] == "Globex":
                return None
            return {"Name": record["Name"].upper(), "LegacyId__c": record["Id"]}

        written = await QueryExtractor(make_connection(pages=[sample_records])).extract_to_file(
            "SELECT Id, Name FROM Account", path, transform=transform
        )

        assert written == 2
        assert csv_rows(path) == [
            {"Name": "ACME", "LegacyId__c": "001A"},
            {"Name": "INITECH", "LegacyId__c": "001C"},
        ]

    @pytest.mark.asyncio
    async def test_nested_fields_become_dotted_columns(self, tmp_path, make_connection, csv_rows):
        page = [{
            "attributes": {"type": "Contact"},
            "LastName": "Smith",
            "Account": {"attributes": {"type": "Account"}, "Name": "Acme"}
        }]
        path = tmp_path / "contacts.csv"

        await QueryExtractor(make_connection(pages=[page])).extract_to_file("SELECT ...", path)

        assert csv_rows(path) == [{"LastName": "Smith", "Account.Name": "Acme"}]

    @pytest.mark.asyncio
    async def test_null_lookup_on_first_page_keeps_later_values(self, tmp_path, make_connection, caplog):
        pages = [
            [{"attributes": {"type": "Account"}, "Id": "1", "Owner": None}],
            [{"attributes": {"type": "Account"}, "Id": "2", "Owner": {"attributes": {"type": "User"}, "Email": "a@x.com"}}],
        ]
        path = tmp_path / "out.csv"

        written = await QueryExtractor(make_connection(pages=pages)).extract_to_file(
            "SELECT Id, Owner.Email FROM Account", path
        )

        assert written == 2
        assert path.read_text() == "Id,Owner.Email\n1,\n2,a@x.com\n"
        assert "dropped" not in caplog.text

    @pytest.mark.asyncio
    async def test_select_list_matches_fields_case_insensitively(self, tmp_path, make_connection, sample_records, csv_rows):
        path = tmp_path / "accounts.csv"

        await QueryExtractor(make_connection(pages=[sample_records])).extract_to_file(
            "select id, name from Account", path
        )

        assert csv_rows(path)[0] == {"id": "001A", "name": "Acme"}

    @pytest.mark.asyncio
    async def test_empty_result_keeps_select_header(self, tmp_path, make_connection):
        path = tmp_path / "none.csv"

        written = await QueryExtractor(make_connection(pages=[])).extract_to_file(
            "SELECT Id, Name FROM Account", path
        )

        assert written == 0
        assert path.read_text() == "Id,Name\n"

    @pytest.mark.asyncio
    async def test_empty_result_reports_zero_progress(self, tmp_path, make_connection):
        progress = []

        written = await QueryExtractor(make_connection(pages=[])).extract_to_file(
            "SELECT Id FROM Account",
            tmp_path / "none.csv",
            progress_callback=lambda seen, kept: progress.append((seen, kept))
        )

        assert written == 0
        assert progress == [(0, 0)]

    @pytest.mark.asyncio
    async def test_query_failure_leaves_partial_file(self, tmp_path, make_connection, sample_records):
        connection = make_connection(pages=[sample_records, RuntimeError("session expired")])
        path = tmp_path / "accounts.csv"

        with pytest.raises(ExtractionError) as exc_info:
            await QueryExtractor(connection).extract_to_file("SELECT Id FROM Account", path)

        assert exc_info.value.context["records_seen"] == 3
        assert exc_info.value.context["pages"] == 1
        assert isinstance(exc_info.value.original_exception, RuntimeError)
        assert count_csv_rows(path) == 3

    @pytest.mark.asyncio
    async def test_target_connection_used_on_request(self, tmp_path, make_connection, sample_records):
        source = make_connection(pages=[])
        target = make_connection(pages=[sample_records])

        written = await QueryExtractor(source, target).extract_to_file(
            "SELECT Id FROM Account", tmp_path / "target.csv", use_source_connection=False
        )

        assert written == 3
        assert source.queries == []

    @pytest.mark.asyncio
    async def test_missing_target_connection(self, tmp_path, make_connection):
        extractor = QueryExtractor(make_connection())

        with pytest.raises(InputError):
            await extractor.extract_to_file(
                "SELECT Id FROM Account", tmp_path / "x.csv", use_source_connection=False
            )


class TestFetchRecords:
    """Test in-memory extraction"""

    @pytest.mark.asyncio
    async def test_fetch_records(self, make_connection, sample_records):
        progress = []

        records = await QueryExtractor(make_connection(pages=[sample_records[:1], sample_records[1:]])).fetch_records(
            "SELECT Id FROM Account",
            transform=lambda record: record if record["Industry"] else None,
            progress_callback=lambda seen, kept: progress.append((seen, kept))
        )

        assert [record["Id"] for record in records] == ["001A", "001B"]
        assert "attributes" not in records[0]
        assert progress == [(1, 1), (3, 2)]

    @pytest.mark.asyncio
    async def test_fetch_records_failure(self, make_connection):
        with pytest.raises(ExtractionError):
            await QueryExtractor(make_connection(pages=[ValueError("bad page")])).fetch_records("SELECT Id FROM Account")


class TestSelectFields:
    """Test header derivation from the query"""

    def test_plain_field_list(self):
        assert select_fields("SELECT Id, Name,Owner.Email FROM Account WHERE Name != null") == [
            "Id", "Name", "Owner.Email"
        ]

    def test_multiline_query(self):
        assert select_fields("select Id,\n  Account.Name\nfrom Contact") == ["Id", "Account.Name"]

    def test_unsupported_select_lists(self):
        assert select_fields("SELECT COUNT(Id) total FROM Account") is None
        assert select_fields("SELECT Id, (SELECT Id FROM Contacts) FROM Account") is None
        assert select_fields("SELECT FIELDS(ALL) FROM Account LIMIT 200") is None
        assert select_fields("not a query") is None
