"""Tests for interaction normalization."""

import datetime

import pytest
from trafficdiff import InteractionNormalizer, EngineConfig, NO_CONTENT_TYPE
from trafficdiff.exceptions import ValidationError


def record(request=None, response=None, **extra):
    data = {
        "request": {"method": "GET", "path": "/users/1", **(request or {})},
        "response": {"statusCode": 200, **(response or {})},
    }
    data.update(extra)
    return data


class TestBasicNormalization:
    """Test required attributes and their canonical form."""

    def setup_method(self):
        self.normalizer = InteractionNormalizer()

    def test_minimal_record(self):
        """Test a record with no headers and no bodies."""
        interaction = self.normalizer.normalize(record())
        assert interaction.method == "GET"
        assert interaction.path == "/users/1"
        assert interaction.status_code == 200
        assert interaction.request_content_type is NO_CONTENT_TYPE
        assert interaction.response_content_type is NO_CONTENT_TYPE
        assert interaction.request_body is None
        assert interaction.response_body is None

    def test_method_uppercased(self):
        """Test that methods are uppercased."""
        interaction = self.normalizer.normalize(record(request={"method": "post"}))
        assert interaction.method == "POST"

    def test_status_code_string(self):
        """Test that numeric strings are accepted as status codes."""
        interaction = self.normalizer.normalize(record(response={"statusCode": "404"}))
        assert interaction.status_code == 404

    def test_inline_query(self):
        """Test that a query string in the path is split off."""
        interaction = self.normalizer.normalize(record(request={"path": "/search?q=x&n=1"}))
        assert interaction.path == "/search"
        assert interaction.query == "q=x&n=1"
        assert interaction.url == "/search?q=x&n=1"

    def test_query_mapping(self):
        """Test that a query mapping is flattened."""
        interaction = self.normalizer.normalize(record(request={"query": {"q": "x"}}))
        assert interaction.query == "q=x"

    def test_missing_method(self):
        """Test that a record without method is rejected."""
        with pytest.raises(ValidationError):
            self.normalizer.normalize({"request": {"path": "/"}, "response": {"statusCode": 200}})

    def test_missing_status(self):
        """Test that a record without status code is rejected."""
        with pytest.raises(ValidationError):
            self.normalizer.normalize({"request": {"method": "GET", "path": "/"}, "response": {}})

    def test_not_an_object(self):
        """Test that non-object records are rejected."""
        with pytest.raises(ValidationError):
            self.normalizer.normalize(["GET", "/"])

    def test_normalize_all_keeps_order(self):
        """Test that batches keep their order."""
        interactions = self.normalizer.normalize_all([
            record(request={"path": "/a"}),
            record(request={"path": "/b"}),
        ])
        assert [i.path for i in interactions] == ["/a", "/b"]


class TestHeadersAndContentType:
    """Test header handling and content type detection."""

    def setup_method(self):
        self.normalizer = InteractionNormalizer()

    def test_header_mapping_case_insensitive(self):
        """Test that header names are matched case-insensitively."""
        interaction = self.normalizer.normalize(record(
            response={"headers": {"CONTENT-TYPE": "Application/JSON; charset=utf-8"}, "body": "{}"}
        ))
        assert interaction.response_content_type == "application/json"
        assert ("content-type", "Application/JSON; charset=utf-8") in interaction.response_headers

    def test_header_list(self):
        """Test headers given as a list of name/value objects."""
        interaction = self.normalizer.normalize(record(
            request={"headers": [{"name": "Content-Type", "value": "text/plain"}], "body": "hi"}
        ))
        assert interaction.request_content_type == "text/plain"
        assert interaction.request_raw_body == "hi"
        assert interaction.request_body is None

    def test_invalid_header_entry(self):
        """Test that malformed header entries are rejected."""
        with pytest.raises(ValidationError):
            self.normalizer.normalize(record(request={"headers": ["broken"]}))


class TestBodies:
    """Test body parsing."""

    def setup_method(self):
        self.normalizer = InteractionNormalizer()

    def json_response(self, body):
        return record(response={"headers": {"content-type": "application/json"}, "body": body})

    def test_json_string_parsed(self):
        """Test that JSON text is parsed into a tree."""
        interaction = self.normalizer.normalize(self.json_response('{"id": "x", "n": [1, 2]}'))
        assert interaction.response_body == {"id": "x", "n": [1, 2]}

    def test_json_bytes_parsed(self):
        """Test that JSON bytes are decoded and parsed."""
        interaction = self.normalizer.normalize(self.json_response(b'[true]'))
        assert interaction.response_body == [True]

    def test_structured_body_kept(self):
        """Test that an already structured body is kept as is."""
        interaction = self.normalizer.normalize(self.json_response({"a": 1}))
        assert interaction.response_body == {"a": 1}

    def test_structured_body_with_dates(self):
        """Test that non-JSON scalars in a structured body become strings."""
        body = {"id": "x", "created": datetime.date(2024, 1, 1)}
        interaction = self.normalizer.normalize(self.json_response(body))
        assert interaction.response_body == {"id": "x", "created": "2024-01-01"}

    def test_vendor_json_type(self):
        """Test that +json media types are parsed."""
        interaction = self.normalizer.normalize(record(
            response={"headers": {"content-type": "application/problem+json"}, "body": '{"title": "x"}'}
        ))
        assert interaction.response_body == {"title": "x"}

    def test_unparseable_body_is_no_body(self, caplog):
        """Test that a malformed JSON body is treated as no body and logged."""
        with caplog.at_level("WARNING", logger="trafficdiff"):
            interaction = self.normalizer.normalize(self.json_response('{"id": '))
        assert interaction.response_body is None
        assert interaction.response_raw_body == '{"id": '
        assert interaction.response_content_type == "application/json"
        assert "Unparseable JSON body" in caplog.text

    def test_oversized_body_is_no_body(self):
        """Test that bodies above the size limit are not parsed."""
        normalizer = InteractionNormalizer(EngineConfig(max_body_size_mb=0.00001))
        interaction = normalizer.normalize(self.json_response('{"data": "' + "x" * 100 + '"}'))
        assert interaction.response_body is None

    def test_empty_body(self):
        """Test that an empty body is no body."""
        interaction = self.normalizer.normalize(self.json_response(""))
        assert interaction.response_body is None
