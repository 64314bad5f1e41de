"""
Tests for JSON Compatibility Layer
===================================
Tests for src/esupgrade/utils/json_compat.py covering the compact encoding
used for serialized dashboard sub-documents and the bulk wire format.
"""

import json as std_json
from datetime import date, datetime

import pytest

from esupgrade.utils.json_compat import dumps, dumps_bytes, loads


class TestDumps:
    """Tests for dumps()."""

    def test_compact_separators(self):
        """Test output matches the compact form stored in visState."""
        assert dumps({"a": [1, 2], "b": {"c": None}}) == '{"a":[1,2],"b":{"c":null}}'

    def test_returns_str(self):
        """Test dumps returns str, not bytes."""
        assert isinstance(dumps({"x": 1}), str)

    def test_unicode_is_not_escaped(self):
        """Test non-ASCII field names survive unescaped."""
        assert dumps({"Estimulado": "sí"}) == '{"Estimulado":"sí"}'

    def test_indent(self):
        """Test indent=2 produces pretty output."""
        assert "\n  " in dumps({"a": 1}, indent=2)

    def test_datetime_and_date(self):
        """Test datetime and date are encoded as ISO strings."""
        result = loads(dumps({"dt": datetime(2017, 3, 1, 10, 0), "d": date(2017, 3, 1)}))
        assert result == {"dt": "2017-03-01T10:00:00", "d": "2017-03-01"}

    def test_non_str_keys(self):
        """Test integer keys are converted to strings."""
        assert loads(dumps({1: "a"})) == {"1": "a"}

    def test_custom_default(self):
        """Test a caller-supplied default is used for unknown types."""
        assert dumps({"s": {1, 2}}, default=lambda o: sorted(o)) == '{"s":[1,2]}'


class TestDumpsBytes:
    """Tests for dumps_bytes()."""

    def test_bulk_line(self):
        """Test one NDJSON line of a bulk request."""
        line = dumps_bytes({"index": {"_index": "t", "_type": "traces", "_id": "1"}})
        assert isinstance(line, bytes)
        assert b"\n" not in line
        assert std_json.loads(line) == {"index": {"_index": "t", "_type": "traces", "_id": "1"}}


class TestLoads:
    """Tests for loads()."""

    def test_str_and_bytes(self):
        """Test both str and bytes input."""
        assert loads('{"a": 1}') == {"a": 1}
        assert loads(b'{"a": 1}') == {"a": 1}

    def test_invalid_raises_value_error(self):
        """Test decode errors are ValueError subclasses."""
        with pytest.raises(ValueError):
            loads("{broken")

    def test_escaped_quotes_are_not_json(self):
        """Test escaped serialized sub-documents need unescaping first."""
        with pytest.raises(ValueError):
            loads('{\\"a\\": 1}')
