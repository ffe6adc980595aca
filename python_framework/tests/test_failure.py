"""Tests for FailureDescription and ErrorCode."""

import pytest

from railway import ErrorCode, FailureDescription


class TestErrorCode:
    def test_domain_codes_exist(self):
        domain_codes = {
            ErrorCode.NOT_FOUND,
            ErrorCode.CONFLICT,
            ErrorCode.MALFORMED_VERSION,
            ErrorCode.REGRESSION,
            ErrorCode.INVALID_BUNDLE,
            ErrorCode.UNKNOWN_RELEASE,
            ErrorCode.NO_PRIOR_RELEASE,
            ErrorCode.UNSUPPORTED_KEY_KIND,
            ErrorCode.VALIDATION_ERROR,
        }
        assert domain_codes <= set(ErrorCode)

    def test_infrastructure_codes_exist(self):
        infrastructure_codes = {
            ErrorCode.DATABASE_ERROR,
            ErrorCode.CONFIGURATION_ERROR,
            ErrorCode.EXTERNAL_SERVICE_ERROR,
            ErrorCode.TECHNICAL_ERROR,
            ErrorCode.UNKNOWN_ERROR,
        }
        assert infrastructure_codes <= set(ErrorCode)

    def test_values_match_names(self):
        for code in ErrorCode:
            assert code.value == code.name


class TestFailureDescription:
    def test_creation_with_code_and_message(self):
        desc = FailureDescription(ErrorCode.UNKNOWN_RELEASE, "release 2017.9.0 does not exist")
        assert desc.code == ErrorCode.UNKNOWN_RELEASE
        assert desc.message == "release 2017.9.0 does not exist"
        assert desc.exception is None

    def test_creation_with_exception(self):
        ex = OSError("refused")
        desc = FailureDescription(ErrorCode.DATABASE_ERROR, "connect failed", ex)
        assert desc.exception is ex

    def test_immutability(self):
        desc = FailureDescription(ErrorCode.CONFLICT, "dup")
        with pytest.raises(AttributeError):
            desc.message = "changed"  # type: ignore

    def test_timestamp_is_utc(self):
        desc = FailureDescription(ErrorCode.CONFLICT, "dup")
        assert desc.timestamp.tzinfo is not None
        assert desc.timestamp.utcoffset().total_seconds() == 0

    def test_str_is_code_and_message(self):
        desc = FailureDescription(ErrorCode.INVALID_BUNDLE, "invalid bundle 'roots'")
        assert str(desc) == "INVALID_BUNDLE: invalid bundle 'roots'"

    def test_full_stack_trace_without_exception(self):
        desc = FailureDescription(ErrorCode.VALIDATION_ERROR, "no certificates in input")
        assert desc.full_stack_trace() == "no certificates in input"

    def test_full_stack_trace_with_exception(self):
        try:
            raise ValueError("boom")
        except ValueError as e:
            desc = FailureDescription(ErrorCode.DATABASE_ERROR, "query failed", e)
        trace = desc.full_stack_trace()
        assert trace.startswith("query failed\n")
        assert "ValueError: boom" in trace
