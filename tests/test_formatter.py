import sys

import pytest

from sandbox.executor import ExecutionResult
from sandbox.formatter import (
    DisplayResult,
    create_summary,
    format_error_message,
    format_execution_time,
    format_output,
    format_result,
    format_value,
)
from sandbox.taxonomy import ErrorCategory, make_error, timeout_error


class TestFormatValue:
    def test_absent_value_renders_nil(self):
        assert format_value(None) == "nil"

    def test_scalars(self):
        assert format_value("hi") == "'hi'"
        assert format_value(42) == "42"
        assert format_value(2.5) == "2.5"
        assert format_value(True) == "True"

    def test_short_collections_render_fully(self):
        assert format_value([0, 1, 2]) == "[0, 1, 2]"
        assert format_value({"a": 1}) == "{'a': 1}"
        assert format_value((1, 2)) == "(1, 2)"

    def test_long_list_shows_first_five(self):
        assert format_value(list(range(20))) == "[0, 1, 2, 3, 4 ... (20 items)]"

    def test_long_sets_keep_suffix_inside_braces(self):
        assert format_value(set(range(12))) == "{0, 1, 2, 3, 4 ... (12 items)}"
        assert format_value(frozenset(range(12))) == "frozenset({0, 1, 2, 3, 4 ... (12 items)})"

    @pytest.mark.skipif(not hasattr(sys, "get_int_max_str_digits"), reason="no integer string limit")
    def test_integer_too_long_to_print(self):
        assert format_value(10**5000) == "<int with 5001 digits>"

    def test_list_at_limit_is_not_truncated(self):
        assert format_value(list(range(10))) == "[0, 1, 2, 3, 4, 5, 6, 7, 8, 9]"

    def test_large_mapping_shows_first_three(self):
        value = {i: i * i for i in range(10)}
        assert format_value(value) == "{0: 0, 1: 1, 2: 4 ... (10 keys)}"

    def test_long_tuple_shows_first_three(self):
        assert format_value(tuple(range(8))) == "(0, 1, 2 ... (8 elements))"


class TestFormatParts:
    def test_output_is_trimmed_or_absent(self):
        assert format_output("hi\n\n") == "hi"
        assert format_output("  \n") is None
        assert format_output("") is None

    def test_error_whitespace_is_collapsed(self):
        assert format_error_message("Runtime Error:\n   boom  ") == "Runtime Error: boom"
        assert format_error_message(None) is None

    def test_execution_time_units(self):
        assert format_execution_time(0) == "< 1ms"
        assert format_execution_time(250) == "250ms"
        assert format_execution_time(1500) == "1.50s"
        assert format_execution_time(90_000) == "1.50min"


class TestFormatResult:
    def test_success(self):
        display = format_result(ExecutionResult(value=3, output="hi\n", error=None, elapsed_ms=12))
        assert display == DisplayResult(
            success=True,
            value_text="3",
            output_text="hi",
            error_text=None,
            elapsed_text="12ms",
            raw_value=3,
        )

    def test_failure_includes_hint(self):
        display = format_result(
            ExecutionResult(value=None, output="", error=timeout_error(5000), elapsed_ms=5000)
        )
        assert display.success is False
        assert display.error_text is not None
        assert display.error_text.startswith("Timeout: execution exceeded 5000ms")
        assert "infinite loop" in display.error_text
        assert display.elapsed_text == "5.00s"


class TestSummary:
    def test_success_summary(self):
        display = DisplayResult(True, "3", "hi", None, "5ms")
        assert create_summary(display) == "Result: 3 | Output: hi | Executed in 5ms"

    def test_success_summary_drops_absent_parts(self):
        display = DisplayResult(True, "nil", None, None, "< 1ms")
        assert create_summary(display) == "Executed in < 1ms"

    def test_failure_summary(self):
        error = make_error(ErrorCategory.ARITHMETIC_ERROR, "division by zero")
        display = format_result(ExecutionResult(value=None, output="", error=error, elapsed_ms=4))
        assert create_summary(display) == "Error: Arithmetic Error: division by zero | Failed in 4ms"

    def test_fields_are_clipped(self):
        display = DisplayResult(True, "x" * 500, None, None, "5ms")
        assert create_summary(display) == f"Result: {'x' * 100} | Executed in 5ms"
