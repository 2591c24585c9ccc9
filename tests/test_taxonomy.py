import pytest

from sandbox.taxonomy import (
    PHASE_COMPILE,
    PHASE_PARSE,
    ClassifiedError,
    ErrorCategory,
    SandboxImportError,
    classify_crash,
    classify_exception,
    make_error,
    timeout_error,
)


@pytest.mark.parametrize(
    "exc,category",
    [
        (ZeroDivisionError("division by zero"), ErrorCategory.ARITHMETIC_ERROR),
        (OverflowError("math range error"), ErrorCategory.ARITHMETIC_ERROR),
        (TypeError("f() takes 1 positional argument but 2 were given"), ErrorCategory.FUNCTION_MISMATCH),
        (TypeError("f() missing 1 required positional argument: 'b'"), ErrorCategory.FUNCTION_MISMATCH),
        (TypeError("f() got an unexpected keyword argument 'c'"), ErrorCategory.FUNCTION_MISMATCH),
        (TypeError("unsupported operand type(s) for +: 'int' and 'str'"), ErrorCategory.ARGUMENT_ERROR),
        (ValueError("invalid literal for int() with base 10: 'x'"), ErrorCategory.ARGUMENT_ERROR),
        (NameError("name 'foo' is not defined"), ErrorCategory.UNDEFINED_OPERATION),
        (AttributeError("'int' object has no attribute 'append'"), ErrorCategory.UNDEFINED_OPERATION),
        (NotImplementedError("todo"), ErrorCategory.UNDEFINED_OPERATION),
        (RecursionError("maximum recursion depth exceeded"), ErrorCategory.RESOURCE_EXCEEDED),
        (MemoryError(), ErrorCategory.RESOURCE_EXCEEDED),
        (SandboxImportError("Import of 'os' blocked by sandbox policy"), ErrorCategory.DANGEROUS_CODE),
        (ImportError("blocked by sandbox policy"), ErrorCategory.UNKNOWN_RUNTIME_ERROR),
        (KeyError("missing"), ErrorCategory.UNKNOWN_RUNTIME_ERROR),
        (SystemExit(3), ErrorCategory.UNKNOWN_RUNTIME_ERROR),
    ],
)
def test_classify_exception_categories(exc: BaseException, category: ErrorCategory) -> None:
    assert classify_exception(exc).category is category


def test_messages_follow_label_convention() -> None:
    error = classify_exception(ZeroDivisionError("division by zero"))
    assert error.message == "Arithmetic Error: division by zero"


def test_system_exit_reports_process_exit() -> None:
    error = classify_exception(SystemExit(3))
    assert "Process exited: 3" in error.message


def test_unknown_error_keeps_exception_name() -> None:
    error = classify_exception(KeyError("missing"))
    assert error.message == "Runtime Error: KeyError: 'missing'"


def test_syntax_error_phase_decides_category() -> None:
    exc = SyntaxError("'return' outside function")
    exc.lineno = 1
    assert classify_exception(exc, PHASE_PARSE).category is ErrorCategory.SYNTAX_ERROR
    compiled = classify_exception(exc, PHASE_COMPILE)
    assert compiled.category is ErrorCategory.COMPILE_ERROR
    assert compiled.message == "Compilation Error: 'return' outside function (line 1)"


def test_only_timeout_is_retryable() -> None:
    retryable = [category for category in ErrorCategory if category.retryable]
    assert retryable == [ErrorCategory.TIMEOUT]


def test_every_category_has_a_distinct_label() -> None:
    labels = [category.label for category in ErrorCategory]
    assert len(set(labels)) == len(labels)


def test_timeout_display_suggests_infinite_loop() -> None:
    error = timeout_error(5000)
    assert error.message == "Timeout: execution exceeded 5000ms"
    assert "infinite loop" in error.display


def test_classify_crash() -> None:
    assert classify_crash("Traceback ...\nMemoryError", 1).category is ErrorCategory.RESOURCE_EXCEEDED
    killed = classify_crash("", -9)
    assert killed.category is ErrorCategory.UNKNOWN_RUNTIME_ERROR
    assert "signal 9" in killed.message
    assert classify_crash("line one\nboom", 1).message == "Runtime Error: boom"


def test_error_dict_round_trip_and_unknown_category() -> None:
    error = make_error(ErrorCategory.ARGUMENT_ERROR, "bad")
    assert ClassifiedError.from_dict(error.to_dict()) == error
    unknown = ClassifiedError.from_dict({"category": "bogus", "message": "?"})
    assert unknown.category is ErrorCategory.UNKNOWN_RUNTIME_ERROR
