"""
Smoke tests to verify all modules can be imported.
"""

def test_import_sandbox():
    import sandbox
    assert hasattr(sandbox, '__version__')


def test_import_evaluator():
    import evaluator
    assert hasattr(evaluator, '__version__')


def test_import_progress_core():
    import progress_core
    assert hasattr(progress_core, '__version__')


def test_import_store():
    import store
    assert hasattr(store, '__version__')


def test_import_service():
    import service
    assert hasattr(service, '__version__')
