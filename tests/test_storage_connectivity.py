import catalogstudio.storage.db as db_module


class _DummyConnection:
    def execute(self, _statement):
        return 1

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        del exc_type, exc, tb
        return False


class _DummyEngine:
    def connect(self):
        return _DummyConnection()


class _BrokenEngine:
    def connect(self):
        raise RuntimeError("connection refused")


def test_db_connection_success(monkeypatch) -> None:
    monkeypatch.setattr(db_module, "get_engine", lambda: _DummyEngine())
    ok, error = db_module.test_connection()
    assert ok is True
    assert error is None


def test_db_connection_failure_reports_error(monkeypatch) -> None:
    monkeypatch.setattr(db_module, "get_engine", lambda: _BrokenEngine())
    ok, error = db_module.test_connection()
    assert ok is False
    assert error == "connection refused"
