"""
CLI 진입점 테스트
"""
import pytest

from channel_sync import cli


@pytest.mark.unit
class TestServeCommand:
    """serve 서브커맨드 → uvicorn 실행"""

    def test_serve_runs_operator_api(self, monkeypatch):
        calls = []
        monkeypatch.setattr(cli.uvicorn, "run", lambda app, **kwargs: calls.append((app, kwargs)))
        monkeypatch.setattr("sys.argv", ["channel-sync", "serve", "--port", "9001"])

        cli.main()

        assert calls == [("channel_sync.main:app", {"host": "0.0.0.0", "port": 9001, "reload": False})]
