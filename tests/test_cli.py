"""Tests for the command-line interface."""

from typer.testing import CliRunner

runner = CliRunner()


class TestCli:
    """Tests for the crucible commands."""

    def test_version(self):
        """version prints the package version."""
        from src import __version__
        from src.main import app

        result = runner.invoke(app, ["version"])

        assert result.exit_code == 0
        assert __version__ in result.output

    def test_run_requires_api_key(self, tmp_path, monkeypatch):
        """run exits with an error when no provider key is configured."""
        from src.main import API_KEY_VARS, app

        for var in API_KEY_VARS:
            monkeypatch.delenv(var, raising=False)
        source = tmp_path / "paper.txt"
        source.write_text("Some findings.")

        result = runner.invoke(app, ["run", str(source)])

        assert result.exit_code == 1
        assert "no LLM API key set" in result.output

    def test_run_rejects_invalid_config(self, tmp_path, monkeypatch):
        """Out-of-range options exit with code 2 before any call is made."""
        from src.main import app

        monkeypatch.setenv("GEMINI_API_KEY", "test-key")
        source = tmp_path / "paper.txt"
        source.write_text("Some findings.")

        result = runner.invoke(app, ["run", str(source), "--concurrency", "0"])

        assert result.exit_code == 2
        assert "Invalid configuration" in result.output

    def test_load_documents(self, tmp_path):
        """Files become documents named after their stem."""
        from src.main import load_documents

        path = tmp_path / "scaling-notes.txt"
        path.write_text("Cost grows with size.")

        [doc] = load_documents([path])

        assert doc.name == "scaling-notes"
        assert doc.text == "Cost grows with size."
        assert doc.metadata["path"] == str(path)
