"""
Tests for the command line interface
"""

from typer.testing import CliRunner

from brochure_pipeline.cli import app

runner = CliRunner()


class TestCli:
    """Tests for the brochure-pipeline commands"""

    def test_convert_list_show_delete(self, sample_pdf, config_file, storage_root):
        config = str(config_file)

        result = runner.invoke(app, ["convert", str(sample_pdf), "--title", "Cardio", "-c", config])
        assert result.exit_code == 0, result.output
        assert "Converted brochure" in result.output
        assert (storage_root / "presentations" / "brochure" / "slide_001.png").is_file()

        again = runner.invoke(app, ["convert", str(sample_pdf), "-c", config])
        assert again.exit_code == 0
        assert "Already converted" in again.output

        listing = runner.invoke(app, ["list", "-c", config])
        assert listing.exit_code == 0
        assert "brochure" in listing.output

        shown = runner.invoke(app, ["show", "brochure", "-c", config])
        assert shown.exit_code == 0
        assert "Slide 2" in shown.output

        deleted = runner.invoke(app, ["delete", "brochure", "-c", config])
        assert deleted.exit_code == 0
        assert not (storage_root / "presentations" / "brochure").exists()

    def test_user_overlay_commands(self, sample_pdf, config_file):
        config = str(config_file)
        runner.invoke(app, ["convert", str(sample_pdf), "--id", "cardio", "-c", config])

        shown = runner.invoke(app, ["show", "cardio", "--user", "rep-42", "-c", config])
        assert shown.exit_code == 0
        assert "General" in shown.output

        reset = runner.invoke(app, ["reset", "rep-42", "cardio", "-c", config])
        assert reset.exit_code == 0
        assert "2 slides" in reset.output

    def test_convert_missing_file(self, tmp_path, config_file):
        result = runner.invoke(app, ["convert", str(tmp_path / "missing.pdf"), "-c", str(config_file)])
        assert result.exit_code == 1
        assert "File not found" in result.output

    def test_show_unconverted(self, config_file):
        result = runner.invoke(app, ["show", "nothing", "-c", str(config_file)])
        assert result.exit_code == 1

    def test_list_empty(self, config_file):
        result = runner.invoke(app, ["list", "-c", str(config_file)])
        assert result.exit_code == 0
        assert "No converted documents" in result.output

    def test_bad_config(self, tmp_path):
        broken = tmp_path / "broken.json"
        broken.write_text("{")
        result = runner.invoke(app, ["list", "-c", str(broken)])
        assert result.exit_code == 1
