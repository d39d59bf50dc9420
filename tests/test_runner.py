import pytest
import yaml
from click.testing import CliRunner

from storyboard.runner import cli


@pytest.fixture
def config_file(tmp_path):
    def write(**generation):
        path = tmp_path / "config.yaml"
        path.write_text(yaml.safe_dump({
            "project": {"file": "board.json", "videos_dir": "videos"},
            "generation": generation,
            "credentials": {"store": "creds.yaml"},
        }))
        return str(path)

    return write


def test_blank_idea_is_reported_as_input_error(tmp_path, config_file):
    result = CliRunner().invoke(cli, ["-c", config_file(), "blueprint", "   "])

    assert result.exit_code == 1
    assert "Error: Idea text is empty" in result.output
    assert "Configuration error" not in result.output
    assert (tmp_path / "board.json").exists()


def test_text_only_image_provider_is_a_configuration_error(config_file):
    result = CliRunner().invoke(
        cli, ["-c", config_file(service="openai", image_provider="openai"), "status"],
    )

    assert result.exit_code == 1
    assert "Configuration error" in result.output
    assert "'openai'" in result.output


def test_missing_config_file(tmp_path):
    result = CliRunner().invoke(cli, ["-c", str(tmp_path / "absent.yaml"), "status"])

    assert result.exit_code == 1
    assert "Config not found" in result.output
