"""Unit tests for CLI interface."""

import json
from unittest.mock import patch

import pytest
import yaml
from click.testing import CliRunner

from catalog_feeds.pipeline.main import main
from tests.fixtures.sample_data import get_sample_products


@pytest.fixture
def config_file(tmp_path):
    """Config with an inline products source and no upload target."""
    path = tmp_path / "config.yaml"
    with open(path, "w") as f:
        yaml.dump({
            "output_directory": str(tmp_path / "feeds"),
            "state_directory": str(tmp_path / "state"),
            "structured_logging": False,
            "upload_on_complete": False,
            "api": {"base_url": "http://graph.test"},
            "feeds": [
                {
                    "feed_type": "products",
                    "batch_size": 2,
                    "source": {"kind": "memory", "records": get_sample_products(3)},
                },
                {"feed_type": "promotions"},
            ],
        }, f)
    return path


@pytest.fixture
def runner():
    return CliRunner()


def test_cli_help(runner):
    """Test that CLI help message works."""
    result = runner.invoke(main, ["--help"])

    assert result.exit_code == 0
    assert "Catalog Feeds" in result.output
    assert "--config" in result.output
    assert "regenerate" in result.output
    assert "tick" in result.output


def test_cli_version(runner):
    """Test that version flag works."""
    result = runner.invoke(main, ["--version"])

    assert result.exit_code == 0
    assert "1.0.0" in result.output


def test_regenerate_builds_feed(runner, config_file, tmp_path):
    result = runner.invoke(main, ["-c", str(config_file), "regenerate", "products", "--no-progress"])

    assert result.exit_code == 0, result.output
    assert "products" in result.output
    published = (tmp_path / "feeds" / "products_feed.csv").read_text(encoding="utf-8")
    assert len(published.splitlines()) == 4


def test_regenerate_with_progress(runner, config_file, tmp_path):
    result = runner.invoke(main, ["-c", str(config_file), "regenerate"])

    assert result.exit_code == 0, result.output
    assert (tmp_path / "feeds" / "promotions_feed.csv").exists()


def test_regenerate_no_drain_leaves_job_running(runner, config_file):
    runner.invoke(main, ["-c", str(config_file), "regenerate", "products", "--no-drain", "--no-progress"])

    result = runner.invoke(main, ["-c", str(config_file), "status", "products", "--json"])

    report = json.loads(result.stdout)
    assert report["feeds"][0]["status"] == "running"
    assert report["feeds"][0]["current_batch_number"] == 1


def test_tick_advances_across_invocations(runner, config_file, tmp_path):
    first = runner.invoke(main, ["-c", str(config_file), "tick", "products", "--start-idle"])
    second = runner.invoke(main, ["-c", str(config_file), "tick", "products"])
    third = runner.invoke(main, ["-c", str(config_file), "tick", "products"])

    assert "batch 1, 2 rows" in first.output
    assert "batch 2, 1 rows" in second.output
    assert "published" in third.output
    assert (tmp_path / "feeds" / "products_feed.csv").exists()


def test_tick_nothing_running(runner, config_file):
    result = runner.invoke(main, ["-c", str(config_file), "tick", "products"])

    assert result.exit_code == 0
    assert "nothing to do" in result.output


def test_status_saves_report(runner, config_file, tmp_path):
    output = tmp_path / "reports" / "status.json"

    result = runner.invoke(main, ["-c", str(config_file), "status", "--output", str(output)])

    assert result.exit_code == 0
    report = json.loads(output.read_text())
    assert [feed["data_stream_name"] for feed in report["feeds"]] == ["products", "promotions"]


def test_cancel(runner, config_file):
    runner.invoke(main, ["-c", str(config_file), "regenerate", "products", "--no-drain", "--no-progress"])

    result = runner.invoke(main, ["-c", str(config_file), "cancel", "products"])
    again = runner.invoke(main, ["-c", str(config_file), "cancel", "products"])

    assert "Cancelled products" in result.output
    assert "Nothing to cancel" in again.output


def test_cancel_requires_feeds(runner, config_file):
    result = runner.invoke(main, ["-c", str(config_file), "cancel"])
    assert result.exit_code != 0


def test_cli_overrides_output_dir(runner, config_file, tmp_path):
    override = tmp_path / "elsewhere"

    result = runner.invoke(main, ["-c", str(config_file), "-o", str(override), "regenerate", "products", "--no-progress"])

    assert result.exit_code == 0, result.output
    assert (override / "products_feed.csv").exists()


def test_unknown_feed_exits_with_error(runner, config_file):
    result = runner.invoke(main, ["-c", str(config_file), "regenerate", "inventory", "--no-progress"])

    assert result.exit_code == 1
    assert "Error" in result.output


def test_invalid_config_exits_with_error(runner, tmp_path):
    path = tmp_path / "bad.yaml"
    path.write_text("batch_timeout: 0\n")

    result = runner.invoke(main, ["-c", str(path), "status"])

    assert result.exit_code == 1
    assert "batch_timeout" in result.output


@patch("catalog_feeds.pipeline.main.FeedPipeline")
def test_keyboard_interrupt_exit_code(mock_pipeline_class, runner, config_file):
    mock_pipeline_class.return_value.status.side_effect = KeyboardInterrupt

    result = runner.invoke(main, ["-c", str(config_file), "status"])

    assert result.exit_code == 130
    assert "Interrupted" in result.output
