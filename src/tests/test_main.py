import json
import logging
from collections.abc import Iterator
from pathlib import Path
from typing import Any

import cv2
import numpy as np
import pytest
from click.testing import CliRunner

from frame_budget.config import LoggingConfig
from frame_budget.main import JsonFormatter, cli, collect_frames, configure_logging

ENV_NAMES = (
    "FRAME_BUDGET_MODEL",
    "FRAME_BUDGET_PROFILE_FILE",
    "FRAME_BUDGET_STRATEGY",
    "FRAME_BUDGET_TARGET_FRAMES",
    "FRAME_BUDGET_DIFF_THRESHOLD",
    "FRAME_BUDGET_CHANNEL_THRESHOLD",
    "FRAME_BUDGET_DIFF_METHOD",
    "FRAME_BUDGET_MAX_WORKERS",
    "FRAME_BUDGET_LOG_LEVEL",
    "FRAME_BUDGET_LOG_FORMAT",
)


@pytest.fixture(autouse=True)
def clean_environment(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Iterator[None]:
    for name in ENV_NAMES:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.chdir(tmp_path)
    yield
    logger = logging.getLogger("frame_budget")
    logger.handlers.clear()
    logger.propagate = True
    logger.setLevel(logging.NOTSET)
    logging.captureWarnings(False)


@pytest.fixture
def frames_dir(tmp_path: Path) -> Path:
    directory = tmp_path / "frames"
    directory.mkdir()
    for index in range(8):
        image = np.full((48, 64, 3), 255, dtype=np.uint8)
        image[: index * 6, :] = 0
        assert cv2.imwrite(str(directory / f"frame_{index:03d}.png"), image)
    (directory / "notes.txt").write_text("ignored", encoding="utf-8")
    return directory


def _invoke(*args: str) -> Any:
    return CliRunner().invoke(cli, [*args, "--log-level", "error", "--log-format", "text"])


def test_collect_frames_orders_images_by_name(frames_dir: Path) -> None:
    frames = collect_frames(frames_dir, fps=1.0)

    assert [frame.locator.name for frame in frames] == [f"frame_{i:03d}.png" for i in range(8)]
    assert [frame.index for frame in frames] == list(range(8))
    assert frames[0].timestamp_sec == 0.5
    assert frames[3].timestamp_sec == 3.5


def test_collect_frames_rounds_half_timestamps_up(frames_dir: Path) -> None:
    frames = collect_frames(frames_dir)

    assert [frame.timestamp_sec for frame in frames[:3]] == [0.3, 0.8, 1.3]


def test_plan_prints_json_plan(frames_dir: Path) -> None:
    result = _invoke("plan", str(frames_dir), "--model", "claude-haiku")

    assert result.exit_code == 0, result.output
    payload = json.loads(result.output)
    assert payload["profile"] == "claude-haiku"
    assert payload["strategy"] == "threshold"
    assert payload["total_extracted"] == 8
    assert len(payload["frames"]) == 4
    assert payload["frames"][0]["is_anchor"] is True
    assert payload["frames"][-1]["index"] == 7
    assert payload["validation"]["valid"] is True


def test_plan_writes_output_file(frames_dir: Path, tmp_path: Path) -> None:
    output = tmp_path / "plans" / "plan.json"

    result = _invoke(
        "plan",
        str(frames_dir),
        "--strategy",
        "model",
        "--target-frames",
        "3",
        "--output",
        str(output),
    )

    assert result.exit_code == 0, result.output
    assert "Plan written to" in result.output
    payload = json.loads(output.read_text(encoding="utf-8"))
    assert payload["strategy"] == "model"
    assert len(payload["frames"]) == 3


def test_plan_includes_context_and_optimized_frames(frames_dir: Path, tmp_path: Path) -> None:
    terminal_log = tmp_path / "terminal.log"
    terminal_log.write_text("npm start\nError: Cannot find module 'x'\n", encoding="utf-8")
    git_diff = tmp_path / "changes.diff"
    git_diff.write_text("diff --git a/app.js b/app.js\n+const x = 1;\n", encoding="utf-8")
    optimized = tmp_path / "optimized"

    result = _invoke(
        "plan",
        str(frames_dir),
        "--terminal-log",
        str(terminal_log),
        "--git-diff",
        str(git_diff),
        "--branch",
        "feature/login",
        "--commit",
        "abc123 Add login form",
        "--commit",
        "def456 Wire router",
        "--optimize-dir",
        str(optimized),
    )

    assert result.exit_code == 0, result.output
    payload = json.loads(result.output)
    assert payload["context"]["terminal"]["errors"] == ["Error: Cannot find module 'x'"]
    assert payload["context"]["git"]["branch"] == "feature/login"
    assert payload["context"]["git"]["recent_commits"] == [
        "abc123 Add login form",
        "def456 Wire router",
    ]
    assert all(frame["optimized_locator"] for frame in payload["frames"])
    assert any(optimized.iterdir())


def test_plan_uses_custom_profile_file(frames_dir: Path, tmp_path: Path) -> None:
    profile_file = tmp_path / "profiles.json"
    profile_file.write_text(
        json.dumps(
            {
                "name": "tiny-vision",
                "maxTokens": 50000,
                "imageTokenEstimate": 800,
                "preferredFrames": 3,
                "maxFrames": 3,
                "contextBias": {"visual": 0.6, "code": 0.2, "execution": 0.2},
            }
        ),
        encoding="utf-8",
    )

    result = _invoke(
        "plan", str(frames_dir), "--profile-file", str(profile_file), "--model", "tiny-vision"
    )

    assert result.exit_code == 0, result.output
    payload = json.loads(result.output)
    assert payload["profile"] == "tiny-vision"
    assert len(payload["frames"]) == 3


def test_plan_rejects_empty_directory(tmp_path: Path) -> None:
    empty = tmp_path / "empty"
    empty.mkdir()

    result = _invoke("plan", str(empty))

    assert result.exit_code != 0
    assert "No frame images found" in result.output


def test_plan_rejects_invalid_target(frames_dir: Path) -> None:
    result = _invoke("plan", str(frames_dir), "--target-frames", "1")

    assert result.exit_code != 0
    assert "target_frames must be at least 2" in result.output


def test_plan_reports_invalid_profile_file(frames_dir: Path, tmp_path: Path) -> None:
    profile_file = tmp_path / "broken.json"
    profile_file.write_text("{", encoding="utf-8")

    result = _invoke("plan", str(frames_dir), "--profile-file", str(profile_file))

    assert result.exit_code != 0
    assert "Cannot load profiles" in result.output


def test_plan_configures_logging(frames_dir: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    captured: dict[str, Any] = {}

    def fake_configure(config: LoggingConfig) -> logging.Logger:
        captured["config"] = config
        return logging.getLogger("frame_budget.test")

    monkeypatch.setattr("frame_budget.main.configure_logging", fake_configure)

    result = CliRunner().invoke(
        cli, ["plan", str(frames_dir), "--log-level", "DEBUG", "--log-format", "json"]
    )

    assert result.exit_code == 0, result.output
    assert captured["config"].level.lower() == "debug"
    assert captured["config"].format.lower() == "json"


def test_plan_reads_environment_defaults(
    frames_dir: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.setenv("FRAME_BUDGET_MODEL", "claude-opus")
    monkeypatch.setenv("FRAME_BUDGET_STRATEGY", "even")

    result = _invoke("plan", str(frames_dir))

    assert result.exit_code == 0, result.output
    payload = json.loads(result.output)
    assert payload["profile"] == "claude-opus"
    assert payload["strategy"] == "even"
    assert len(payload["frames"]) == 8


def test_profiles_command_lists_builtins() -> None:
    result = CliRunner().invoke(cli, ["profiles"])

    assert result.exit_code == 0
    lines = result.output.strip().splitlines()
    assert [line.split(":")[0] for line in lines] == [
        "claude-code",
        "claude-sonnet",
        "claude-opus",
        "claude-haiku",
    ]
    assert "6/10 frames" in lines[0]


def test_profiles_command_reports_malformed_profile_file(tmp_path: Path) -> None:
    profile_file = tmp_path / "profiles.json"
    profile_file.write_text("[1]", encoding="utf-8")

    result = CliRunner().invoke(cli, ["profiles", "--profile-file", str(profile_file)])

    assert result.exit_code == 1
    assert isinstance(result.exception, SystemExit)
    assert "Model profile payload must be a JSON object" in result.output


def test_diff_command_prints_percentage(tmp_path: Path) -> None:
    white = np.full((40, 40, 3), 255, dtype=np.uint8)
    half = white.copy()
    half[:20, :] = 0
    assert cv2.imwrite(str(tmp_path / "a.png"), white)
    assert cv2.imwrite(str(tmp_path / "b.png"), half)

    result = CliRunner().invoke(cli, ["diff", str(tmp_path / "a.png"), str(tmp_path / "b.png")])
    same = CliRunner().invoke(cli, ["diff", str(tmp_path / "a.png"), str(tmp_path / "a.png")])

    assert result.exit_code == 0
    assert result.output.strip() == "50.00"
    assert same.output.strip() == "0.00"


def test_json_formatter_includes_extra_fields() -> None:
    record = logging.LogRecord(
        name="frame_budget.budget",
        level=logging.WARNING,
        pathname=__file__,
        lineno=1,
        msg="budget.over_budget",
        args=(),
        exc_info=None,
    )
    record.utilization = 120.5

    payload = json.loads(JsonFormatter().format(record))

    assert payload["message"] == "budget.over_budget"
    assert payload["level"] == "WARNING"
    assert payload["utilization"] == 120.5


def test_configure_logging_selects_formatter() -> None:
    logger = configure_logging(LoggingConfig(level="debug", format="json"))

    assert logger.level == logging.DEBUG
    assert isinstance(logger.handlers[0].formatter, JsonFormatter)

    logger = configure_logging(LoggingConfig(level="warning", format="text"))

    assert logger.level == logging.WARNING
    assert len(logger.handlers) == 1
    assert not isinstance(logger.handlers[0].formatter, JsonFormatter)
