"""Tests for the CLI entry point and settings."""

import sys
from unittest.mock import patch

import pytest

from viralyze import cli
from viralyze.config import Settings
from viralyze.models.analysis import CompositeInput, SourceBlock, SourceTag
from viralyze.models.progress import ProgressCheckpoint
from viralyze.models.work_item import WorkItem
from viralyze.services.prompt import build_analysis_prompt, estimate_tokens


def _run_main(*argv: str) -> None:
    with patch.object(sys, "argv", ["viralyze", *argv]):
        cli.main()


class TestSettings:
    def test_run_config_overrides(self) -> None:
        s = Settings(cost_ceiling=5.0, batch_size=2)
        config = s.to_run_config(target_item_count=7, batch_size=None)
        assert config.cost_ceiling == 5.0
        assert config.batch_size == 2
        assert config.target_item_count == 7

    def test_api_key_fallback(self, monkeypatch) -> None:
        monkeypatch.delenv("VIRALYZE_ANTHROPIC_API_KEY", raising=False)
        monkeypatch.setenv("ANTHROPIC_API_KEY", "sk-test")
        assert Settings(_env_file=None).anthropic_api_key == "sk-test"

    def test_env_prefix(self, monkeypatch) -> None:
        monkeypatch.setenv("VIRALYZE_COST_CEILING", "2.5")
        assert Settings(_env_file=None).cost_ceiling == 2.5


class TestPrompt:
    def test_truncates_long_content(self) -> None:
        item = WorkItem(id="1", external_id="v1", title="Cat video")
        composite = CompositeInput(
            blocks=[SourceBlock(tag=SourceTag.TRANSCRIPT, text="meow " * 2000)],
            primary_source=SourceTag.TRANSCRIPT,
        )
        prompt = build_analysis_prompt(item, composite, max_input_chars=500)
        assert "[truncated]" in prompt
        assert "Cat video" in prompt
        assert "primary source: transcript" in prompt
        assert len(prompt) < 2000

    def test_estimate_tokens(self) -> None:
        assert estimate_tokens("x" * 400, 1024) == (101, 1024)


class TestCommands:
    def test_no_command_prints_help(self) -> None:
        with pytest.raises(SystemExit):
            _run_main()

    def test_estimate(self, tmp_path, capsys) -> None:
        backlog = tmp_path / "backlog.jsonl"
        backlog.write_text(
            "\n".join(
                WorkItem(id=str(i), external_id=f"v{i}").model_dump_json() for i in range(3)
            ),
            encoding="utf-8",
        )

        _run_main("--data-dir", str(tmp_path / "data"), "estimate", "--backlog", str(backlog))

        out = capsys.readouterr().out
        assert "미처리 항목: 3개" in out
        assert "예상: 3개" in out

    def test_status_without_checkpoint(self, tmp_path, capsys) -> None:
        _run_main("--data-dir", str(tmp_path), "status")
        assert "저장된 진행 상황이 없습니다" in capsys.readouterr().out

    def test_status_shows_latest_checkpoint(self, tmp_path, capsys) -> None:
        cp = ProgressCheckpoint(
            processed_count=4,
            success_count=3,
            skipped_count=1,
            last_processed_id="v3",
            source_breakdown={"transcript": 3},
        )
        (tmp_path / "checkpoints.jsonl").write_text(cp.model_dump_json() + "\n", encoding="utf-8")

        _run_main("--data-dir", str(tmp_path), "status")

        out = capsys.readouterr().out
        assert "v3" in out
        assert "transcript: 3" in out
