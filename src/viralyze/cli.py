"""viralyze command-line interface with subcommands.

Usage:
    viralyze run [--target 100] [--batch-size 1] [--cost-ceiling 10] [--backlog backlog.jsonl]
    viralyze estimate [--target 100]
    viralyze status
"""

import argparse
import asyncio
import logging
import signal
import sys
from pathlib import Path

from viralyze.config import settings
from viralyze.errors import HealthCheckFailedError, RunAbortedError, StoreError
from viralyze.models.progress import ProgressCheckpoint, RunReport
from viralyze.pipeline.orchestrator import Orchestrator
from viralyze.services.health import HealthGate
from viralyze.services.providers.claude import ClaudeInferenceClient
from viralyze.services.providers.media import ClaudeMediaAnalyzer
from viralyze.services.rate_budget import RateBudget, estimate_run
from viralyze.services.retry import RetryEngine
from viralyze.services.source_resolver import SourceResolver
from viralyze.services.stores.jsonl import JsonlStore, JsonlWorkSource

logger = logging.getLogger(__name__)


def _run_config(args: argparse.Namespace):
    return settings.to_run_config(
        target_item_count=getattr(args, "target", None),
        batch_size=getattr(args, "batch_size", None),
        cost_ceiling=getattr(args, "cost_ceiling", None),
        model_id=getattr(args, "model", None),
    )


def _stores(args: argparse.Namespace) -> tuple[JsonlStore, JsonlWorkSource]:
    data_dir = Path(args.data_dir) if args.data_dir else settings.data_dir
    backlog = Path(args.backlog) if getattr(args, "backlog", None) else settings.backlog_path
    store = JsonlStore(data_dir)
    return store, JsonlWorkSource(backlog, store)


def _print_checkpoint(cp: ProgressCheckpoint) -> None:
    print(f"  실행 ID:     {cp.run_id}")
    print(f"  처리:        {cp.processed_count} (성공 {cp.success_count}, 오류 {cp.error_count}, 건너뜀 {cp.skipped_count})")
    print(f"  마지막 항목: {cp.last_processed_id or '-'}")
    print(f"  예상 비용:   ${cp.estimated_cost:.4f}")
    print(f"  속도 제한 대기: {cp.rate_limit_pauses}회")
    if cp.unpersisted_results:
        print(f"  저장 대기 결과: {len(cp.unpersisted_results)}건 (다음 실행에서 재저장)")
    if cp.source_breakdown:
        print("  소스별:")
        for source, count in sorted(cp.source_breakdown.items(), key=lambda kv: -kv[1]):
            print(f"    {source}: {count}")


def _print_report(report: RunReport) -> None:
    print(f"\n상태: {report.state.value}" + (" (중단 요청)" if report.stopped_early else ""))
    print(f"  이번 실행 처리: {report.processed_this_run}")
    _print_checkpoint(report.checkpoint)
    if report.errors:
        print(f"  오류 {len(report.errors)}건:")
        for err in report.errors[:10]:
            print(f"    {err.external_id}: [{err.kind.value}] {err.message[:120]}")


# --- run subcommand ---


async def cmd_run(args: argparse.Namespace) -> None:
    """Enrich the backlog."""
    config = _run_config(args)
    store, work_source = _stores(args)
    settings.ensure_directories()

    client = ClaudeInferenceClient(api_key=settings.anthropic_api_key)
    if not client.is_available:
        print("오류: ANTHROPIC_API_KEY가 설정되지 않았습니다", file=sys.stderr)
        sys.exit(1)

    budget = RateBudget.from_config(config)
    media = ClaudeMediaAnalyzer(api_key=settings.anthropic_api_key, model=settings.vision_model_id)
    orchestrator = Orchestrator(
        work_source=work_source,
        resolver=SourceResolver(
            media,
            min_transcript_chars=config.min_transcript_chars,
            video_max_duration_seconds=config.video_max_duration_seconds,
        ),
        retry_engine=RetryEngine.from_config(client, budget, config),
        budget=budget,
        store=store,
        health_gate=HealthGate(client, config.model_id, config.health_check_timeout_seconds),
        config=config,
    )

    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, orchestrator.request_stop)
    except NotImplementedError:
        pass  # Windows

    estimate = estimate_run(config.target_item_count, config)
    print(f"분석 시작: 최대 {config.target_item_count}개 (예상 ${estimate.estimated_cost:.2f}, {estimate.duration_label})")
    print(f"  모델: {config.model_id}, 비용 상한: ${config.cost_ceiling:.2f}")

    try:
        report = await orchestrator.run()
    except HealthCheckFailedError as e:
        print(f"오류: 상태 확인 실패: {e.reason}", file=sys.stderr)
        sys.exit(1)
    except RunAbortedError as e:
        print(f"\n중단됨: {e.reason}", file=sys.stderr)
        if e.report is not None:
            _print_report(e.report)
        sys.exit(1)
    except StoreError as e:
        print(f"오류: {e}", file=sys.stderr)
        sys.exit(1)
    finally:
        try:
            loop.remove_signal_handler(signal.SIGINT)
        except NotImplementedError:
            pass

    _print_report(report)


# --- estimate subcommand ---


async def cmd_estimate(args: argparse.Namespace) -> None:
    """Estimate cost and duration for the remaining backlog."""
    config = _run_config(args)
    store, work_source = _stores(args)

    count = config.target_item_count
    try:
        remaining = await work_source.count_remaining(await work_source.list_already_analyzed_ids())
        count = min(count, remaining)
        print(f"미처리 항목: {remaining}개")
    except StoreError as e:
        logger.warning("Backlog unavailable, estimating for target only: %s", e)

    estimate = estimate_run(count, config)
    print(f"예상: {estimate.items}개, ${estimate.estimated_cost:.2f}, {estimate.duration_label}")
    if estimate.estimated_cost > config.cost_ceiling:
        print(f"  경고: 비용 상한 ${config.cost_ceiling:.2f}를 초과합니다")


# --- status subcommand ---


async def cmd_status(args: argparse.Namespace) -> None:
    """Show the latest checkpoint."""
    store, _ = _stores(args)
    cp = await store.load_latest_checkpoint()
    if cp is None:
        print("저장된 진행 상황이 없습니다")
        return
    print("최근 체크포인트:")
    _print_checkpoint(cp)
    errors = await store.load_errors()
    if errors:
        print(f"  오류 로그: {len(errors)}건 ({store.errors_path})")


def main() -> None:
    """CLI entry point."""
    parser = argparse.ArgumentParser(
        prog="viralyze",
        description="viralyze - 숏폼 영상 대량 AI 분석",
    )
    parser.add_argument("--data-dir", type=str, help="데이터 디렉토리 (기본: VIRALYZE_DATA_DIR)")
    parser.add_argument("-v", "--verbose", action="store_true", help="디버그 로그 출력")
    subparsers = parser.add_subparsers(dest="command", help="사용 가능한 명령")

    # --- run ---
    p_run = subparsers.add_parser("run", help="백로그 분석 실행")
    p_run.add_argument("-n", "--target", type=int, help="최대 처리 개수")
    p_run.add_argument("-b", "--batch-size", type=int, help="동시 처리 개수 (1-20)")
    p_run.add_argument("--cost-ceiling", type=float, help="비용 상한 (USD)")
    p_run.add_argument("--model", type=str, help="분석 모델 ID")
    p_run.add_argument("--backlog", type=str, help="백로그 JSONL 경로")

    # --- estimate ---
    p_estimate = subparsers.add_parser("estimate", help="비용/시간 예측")
    p_estimate.add_argument("-n", "--target", type=int, help="최대 처리 개수")
    p_estimate.add_argument("--backlog", type=str, help="백로그 JSONL 경로")

    # --- status ---
    subparsers.add_parser("status", help="최근 진행 상황")

    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        sys.exit(1)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    # Dispatch
    if args.command == "run":
        asyncio.run(cmd_run(args))
    elif args.command == "estimate":
        asyncio.run(cmd_estimate(args))
    elif args.command == "status":
        asyncio.run(cmd_status(args))


if __name__ == "__main__":
    main()
