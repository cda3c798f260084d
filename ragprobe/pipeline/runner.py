from __future__ import annotations
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional, Tuple
import logging

from ragprobe import __version__
from ragprobe.llm.chat_service import ChatCompletionService
from ragprobe.llm.types import CallOptions

from .core.config import RunConfig
from .core.context import CancelToken, RunContext
from .core.artifacts import ResultStore
from .core.errors import ConfigurationError, RunCancelled
from .core.progress import ProgressReporter
from .core.retry import ModelInvoker, Retryer
from .core.models import Task
from .stages import (
    CategoryPlan,
    ClassifyStage,
    FixedListTaskSource,
    KnowledgeTaskSource,
    TaskSource,
    load_test_cases,
    plan_fixed_list,
    plan_knowledge,
    total_tasks,
)

logger = logging.getLogger(__name__)


class RunEngine:
    """
    Drives one run: categories x loops x items, strictly sequential.

    Per task: advance counters, emit `update`, poll cancellation, invoke the
    model, emit `token_usage`, rewrite results.json, emit `state_update`.
    Per-task model failures are recorded and the run moves on; configuration
    errors and cancellation end the run with a single `error` event.
    """

    def __init__(self, config: RunConfig, invoker: ModelInvoker, *, classify_stage: Optional[ClassifyStage] = None):
        self.cfg = config
        self.invoker = invoker
        self.classify_stage = classify_stage or ClassifyStage()

    @classmethod
    def from_config(cls, config: RunConfig, service: ChatCompletionService) -> "RunEngine":
        retryer = Retryer(
            max_retries=config.retries,
            delay_sec=config.retry_delay_ms / 1000,
            timeout_sec=config.timeout_ms / 1000,
        )
        return cls(config, ModelInvoker(service, retryer))

    # ----- lifecycle ----------------------------------------------------------
    def prepare(self, cancel: Optional[CancelToken] = None, now: Optional[datetime] = None) -> Tuple[RunContext, ResultStore]:
        store = ResultStore.create(self.cfg.results_root, now)
        ctx = RunContext(run_id=store.run_id, base_dir=store.base_dir, cancel=cancel or CancelToken())
        return ctx, store

    def run(self, progress: ProgressReporter, cancel: Optional[CancelToken] = None) -> RunContext:
        ctx, store = self.prepare(cancel)
        self.execute(ctx, store, progress)
        return ctx

    def execute(self, ctx: RunContext, store: ResultStore, progress: ProgressReporter) -> str:
        """Runs to a terminal event and returns the final status: done | error | cancelled."""
        on_refused = getattr(progress, "on_refused", None)
        if on_refused is not None:
            on_refused(lambda: ctx.cancel.cancel("progress consumer disconnected"))

        status = "running"
        try:
            progress.log(f"Result directory created: {ctx.run_id}")
            source, plans = self._plan(ctx, progress)
            ctx.total_tasks = total_tasks(plans)
            progress.log(f"Planned {ctx.total_tasks} tasks across {sum(1 for p in plans if p.task_count)} categories")
            self._save_manifest(store, ctx, status, plans)

            for plan in plans:
                self._check_cancel(ctx)
                self._run_category(ctx, store, progress, source, plan)

            status = "done"
            self._save_manifest(store, ctx, status)
            progress.done(
                f"All tasks finished ({len(ctx.results)} results, {ctx.skipped_tasks} skipped).",
                totalTasks=ctx.total_tasks,
                completedTasks=ctx.completed_tasks,
                skippedTasks=ctx.skipped_tasks,
                tokenUsage=ctx.token_usage,
            )
        except ConfigurationError as e:
            status = "error"
            logger.error("Run %s aborted: %s", ctx.run_id, e)
            self._save_manifest(store, ctx, status)
            progress.error(str(e))
        except RunCancelled as e:
            status = "cancelled"
            logger.info("Run %s cancelled (%s) after %d tasks", ctx.run_id, ctx.cancel.reason, len(ctx.results))
            self._save_manifest(store, ctx, status)
            progress.error(str(e), cancelled=True)
        except Exception as e:
            status = "error"
            logger.exception("Run %s failed", ctx.run_id)
            self._save_manifest(store, ctx, status)
            progress.error(str(e) or type(e).__name__)
        finally:
            progress.close()
        return status

    # ----- planning -----------------------------------------------------------
    def _plan(self, ctx: RunContext, progress: ProgressReporter) -> Tuple[TaskSource, List[CategoryPlan]]:
        if self.cfg.is_fixed_list:
            cases = list(self.cfg.test_cases)
            if not cases and self.cfg.test_cases_path:
                cases = load_test_cases(self.cfg.test_cases_path)
            progress.log(f"Loaded {len(cases)} stored test cases")
            return FixedListTaskSource(), plan_fixed_list(cases, self.cfg)

        kb = self.classify_stage.run(
            ctx, progress, knowledge_dir=self.cfg.knowledge_dir, suffixes=self.cfg.suffixes
        )
        return KnowledgeTaskSource(), plan_knowledge(kb, self.cfg)

    # ----- execution ----------------------------------------------------------
    @staticmethod
    def _check_cancel(ctx: RunContext):
        if ctx.cancel.cancelled:
            raise RunCancelled()

    def _update(self, ctx: RunContext, progress: ProgressReporter, message: str):
        progress.update(message, progress=ctx.progress, current=ctx.completed_tasks, total=ctx.total_tasks)

    def _run_category(self, ctx: RunContext, store: ResultStore, progress: ProgressReporter, source: TaskSource, plan: CategoryPlan):
        if not plan.task_count:
            return
        reason = plan.skip_reason
        if reason:
            # keep the percentage honest: skipped tasks still count as completed
            ctx.advance(plan.task_count)
            ctx.skipped_tasks += plan.task_count
            ctx.add_stats(plan.category.value, skipped=plan.task_count, reason=reason)
            self._update(ctx, progress, f"Skipped {plan.category.value} ({plan.task_count} tasks): {reason}")
            return

        done_before = len(ctx.results)
        for loop in range(1, plan.repeats + 1):
            log_path = store.ensure_loop_log(plan.category, loop)
            for index, item in enumerate(plan.items, start=1):
                if index > 1 and source.paced:
                    if ctx.cancel.wait(self.cfg.pacing_ms / 1000):
                        raise RunCancelled()
                task = source.build_task(plan, loop, index, item)
                self._run_task(ctx, store, progress, source, plan, task, log_path)
        ctx.add_stats(plan.category.value, results=len(ctx.results) - done_before, loops=plan.repeats)

    def _call_options(self, plan: CategoryPlan, log_path: Path) -> CallOptions:
        gen = self.cfg.generation
        return CallOptions(
            system_prompt=plan.system_prompt,
            temperature=gen.temperature,
            top_p=gen.top_p,
            presence_penalty=gen.presence_penalty,
            frequency_penalty=gen.frequency_penalty,
            max_output_tokens=gen.max_output_tokens,
            stream=gen.stream,
            timeout_ms=self.cfg.timeout_ms,
            log_path=log_path,
        )

    def _run_task(
        self,
        ctx: RunContext,
        store: ResultStore,
        progress: ProgressReporter,
        source: TaskSource,
        plan: CategoryPlan,
        task: Task,
        log_path: Path,
    ):
        entry_id = len(ctx.results) + 1
        ctx.advance()
        self._update(ctx, progress, f"Running task #{entry_id} ({source.describe(task)})")
        self._check_cancel(ctx)

        store.append_log(log_path, f"\n=== Task #{entry_id} [{task.category.value}] {task.source_id} ===\n{task.user_message}\n\n")
        call = self.invoker.invoke(
            self.cfg.model,
            [{"role": "user", "content": task.user_message}],
            self._call_options(plan, log_path),
            cancel=ctx.cancel,
        )
        ctx.invocations += 1

        if call.token_usage:
            ctx.token_usage += call.token_usage.total_tokens
        progress.token_usage(ctx.token_usage)

        entry = source.to_entry(entry_id, task, call)
        if not call.success:
            progress.log(f"Warning: task #{entry_id} failed after {call.attempts} attempts: {call.error}")

        ctx.results.append(entry)
        store.write_results(ctx.results)
        store.append_log(log_path, f"--- Final answer ---\n{entry.answer}\n\n")

        progress.state_update(entry.id, entry.question, entry.answer)

    # ----- manifest -----------------------------------------------------------
    def _save_manifest(self, store: ResultStore, ctx: RunContext, status: str, plans: Optional[List[CategoryPlan]] = None):
        manifest: Dict[str, object] = {
            "generator": {"name": "ragprobe", "version": __version__},
            "model": self.cfg.model,
            "source_mode": self.cfg.source_mode,
            "status": status,
            "total_tasks": ctx.total_tasks,
            "completed_tasks": ctx.completed_tasks,
            "skipped_tasks": ctx.skipped_tasks,
            "results": len(ctx.results),
            "invocations": ctx.invocations,
            "token_usage": ctx.token_usage,
            "stats": [{"name": s.name, **s.details} for s in ctx.stats],
        }
        if plans is not None:
            manifest["plan"] = [
                {"category": p.category.value, "items": len(p.items), "repeats": p.repeats, "tasks": p.task_count}
                for p in plans
            ]
        else:
            previous = store.load_manifest() or {}
            if "plan" in previous:
                manifest["plan"] = previous["plan"]
        try:
            store.save_manifest(manifest)
        except OSError as e:
            logger.warning("Could not write run manifest for %s: %s", ctx.run_id, e)
