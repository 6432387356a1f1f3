"""
Prompt Runner - executes a single node.

Lifecycle of one run:

    idle → starting → awaiting_model ⇄ question_interrupt → completed
                                                           → failed
                                                           → cancelled

1. Pending local edits for the node are flushed (FlushError on failure)
2. The model is invoked; a QuestionInterrupt pauses the run until the user
   answers, and the answer is fed back on the next invocation. At most
   ``max_question_attempts`` invocations happen per run
3. For action nodes, the JSON response is validated, previewed, turned into
   nodes by ChildMaterializer and optionally auto-run as a cascade

Active runs live in an explicit ``node_id → RunHandle`` map owned by the
runner; a second run of the same node while one is in flight is rejected
with AlreadyRunning. Every terminal state publishes exactly one
RUN_COMPLETED / RUN_FAILED / RUN_CANCELLED event.
"""

import logging
import time
import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from promptcascade.actions.materializer import ChildMaterializer
from promptcascade.actions.validator import (
    ActionResponseValidator,
    extract_json_from_response,
)
from promptcascade.actions.variables import process_variable_assignments
from promptcascade.config import CascadeConfig
from promptcascade.errors import (
    ActionValidationError,
    AlreadyRunning,
    FlushError,
    NodeNotFound,
    PartialMaterializationError,
    ResponseParseError,
    TooManyQuestions,
    ValidationError,
)
from promptcascade.llm.backend import ExecutionResult, ModelBackend, ResumeOptions
from promptcascade.observability import set_trace_context
from promptcascade.runner.cascade import CancellationToken, CascadeExecutor, CascadeOptions
from promptcascade.runner.hitl import (
    PendingEdits,
    PreviewRequest,
    PreviewUI,
    QuestionRequest,
    QuestionUI,
)
from promptcascade.runtime.event_bus import EventBus
from promptcascade.runtime.tracing import (
    BestEffortCostRecorder,
    BestEffortTracer,
    CostRecord,
    CostRecorder,
    Tracer,
)
from promptcascade.schemas.node import (
    ActionStatus,
    LastActionResult,
    PostActionConfig,
    PromptNode,
)
from promptcascade.schemas.run import CancelReason, RunOutcome, RunState
from promptcascade.storage.tree_store import TreeStore

logger = logging.getLogger(__name__)


@dataclass
class RunHandle:
    """Bookkeeping for one in-flight run."""

    node_id: str
    run_id: str
    state: RunState = RunState.STARTING
    started_at: datetime = field(default_factory=lambda: datetime.now(UTC))


class PromptRunner:
    """
    Runs prompt nodes against a model backend.

    Example:
        runner = PromptRunner(store, LiteLLMBackend(), question_ui=ui, preview_ui=ui)
        outcome = await runner.run(node_id)
        if outcome.success:
            print(outcome.result.response)
    """

    def __init__(
        self,
        store: TreeStore,
        backend: ModelBackend,
        config: CascadeConfig | None = None,
        question_ui: QuestionUI | None = None,
        preview_ui: PreviewUI | None = None,
        pending_edits: PendingEdits | None = None,
        tracer: Tracer | None = None,
        cost_recorder: CostRecorder | None = None,
        event_bus: EventBus | None = None,
        materializer: ChildMaterializer | None = None,
        validator: ActionResponseValidator | None = None,
        user_id: str | None = None,
    ):
        self.store = store
        self.backend = backend
        self.config = config or CascadeConfig()
        self.question_ui = question_ui
        self.preview_ui = preview_ui
        self.pending_edits = pending_edits
        self.tracer = BestEffortTracer(tracer)
        self.cost_recorder = BestEffortCostRecorder(cost_recorder)
        self.event_bus = event_bus
        self.validator = validator or ActionResponseValidator()
        self.materializer = materializer or ChildMaterializer(
            store, config=self.config, validator=self.validator, event_bus=event_bus
        )
        self.user_id = user_id
        self._active: dict[str, RunHandle] = {}
        self._cascade_executor: CascadeExecutor | None = None

    # ------------------------------------------------------------------
    # Run state
    # ------------------------------------------------------------------

    def state_of(self, node_id: str) -> RunState:
        handle = self._active.get(node_id)
        return handle.state if handle else RunState.IDLE

    def is_running(self, node_id: str) -> bool:
        return node_id in self._active

    @property
    def active_runs(self) -> dict[str, RunHandle]:
        return dict(self._active)

    @property
    def cascade_executor(self) -> CascadeExecutor:
        if self._cascade_executor is None:
            self._cascade_executor = CascadeExecutor(
                self,
                self.store,
                config=self.config,
                event_bus=self.event_bus,
                tracer=self.tracer,
            )
        return self._cascade_executor

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def run(
        self,
        node_id: str,
        variables: dict[str, str] | None = None,
        depth: int = 0,
        trace_id: str | None = None,
        skip_preview: bool = False,
        cancel_token: CancellationToken | None = None,
        cascade_id: str | None = None,
        max_depth: int | None = None,
    ) -> RunOutcome:
        """
        Run one node to a terminal state.

        Args:
            node_id: Node to run
            variables: Extra template variables (merged over the node's own)
            depth: Cascade depth of this node; auto-run children start at depth + 1
            trace_id: Existing trace to attach the span to (cascade runs)
            skip_preview: Do not ask for preview confirmation of actions
            cancel_token: Cooperative cancellation shared with a cascade
            cascade_id: Cascade this run belongs to, for notifications
            max_depth: Depth limit for auto-run children; defaults to config.max_depth

        Returns:
            RunOutcome with status COMPLETED, FAILED or CANCELLED

        Raises:
            AlreadyRunning: The node already has a run in flight
        """
        if node_id in self._active:
            logger.info(f"Node {node_id} is already running; ignoring run request")
            if self.event_bus is not None:
                await self.event_bus.emit_run_already_active(node_id)
            raise AlreadyRunning(node_id)

        handle = RunHandle(node_id=node_id, run_id=uuid.uuid4().hex)
        self._active[node_id] = handle
        set_trace_context(run_id=handle.run_id, node_id=node_id)
        started = time.monotonic()

        try:
            if self.event_bus is not None:
                await self.event_bus.emit_run_started(node_id, handle.run_id, cascade_id)
            outcome = await self._run(
                handle,
                variables or {},
                depth,
                trace_id,
                skip_preview,
                cancel_token,
                self.config.max_depth if max_depth is None else max_depth,
            )
        except Exception as e:
            logger.exception(f"Run of node {node_id} failed")
            outcome = RunOutcome.failed(node_id, e, run_id=handle.run_id)
        finally:
            self._active.pop(node_id, None)

        outcome.latency_ms = int((time.monotonic() - started) * 1000)
        handle.state = outcome.status
        await self._notify(outcome, cascade_id)
        return outcome

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _finish(self, handle: RunHandle, status: RunState, **fields: Any) -> RunOutcome:
        handle.state = status
        return RunOutcome(node_id=handle.node_id, status=status, run_id=handle.run_id, **fields)

    async def _run(
        self,
        handle: RunHandle,
        variables: dict[str, str],
        depth: int,
        trace_id: str | None,
        skip_preview: bool,
        cancel_token: CancellationToken | None,
        max_depth: int,
    ) -> RunOutcome:
        node_id = handle.node_id

        if self.pending_edits is not None:
            try:
                await self.pending_edits.flush(node_id)
            except Exception as e:
                logger.error(f"Could not save pending edits for node {node_id}: {e}")
                error = FlushError(f"Could not save pending edits: {e}")
                error.__cause__ = e
                return self._finish(handle, RunState.FAILED, error=error)

        if cancel_token is not None and cancel_token.cancelled:
            return self._finish(
                handle, RunState.CANCELLED, reason=CancelReason.CASCADE_CANCELLED
            )

        node = await self.store.get_node(node_id)
        if node is None or node.is_deleted:
            return self._finish(handle, RunState.FAILED, error=NodeNotFound(node_id))

        owns_trace = trace_id is None
        if owns_trace:
            trace_id = await self.tracer.start_trace(node_id, "single")
        if trace_id:
            set_trace_context(trace_id=trace_id)
        span_id = await self.tracer.create_span(trace_id, node_id)

        accumulated = {**node.variables, **variables}
        model_started = time.monotonic()
        try:
            result, questions = await self._invoke_with_questions(handle, node, accumulated)
        except Exception as e:
            logger.error(f"Model call for node {node_id} failed: {e}")
            await self.tracer.fail_span(span_id, type(e).__name__, str(e))
            if owns_trace:
                await self.tracer.complete_trace(trace_id, "failed", str(e))
            return self._finish(handle, RunState.FAILED, error=e, variables=accumulated)

        if result is None:
            await self.tracer.fail_span(span_id, "UserCancelled", "Question dismissed")
            if owns_trace:
                await self.tracer.complete_trace(trace_id, "cancelled")
            return self._finish(
                handle,
                RunState.CANCELLED,
                reason=CancelReason.QUESTION_CANCELLED,
                questions_asked=questions,
                variables=accumulated,
            )

        latency_ms = int((time.monotonic() - model_started) * 1000)
        await self.tracer.complete_span(
            span_id,
            output=result.response,
            latency_ms=latency_ms,
            usage=result.usage,
            response_id=result.response_id,
        )
        await self.cost_recorder.record_cost(
            CostRecord(
                node_id=node_id,
                model=result.model or node.model_settings.model,
                usage=result.usage,
                response_id=result.response_id,
                finish_reason=result.finish_reason,
                latency_ms=latency_ms,
                node_name=node.name,
            )
        )
        logger.info(
            f"Model call for node {node_id} completed",
            extra={
                "event": "model_completed",
                "latency_ms": latency_ms,
                "tokens_used": result.usage.total_tokens,
                "model": result.model,
            },
        )

        try:
            node = await self.store.update_node(node_id, {"output_response": result.response})
        except Exception as e:
            logger.error(f"Could not save output of node {node_id}: {e}")
            if owns_trace:
                await self.tracer.complete_trace(trace_id, "failed", str(e))
            return self._finish(
                handle,
                RunState.FAILED,
                error=e,
                result=result,
                questions_asked=questions,
                variables=accumulated,
            )
        outcome = self._finish(
            handle,
            RunState.COMPLETED,
            result=result,
            questions_asked=questions,
            variables=accumulated,
        )

        config = node.post_action_config
        if node.is_action_node and config is not None:
            try:
                await self._run_post_action(
                    handle,
                    node,
                    config,
                    result,
                    outcome,
                    depth,
                    trace_id,
                    skip_preview,
                    cancel_token,
                    max_depth,
                )
            except Exception as e:
                logger.exception(f"Post action of node {node_id} failed")
                outcome.status = handle.state = RunState.FAILED
                outcome.error = e

        if owns_trace:
            await self.tracer.complete_trace(trace_id, outcome.status.value, outcome.error_message)
        return outcome

    async def _invoke_with_questions(
        self, handle: RunHandle, node: PromptNode, accumulated: dict[str, str]
    ) -> tuple[ExecutionResult | None, int]:
        """
        Invoke the model, looping through question interrupts.

        Returns (result, questions_asked); result is None when the user
        dismissed a question.

        Raises:
            TooManyQuestions: The last allowed invocation still asked a question
        """
        max_attempts = self.config.max_question_attempts
        resume: ResumeOptions | None = None
        questions = 0
        # Response id of an interrupt the backend still holds state for
        unanswered: str | None = None

        try:
            for attempt in range(1, max_attempts + 1):
                handle.state = RunState.AWAITING_MODEL
                unanswered = None
                result = await self.backend.invoke(node, dict(accumulated), resume)
                if result.interrupt is None:
                    return result, questions
                unanswered = result.interrupt.response_id or result.response_id
                if attempt == max_attempts:
                    break
                if self.question_ui is None:
                    raise ValidationError("Model asked a question but no question handler is set")

                interrupt = result.interrupt
                handle.state = RunState.QUESTION_INTERRUPT
                questions += 1
                if self.event_bus is not None:
                    await self.event_bus.emit_question_asked(
                        node.id, handle.run_id, interrupt.question, interrupt.variable_name
                    )
                answer = await self.question_ui.ask(
                    QuestionRequest(
                        node_id=node.id,
                        node_name=node.name,
                        question=interrupt.question,
                        variable_name=interrupt.variable_name,
                        description=interrupt.description,
                        attempt=attempt,
                        max_attempts=max_attempts,
                    )
                )
                if answer is None:
                    return None, questions

                accumulated[interrupt.variable_name] = answer
                resume = ResumeOptions(
                    response_id=interrupt.response_id or result.response_id,
                    answer=answer,
                    variable_name=interrupt.variable_name,
                    call_id=interrupt.call_id,
                )

            raise TooManyQuestions(max_attempts)
        finally:
            if unanswered is not None:
                self.backend.discard(unanswered)

    async def _run_post_action(
        self,
        handle: RunHandle,
        node: PromptNode,
        config: PostActionConfig,
        result: ExecutionResult,
        outcome: RunOutcome,
        depth: int,
        trace_id: str | None,
        skip_preview: bool,
        cancel_token: CancellationToken | None,
        max_depth: int,
    ) -> None:

        def fail(error: BaseException) -> None:
            outcome.status = handle.state = RunState.FAILED
            outcome.error = error

        try:
            response = extract_json_from_response(result.response)
        except ResponseParseError as e:
            await self._record_action(node, ActionStatus.FAILED, error=str(e))
            fail(e)
            return

        validation = self.validator.validate(response, config.children)
        if not validation.valid:
            await self._record_action(
                node,
                ActionStatus.FAILED,
                error=validation.error,
                available_arrays=validation.available_arrays,
            )
            fail(ActionValidationError(validation))
            return

        if not (skip_preview or config.skip_preview):
            if self.preview_ui is None:
                error = ValidationError(
                    "Action needs preview confirmation but no preview handler is set"
                )
                await self._record_action(node, ActionStatus.FAILED, error=str(error))
                fail(error)
                return
            confirmed = await self.preview_ui.confirm(
                PreviewRequest(
                    node_id=node.id,
                    node_name=node.name,
                    action=node.post_action,
                    items=validation.items,
                    target_parent_id=config.children.target_parent_id,
                    response=response,
                )
            )
            if not confirmed:
                await self._record_action(
                    node, ActionStatus.CANCELLED, message="Cancelled by user"
                )
                outcome.status = handle.state = RunState.CANCELLED
                outcome.reason = CancelReason.PREVIEW_REJECTED
                return

        try:
            action_result = await self.materializer.materialize(
                response,
                node,
                config.children,
                owner_id=self.user_id,
                validation=validation,
            )
        except ValidationError as e:
            await self._record_action(node, ActionStatus.FAILED, error=str(e))
            fail(e)
            return

        outcome.action = action_result
        if action_result.error is not None:
            await self._record_action(
                node,
                ActionStatus.FAILED,
                created_count=action_result.created_count,
                target_parent_id=action_result.target_parent_id,
                message=action_result.message,
                error=str(action_result.error),
            )
            fail(PartialMaterializationError(action_result.created_count, action_result.error))
            return

        await self._record_action(
            node,
            ActionStatus.SUCCESS,
            created_count=action_result.created_count,
            target_parent_id=action_result.target_parent_id,
            message=action_result.message,
        )

        if config.variable_assignments.enabled:
            try:
                assigned = await process_variable_assignments(
                    self.store, node, response, config.variable_assignments, self.event_bus
                )
                for problem in assigned.errors:
                    logger.warning(f"Variable assignment skipped ({problem.name}): {problem.error}")
            except Exception:
                logger.warning(f"Variable assignments for node {node.id} failed", exc_info=True)

        if config.auto_run_children and action_result.created_node_ids:
            outcome.cascade = await self.cascade_executor.execute_nodes(
                action_result.created_node_ids,
                options=CascadeOptions(
                    max_depth=max_depth, skip_previews=skip_preview
                ),
                cancel_token=cancel_token,
                start_depth=depth + 1,
                trace_id=trace_id,
            )

    async def _record_action(self, node: PromptNode, status: ActionStatus, **fields: Any):
        record = LastActionResult(status=status, action=node.post_action, **fields)
        await self.store.update_node(node.id, {"last_action_result": record})

    async def _notify(self, outcome: RunOutcome, cascade_id: str | None) -> None:
        if self.event_bus is None:
            return

        if outcome.status == RunState.COMPLETED:
            action = outcome.action
            data: dict[str, Any] = {
                "questions_asked": outcome.questions_asked,
                "latency_ms": outcome.latency_ms,
            }
            if action is not None:
                data["created_count"] = action.created_count
                data["created_node_ids"] = action.created_node_ids
            if outcome.cascade is not None:
                data["cascade"] = outcome.cascade.summary()
            await self.event_bus.emit_run_completed(
                outcome.node_id,
                outcome.run_id,
                action.message if action is not None else "Prompt completed",
                data=data,
                cascade_id=cascade_id,
            )
        elif outcome.status == RunState.CANCELLED:
            await self.event_bus.emit_run_cancelled(
                outcome.node_id, outcome.run_id, outcome.reason or "cancelled", cascade_id
            )
        else:
            data = {"error_type": type(outcome.error).__name__ if outcome.error else None}
            if isinstance(outcome.error, ActionValidationError):
                data["available_arrays"] = outcome.error.available_arrays
            if isinstance(outcome.error, PartialMaterializationError):
                data["created_count"] = outcome.error.created_count
            await self.event_bus.emit_run_failed(
                outcome.node_id,
                outcome.run_id,
                outcome.error_message or "Run failed",
                data=data,
                cascade_id=cascade_id,
            )
