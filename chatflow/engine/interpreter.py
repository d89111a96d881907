"""
Flow Interpreter.

Runs one conversational turn over a FlowGraph:

    Idle -> Active(node) -> Suspended(node) -> ... -> Completed
                                     \\-> Failed (StructuralError, set by the dispatcher)

Per turn:
1. Idle session (no pointer): start at the entry node.
2. Suspended session: bind the inbound text to the suspended node's capture
   variable, then leave that node (follow its edge, or evaluate it if it is
   a condition / option menu).
3. Hop loop until a suspension point or terminal:
   - start:    emit its explicit message (if any), follow first edge
   - message:  render; suspend if waitForResponse, else follow first edge
   - input:    render prompt (+ numbered options) and suspend
   - condition: with a prompt, ask and suspend on arrival; otherwise evaluate
   - end:      render closing message, complete
   - executor kinds: run through the registry, merge context, take the edge
     whose branch tag equals the returned branch
4. More than `max_hops` traversals in one turn is a StructuralError.

A node with no outgoing edges ends the conversation. An executor node that
has outgoing edges but none for the returned branch is a StructuralError.
"""

import logging
from dataclasses import dataclass, field
from typing import Any

from chatflow.executors.base import (
    AWAITING_INPUT_KEY,
    ExecutionResult,
    ExecutorRegistry,
    config_flag,
    config_value,
)
from chatflow.executors.condition import LAST_USER_MESSAGE, match_option, option_label
from chatflow.flow.models import Edge, FlowGraph, Node, NodeKind, StructuralError
from chatflow.flow.resolver import find_entry_node, resolve
from chatflow.state.context import ExecutionContext
from chatflow.state.schemas import ConversationSession, SessionStatus

logger = logging.getLogger(__name__)

CAPTURE_VARIABLE_KEYS = ("variableName", "variable", "storeAs", "variable_name")
WAIT_FOR_RESPONSE_KEYS = ("waitForResponse", "wait_for_response", "waitForReply")
PROMPT_KEYS = ("question", "prompt")
INVALID_OPTION_MESSAGE = "Por favor, elige una de las opciones disponibles:"

EXECUTOR_KINDS = frozenset({
    NodeKind.TEXT_GENERATION,
    NodeKind.AVAILABILITY_CHECK,
    NodeKind.BOOK_APPOINTMENT,
    NodeKind.RESCHEDULE_APPOINTMENT,
    NodeKind.CANCEL_APPOINTMENT,
    NodeKind.LEAD_QUALIFICATION,
    NodeKind.CATALOG_LISTING,
})


@dataclass
class TurnResult:
    """Outcome of one turn: outbound messages plus the session to persist."""

    messages: list[str]
    session: ConversationSession
    visited: list[str] = field(default_factory=list)

    @property
    def text(self) -> str:
        return "\n\n".join(self.messages)

    @property
    def status(self) -> SessionStatus:
        return self.session.status


@dataclass
class _TurnState:
    context: ExecutionContext
    messages: list[str] = field(default_factory=list)
    visited: list[str] = field(default_factory=list)
    effects: dict[str, ExecutionResult] = field(default_factory=dict)
    status: SessionStatus = SessionStatus.ACTIVE
    pointer: str | None = None
    waiting_for: str | None = None

    def emit(self, text: str | None) -> None:
        if text and text.strip():
            self.messages.append(text)


def capture_variable(node: Node, context: ExecutionContext) -> str:
    """Variable a suspended node stores the user's answer in."""
    explicit = config_value(node.config, *CAPTURE_VARIABLE_KEYS)
    if explicit:
        return str(explicit)
    if node.kind == NodeKind.CONDITION and node.config.get("variable"):
        return str(node.config["variable"])
    awaiting = context.get(AWAITING_INPUT_KEY)
    return str(awaiting) if awaiting else LAST_USER_MESSAGE


def _prompt_text(node: Node) -> str | None:
    prompt = config_value(node.config, *PROMPT_KEYS)
    if isinstance(prompt, str) and prompt.strip():
        return prompt
    return resolve(node, allow_heuristic=False).text


def _options(node: Node) -> list[Any]:
    options = node.config.get("options") or node.config.get("buttons") or node.config.get("items")
    return list(options) if isinstance(options, list) else []


def _options_text(options: list[Any]) -> str:
    return "\n".join(f"{index}. {option_label(option)}" for index, option in enumerate(options, start=1))


class FlowInterpreter:
    """
    Stateless interpreter; all conversation state lives in the session.

    Example:
        >>> interpreter = FlowInterpreter(registry, max_hops=20)
        >>> result = await interpreter.run_turn(graph, session, "Hola")
        >>> result.text, result.status
    """

    def __init__(self, registry: ExecutorRegistry, max_hops: int = 20):
        self.registry = registry
        self.max_hops = max_hops

    async def run_turn(
        self, graph: FlowGraph, session: ConversationSession, inbound_text: str
    ) -> TurnResult:
        """
        Execute one turn for a session.

        Args:
            graph: Tenant flow graph
            session: Session as loaded (status active/suspended)
            inbound_text: Text of the inbound user message

        Returns:
            TurnResult with outbound messages and the updated session

        Raises:
            StructuralError: Malformed graph on the traversed path. The partial
                context reached before the failure is attached as `.context`.
        """
        state = _TurnState(context=session.to_context().new_turn())

        try:
            if session.status == SessionStatus.SUSPENDED and session.current_node_id:
                next_id = await self._resume(graph, session, state, inbound_text)
            else:
                state.context = state.context.merge({LAST_USER_MESSAGE: inbound_text})
                next_id = session.current_node_id
                if next_id is None:
                    entry = find_entry_node(graph)
                    if entry is None:
                        raise StructuralError("Flow has no entry node", {"flow_id": graph.flow_id})
                    next_id = entry.id

            await self._run_loop(graph, state, next_id)

        except StructuralError as e:
            e.diagnostic.setdefault("flow_id", graph.flow_id)
            e.diagnostic.setdefault("visited", list(state.visited))
            e.context = state.context
            raise

        updated = session.model_copy(
            update={
                "current_node_id": state.pointer,
                "status": state.status,
                "variables": dict(state.context.variables),
                "waiting_for": state.waiting_for,
            }
        )
        return TurnResult(messages=state.messages, session=updated, visited=state.visited)

    # ------------------------------------------------------------------
    # Resume
    # ------------------------------------------------------------------

    async def _resume(
        self,
        graph: FlowGraph,
        session: ConversationSession,
        state: _TurnState,
        inbound_text: str,
    ) -> str | None:
        node = graph.get_node(session.current_node_id)
        variable = session.waiting_for or capture_variable(node, state.context)
        state.context = state.context.at_node(node.id).merge({
            variable: inbound_text,
            LAST_USER_MESSAGE: inbound_text,
            AWAITING_INPUT_KEY: None,
        })
        state.visited.append(node.id)

        logger.debug(
            f"Resuming at node {node.id}, bound '{variable}'",
            extra={"session_id": session.session_id, "node_id": node.id},
        )

        if node.kind == NodeKind.CONDITION:
            return await self._evaluate_condition(graph, node, state)

        options = _options(node)
        if node.kind == NodeKind.INPUT and options:
            selected = match_option(inbound_text, options)
            edge = graph.select_edge(node.id, selected) if selected is not None else None
            if selected is not None:
                state.context = state.context.merge({f"{variable}_option": selected})
            edge = edge or graph.default_edge(node.id)
            if edge is None and selected is None and graph.outgoing(node.id):
                # Unrecognized answer on an option menu: ask again
                state.emit(f"{INVALID_OPTION_MESSAGE}\n{_options_text(options)}")
                self._suspend(state, node, variable)
                return None
            edge = edge or graph.first_edge(node.id)
            return edge.target if edge else None

        edge = graph.first_edge(node.id)
        return edge.target if edge else None

    # ------------------------------------------------------------------
    # Hop loop
    # ------------------------------------------------------------------

    async def _run_loop(self, graph: FlowGraph, state: _TurnState, node_id: str | None) -> None:
        if state.status == SessionStatus.SUSPENDED:
            return

        current = node_id
        while current is not None:
            if state.context.hop_count >= self.max_hops:
                raise StructuralError(
                    f"Hop budget of {self.max_hops} exceeded in one turn",
                    {"max_hops": self.max_hops, "node_id": current},
                )

            node = graph.get_node(current)
            state.context = state.context.at_node(node.id)
            state.visited.append(node.id)

            logger.debug(
                f"Visiting node {node.id} ({node.kind.value})",
                extra={
                    "session_id": state.context.session_id,
                    "node_id": node.id,
                    "node_kind": node.kind.value,
                },
            )

            current = await self._visit(graph, node, state)

            if state.status == SessionStatus.SUSPENDED:
                return

        if state.status == SessionStatus.ACTIVE:
            self._complete(state)

    async def _visit(self, graph: FlowGraph, node: Node, state: _TurnState) -> str | None:
        """Process one node; returns the next node id or None to stop."""
        context = state.context

        if node.kind == NodeKind.START:
            state.emit(context.render(resolve(node, allow_heuristic=False).text))
            return self._follow(graph.first_edge(node.id))

        if node.kind == NodeKind.MESSAGE:
            state.emit(context.render(resolve(node).text))
            if config_flag(node.config, *WAIT_FOR_RESPONSE_KEYS):
                self._suspend(state, node, capture_variable(node, context))
                return None
            return self._follow(graph.first_edge(node.id))

        if node.kind == NodeKind.INPUT:
            self._ask(node, state)
            return None

        if node.kind == NodeKind.CONDITION:
            if _prompt_text(node):
                self._ask(node, state)
                return None
            return await self._evaluate_condition(graph, node, state)

        if node.kind == NodeKind.END:
            state.emit(context.render(resolve(node, allow_heuristic=False).text))
            self._complete(state)
            return None

        if node.kind in EXECUTOR_KINDS:
            return await self._execute(graph, node, state)

        raise StructuralError(
            f"Unknown node kind '{node.raw_type}' reached",
            {"node_id": node.id, "node_type": node.raw_type},
        )

    def _follow(self, edge: Edge | None) -> str | None:
        return edge.target if edge else None

    def _ask(self, node: Node, state: _TurnState) -> None:
        prompt = state.context.render(_prompt_text(node))
        options = _options(node)
        if options and node.config.get("showOptions", True):
            prompt = f"{prompt}\n{_options_text(options)}" if prompt else _options_text(options)
        state.emit(prompt)
        self._suspend(state, node, capture_variable(node, state.context))

    def _suspend(self, state: _TurnState, node: Node, variable: str) -> None:
        state.status = SessionStatus.SUSPENDED
        state.pointer = node.id
        state.waiting_for = variable

    def _complete(self, state: _TurnState) -> None:
        state.status = SessionStatus.COMPLETED
        state.pointer = None
        state.waiting_for = None

    async def _evaluate_condition(
        self, graph: FlowGraph, node: Node, state: _TurnState
    ) -> str | None:
        config = state.context.render_config(node.config)
        if not config.get("variable") and not config.get("operator"):
            config["variable"] = capture_variable(node, state.context)

        result = await self.registry.execute(
            NodeKind.CONDITION, state.context.tenant_id, state.context, config
        )
        state.context = result.outputs.context
        state.emit(result.outputs.message)

        edge = graph.select_edge(node.id, result.next_branch) or graph.default_edge(node.id)
        if edge is None:
            if not graph.outgoing(node.id):
                return None
            raise StructuralError(
                f"No edge for branch '{result.next_branch}' on condition node {node.id}",
                {
                    "node_id": node.id,
                    "branch": result.next_branch,
                    "available_branches": [e.branch_tag for e in graph.outgoing(node.id)],
                },
            )
        return edge.target

    async def _execute(self, graph: FlowGraph, node: Node, state: _TurnState) -> str | None:
        registered = self.registry.get(node.kind)
        cached = state.effects.get(node.id)

        if cached is not None:
            # Side effects run at most once per turn; a revisit only re-routes
            logger.info(
                f"Reusing result of side-effecting node {node.id} within the same turn",
                extra={"session_id": state.context.session_id, "node_id": node.id},
            )
            result = cached
        else:
            config = state.context.render_config(node.config)
            result = await self.registry.execute(
                node.kind, state.context.tenant_id, state.context, config
            )
            state.context = result.outputs.context
            state.emit(result.outputs.message)
            if registered is not None and registered.side_effecting:
                state.effects[node.id] = result

        outgoing = graph.outgoing(node.id)
        if not outgoing:
            return None

        edge = graph.select_edge(node.id, result.next_branch)
        if edge is None:
            raise StructuralError(
                f"No edge for branch '{result.next_branch}' on node {node.id}",
                {
                    "node_id": node.id,
                    "node_kind": node.kind.value,
                    "branch": result.next_branch,
                    "available_branches": [e.branch_tag for e in outgoing],
                },
            )
        return edge.target
