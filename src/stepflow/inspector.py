"""Read-only, JSON-serializable view of a workflow's step graph."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Literal

from pydantic import BaseModel, Field

if TYPE_CHECKING:
    from stepflow.steps.step import Step
    from stepflow.workflow import Workflow

EdgeKind = Literal["sequence", "branch", "nested"]


class GraphNode(BaseModel):
    id: str
    kind: str
    description: str | None = None
    parent_id: str | None = None


class GraphEdge(BaseModel):
    source: str = Field(serialization_alias="from")
    target: str = Field(serialization_alias="to")
    kind: EdgeKind


class WorkflowGraph(BaseModel):
    workflow_id: str
    entry_id: str | None
    nodes: list[GraphNode] = Field(default_factory=list)
    edges: list[GraphEdge] = Field(default_factory=list)


def _walk_children(
    parent: Step[Any, Any], nodes: list[GraphNode], edges: list[GraphEdge], seen: set[str]
) -> None:
    for child in parent.children():
        edges.append(GraphEdge(source=parent.id, target=child.id, kind="nested"))
        if child.id in seen:
            continue
        seen.add(child.id)
        nodes.append(
            GraphNode(
                id=child.id,
                kind=child.kind,
                description=child.description,
                parent_id=parent.id,
            )
        )
        _walk_children(child, nodes, edges, seen)


def inspect_workflow(workflow: Workflow[Any, Any]) -> WorkflowGraph:
    """Describe step ids, sequence order, branch edges and nested steps."""

    nodes: list[GraphNode] = []
    edges: list[GraphEdge] = []
    seen: set[str] = set(workflow.sequence)

    for step in workflow.steps:
        nodes.append(GraphNode(id=step.id, kind=step.kind, description=step.description))

    sequence = workflow.sequence
    for current, following in zip(sequence, sequence[1:]):
        edges.append(GraphEdge(source=current, target=following, kind="sequence"))

    for condition_id, targets in workflow.branches.items():
        for target in targets:
            edges.append(GraphEdge(source=condition_id, target=target, kind="branch"))

    for step in workflow.steps:
        _walk_children(step, nodes, edges, seen)

    return WorkflowGraph(
        workflow_id=workflow.id,
        entry_id=workflow.entry_id if sequence else None,
        nodes=nodes,
        edges=edges,
    )


def render_workflow_graph_json(workflow: Workflow[Any, Any]) -> str:
    return inspect_workflow(workflow).model_dump_json(indent=2, by_alias=True)
