"""Unit tests for workflow graph inspection."""

from __future__ import annotations

import json
from typing import Any

from stepflow import (
    ForEachStep,
    WhileStep,
    Workflow,
    create_condition_step,
    create_step,
    create_workflow,
    inspect_workflow,
    render_workflow_graph_json,
)
from stepflow.config import WorkflowSettings


def _identity(value: object, _ctx: object) -> object:
    return value


def _workflow(settings: WorkflowSettings) -> Workflow[Any, Any]:
    return (
        create_workflow(id="orders", settings=settings)
        .then(create_step(id="load", handler=_identity, description="Load orders"))
        .conditions(create_condition_step(id="route", resolve_branch=lambda _t: None))
        .then(
            ForEachStep(id="bulk", item_step=create_step(id="ship", handler=_identity)),
            WhileStep(
                id="retry",
                condition=create_step(id="should-retry", handler=lambda _s, _c: False),
                body=create_step(id="attempt", handler=_identity),
                max_iterations=3,
            ),
        )
        .parallel(
            id="notify",
            steps={
                "mail": create_step(id="mail", handler=_identity),
                "chat": create_step(id="chat", handler=_identity),
            },
        )
        .commit()
    )


def test_graph_lists_nodes_and_entry(settings: WorkflowSettings) -> None:
    graph = inspect_workflow(_workflow(settings))

    assert graph.workflow_id == "orders"
    assert graph.entry_id == "load"
    kinds = {node.id: node.kind for node in graph.nodes}
    assert kinds == {
        "load": "step",
        "route": "condition",
        "bulk": "for_each",
        "retry": "while",
        "notify": "parallel",
        "ship": "step",
        "should-retry": "step",
        "attempt": "step",
        "mail": "step",
        "chat": "step",
    }
    parents = {node.id: node.parent_id for node in graph.nodes if node.parent_id}
    assert parents == {
        "ship": "bulk",
        "should-retry": "retry",
        "attempt": "retry",
        "mail": "notify",
        "chat": "notify",
    }
    assert graph.nodes[0].description == "Load orders"


def test_graph_edges(settings: WorkflowSettings) -> None:
    graph = _workflow(settings).inspect()

    edges = {(edge.source, edge.target, edge.kind) for edge in graph.edges}
    assert ("load", "route", "sequence") in edges
    assert ("retry", "notify", "sequence") in edges
    assert ("route", "bulk", "branch") in edges
    assert ("route", "retry", "branch") in edges
    assert ("bulk", "ship", "nested") in edges
    assert ("notify", "chat", "nested") in edges
    assert len([e for e in graph.edges if e.kind == "sequence"]) == 4


def test_graph_renders_as_json(settings: WorkflowSettings) -> None:
    payload = json.loads(render_workflow_graph_json(_workflow(settings)))

    assert payload["workflow_id"] == "orders"
    assert payload["edges"][0] == {"from": "load", "to": "route", "kind": "sequence"}
    assert {node["id"] for node in payload["nodes"]} >= {"load", "ship"}


def test_single_step_graph_has_no_edges(settings: WorkflowSettings) -> None:
    workflow = create_workflow(id="one", settings=settings).then(
        create_step(id="only", handler=_identity)
    ).commit()

    graph = inspect_workflow(workflow)

    assert graph.edges == []
    assert [node.id for node in graph.nodes] == ["only"]
