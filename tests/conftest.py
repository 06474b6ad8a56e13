"""Shared fixtures: in-memory database, scripted generator, identities."""

from __future__ import annotations

import sqlite3
from typing import Generator, Optional

import pytest

from depthwise.db.connection import get_connection
from depthwise.db.migrations import init_db
from depthwise.engine.exploration import ExplorationPolicy
from depthwise.generator.client import (
    Branch,
    GenerationRequest,
    GenerationResult,
    GenerationUsage,
)
from depthwise.identity import Identity


class FakeGenerator:
    """Deterministic generator; records every request it receives.

    Set ``fail_with`` to an exception instance to make the next calls raise.
    """

    def __init__(self, branch_count: int = 3, model: str = "fake-model") -> None:
        self.branch_count = branch_count
        self.model = model
        self.requests: list[GenerationRequest] = []
        self.fail_with: Optional[Exception] = None

    def generate(self, request: GenerationRequest) -> GenerationResult:
        self.requests.append(request)
        if self.fail_with is not None:
            raise self.fail_with
        label = request.focus_term or request.title or request.root_question
        return GenerationResult(
            answer=f"Answer about {label}.",
            branches=[
                Branch(title=f"{label} / part {i + 1}", summary=f"Preview {i + 1}", follow_up_type="how")
                for i in range(self.branch_count)
            ],
            key_terms=[f"{label} term"],
            usage=GenerationUsage(
                model=self.model, input_tokens=100, output_tokens=50, estimated_cost=0.001
            ),
        )


@pytest.fixture()
def conn() -> Generator[sqlite3.Connection, None, None]:
    """In-memory connection with the schema initialised."""
    connection = get_connection(db_path=":memory:")  # type: ignore[arg-type]
    init_db(connection)
    yield connection
    connection.close()


@pytest.fixture()
def generator() -> FakeGenerator:
    return FakeGenerator()


@pytest.fixture()
def policy() -> ExplorationPolicy:
    return ExplorationPolicy(anonymous_max_depth=2, quota_window_days=30, layout_profile="desktop")


@pytest.fixture()
def alice() -> Identity:
    return Identity(user_id="user-alice", email="alice@example.com")


@pytest.fixture()
def bob() -> Identity:
    return Identity(user_id="user-bob", email="bob@example.com")
