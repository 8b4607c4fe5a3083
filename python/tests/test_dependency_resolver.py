"""Tests for minipm.scheduling.dependency_resolver."""

import logging
import random
from datetime import date, datetime, timedelta, timezone

import pytest

from minipm.exceptions_unified import (
    DuplicateTitleError,
    InfeasibleDependenciesError,
    InvalidTaskError,
    SchedulingError,
    SchedulingErrorCode,
    UnknownDependencyError,
)
from minipm.scheduling import (
    ScheduleResult,
    TaskInput,
    build_graph,
    order_graph,
    schedule_tasks,
    validate_tasks,
)


def _titles(result):
    return list(result.order)


def T(title, deps=(), hours=0, due=None):
    return TaskInput(title=title, estimated_hours=hours, due_date=due, dependencies=tuple(deps))


# ========================================================================
# ORDERING
# ========================================================================


class TestPriorityOrdering:
    """Choice among tasks that are ready at the same time."""

    def test_fan_out_ties_follow_input_order(self):
        result = schedule_tasks([T("A"), T("B", ["A"]), T("C", ["A"])])
        assert _titles(result) == ["A", "B", "C"]

    def test_fan_out_ties_reversed_input(self):
        result = schedule_tasks([T("A"), T("C", ["A"]), T("B", ["A"])])
        assert _titles(result) == ["A", "C", "B"]

    def test_earliest_due_date_first(self):
        tasks = [
            T("Jan3-task", due=date(2024, 1, 3)),
            T("Jan1-task", due=date(2024, 1, 1)),
            T("Jan2-task", due=date(2024, 1, 2)),
        ]
        assert _titles(schedule_tasks(tasks)) == ["Jan1-task", "Jan2-task", "Jan3-task"]

    def test_missing_due_date_sorts_last(self):
        tasks = [T("someday"), T("dated", due=date(2999, 12, 31))]
        assert _titles(schedule_tasks(tasks)) == ["dated", "someday"]

    def test_hours_break_due_date_tie(self):
        tasks = [
            T("long", hours=5, due=date(2024, 3, 1)),
            T("short", hours=2, due=date(2024, 3, 1)),
        ]
        assert _titles(schedule_tasks(tasks)) == ["short", "long"]

    def test_hours_break_tie_without_due_dates(self):
        tasks = [T("long", hours=3), T("short", hours=1)]
        assert _titles(schedule_tasks(tasks)) == ["short", "long"]

    def test_due_date_beats_hours(self):
        tasks = [
            T("cheap-late", hours=0, due=date(2024, 5, 2)),
            T("costly-early", hours=40, due=date(2024, 5, 1)),
        ]
        assert _titles(schedule_tasks(tasks)) == ["costly-early", "cheap-late"]

    def test_full_tie_keeps_input_order(self):
        tasks = [T("zeta"), T("alpha"), T("mid")]
        assert _titles(schedule_tasks(tasks)) == ["zeta", "alpha", "mid"]

    def test_ready_set_reevaluated_after_each_pick(self):
        # B becomes ready after A and is more urgent than C
        tasks = [
            T("A", due=date(2024, 1, 1)),
            T("C", due=date(2024, 1, 5)),
            T("B", ["A"], due=date(2024, 1, 2)),
        ]
        assert _titles(schedule_tasks(tasks)) == ["A", "B", "C"]

    def test_dependency_overrides_priority(self):
        tasks = [
            T("A", due=date(2024, 1, 10)),
            T("B", ["A"], due=date(2024, 1, 1)),
            T("C", due=date(2024, 1, 5)),
        ]
        assert _titles(schedule_tasks(tasks)) == ["C", "A", "B"]

    def test_date_and_datetime_compare(self):
        tasks = [
            T("plain-date", due=date(2024, 1, 2)),
            T("evening-before", due=datetime(2024, 1, 1, 23, 0)),
        ]
        assert _titles(schedule_tasks(tasks)) == ["evening-before", "plain-date"]

    def test_aware_datetimes_compare_in_utc(self):
        plus5 = timezone(timedelta(hours=5))
        tasks = [
            T("utc-noon", due=datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)),
            T("plus5-early", due=datetime(2024, 1, 1, 10, 0, tzinfo=plus5)),  # 05:00 UTC
        ]
        assert _titles(schedule_tasks(tasks)) == ["plus5-early", "utc-noon"]


class TestGraphProperties:

    def test_empty_input_gives_empty_order(self):
        result = schedule_tasks([])
        assert isinstance(result, ScheduleResult)
        assert result.order == ()
        assert len(result) == 0

    def test_diamond(self):
        tasks = [T("A"), T("B", ["A"]), T("C", ["A"]), T("D", ["B", "C"])]
        assert _titles(schedule_tasks(tasks)) == ["A", "B", "C", "D"]

    def test_chain_listed_backwards(self):
        tasks = [T("C", ["B"]), T("B", ["A"]), T("A")]
        assert _titles(schedule_tasks(tasks)) == ["A", "B", "C"]

    def test_dependencies_are_case_insensitive(self):
        result = schedule_tasks([T("Design"), T("Build", ["  DESIGN "])])
        assert _titles(result) == ["Design", "Build"]

    def test_output_keeps_caller_spelling(self):
        result = schedule_tasks([T("Write Docs"), T("ship", ["write docs"])])
        assert result.order == ("Write Docs", "ship")

    def test_random_dags_are_valid_and_complete(self):
        rng = random.Random(1234)
        for _ in range(25):
            n = rng.randint(1, 30)
            tasks = []
            for i in range(n):
                deps = [f"t{j}" for j in range(i) if rng.random() < 0.2]
                due = date(2024, 1, 1) + timedelta(days=rng.randint(0, 5)) if rng.random() < 0.7 else None
                tasks.append(T(f"t{i}", deps, hours=rng.randint(0, 3), due=due))
            rng.shuffle(tasks)

            result = schedule_tasks(tasks)
            order = list(result.order)
            assert sorted(order) == sorted(t.title for t in tasks)
            position = {title: i for i, title in enumerate(order)}
            for task in tasks:
                for dep in task.dependencies:
                    assert position[dep] < position[task.title]

    def test_repeated_runs_are_identical(self):
        tasks = [
            T("a", hours=1), T("b", hours=1), T("c", ["a"]), T("d", ["a", "b"]),
            T("e"), T("f", ["e"], due=date(2024, 2, 1)), T("g", due=date(2024, 2, 1)),
        ]
        first = schedule_tasks(tasks)
        for _ in range(5):
            assert schedule_tasks(tasks) == first

    def test_accepts_mappings(self):
        result = schedule_tasks([
            {"title": "A", "dueDate": "2024-01-02"},
            {"title": "B", "dueDate": "2024-01-01T08:00:00Z", "estimatedHours": 3},
            {"title": "C", "dependencies": ["a"], "estimated_hours": 1},
        ])
        assert _titles(result) == ["B", "A", "C"]


class TestDuplicateEdges:
    """A dependency listed twice counts twice but schedules the same."""

    def test_in_degree_counts_every_edge(self):
        graph = build_graph([T("A"), T("B", ["A", "a"])])
        assert graph.in_degree["b"] == 2
        assert graph.adjacency["a"] == ["b", "b"]
        assert graph.edge_count == 2

    def test_order_unchanged_by_duplicates(self):
        plain = schedule_tasks([T("A"), T("C"), T("B", ["A"])])
        doubled = schedule_tasks([T("A"), T("C"), T("B", ["A", "A"])])
        assert plain == doubled
        assert _titles(doubled) == ["A", "C", "B"]

    def test_duplicate_edges_do_not_leave_task_blocked(self):
        result = schedule_tasks([T("A"), T("B", ["A", "A", "A"]), T("C", ["B", "B"])])
        assert _titles(result) == ["A", "B", "C"]


# ========================================================================
# FAILURES
# ========================================================================


class TestCycleDetection:

    def test_two_cycle(self):
        with pytest.raises(InfeasibleDependenciesError) as exc_info:
            schedule_tasks([T("A", ["B"]), T("B", ["A"])])
        assert exc_info.value.unresolved == ["A", "B"]
        assert exc_info.value.code == SchedulingErrorCode.INFEASIBLE_DEPENDENCIES

    def test_self_dependency(self):
        with pytest.raises(InfeasibleDependenciesError) as exc_info:
            schedule_tasks([T("A", ["A"])])
        assert exc_info.value.unresolved == ["A"]

    def test_cycle_blocks_downstream_tasks(self):
        tasks = [T("ok"), T("X", ["Y"]), T("Y", ["X"]), T("after", ["X"])]
        with pytest.raises(InfeasibleDependenciesError) as exc_info:
            schedule_tasks(tasks)
        assert exc_info.value.unresolved == ["X", "Y", "after"]

    def test_three_cycle_after_valid_prefix(self):
        tasks = [T("root"), T("a", ["root", "c"]), T("b", ["a"]), T("c", ["b"])]
        with pytest.raises(InfeasibleDependenciesError, match="Cyclic or unresolved"):
            schedule_tasks(tasks)

    def test_order_graph_raises_directly(self):
        graph = build_graph([T("A", ["B"]), T("B", ["A"])])
        with pytest.raises(InfeasibleDependenciesError):
            order_graph(graph)

    def test_failure_is_logged(self, caplog):
        with caplog.at_level(logging.WARNING, logger="minipm.scheduling.dependency_resolver"):
            with pytest.raises(InfeasibleDependenciesError):
                schedule_tasks([T("A", ["B"]), T("B", ["A"])])
        assert "InfeasibleDependencies" in caplog.text


class TestValidation:

    def test_unknown_dependency_names_task_and_dependency(self):
        with pytest.raises(UnknownDependencyError) as exc_info:
            schedule_tasks([T("A", ["Ghost"])])
        err = exc_info.value
        assert err.task == "A"
        assert err.dependency == "Ghost"
        assert "A" in err.message and "Ghost" in err.message
        assert err.code == SchedulingErrorCode.UNKNOWN_DEPENDENCY

    def test_duplicate_title_case_insensitive(self):
        with pytest.raises(DuplicateTitleError) as exc_info:
            schedule_tasks([T("Write docs"), T("write DOCS")])
        assert exc_info.value.titles == ["Write docs", "write DOCS"]

    def test_duplicate_title_ignoring_surrounding_whitespace(self):
        with pytest.raises(DuplicateTitleError):
            schedule_tasks([T("Deploy"), T("  deploy ")])

    def test_duplicate_reported_before_unknown_dependency(self):
        tasks = [T("A", ["Ghost"]), T("a")]
        with pytest.raises(DuplicateTitleError):
            validate_tasks(tasks)
        with pytest.raises(DuplicateTitleError):
            schedule_tasks(tasks)

    def test_validate_accepts_good_input(self):
        assert validate_tasks([T("A"), T("B", ["A"])]) is None

    def test_validate_accepts_empty_input(self):
        assert validate_tasks([]) is None

    @pytest.mark.parametrize("title", ["", "   "])
    def test_blank_title_rejected(self, title):
        with pytest.raises(InvalidTaskError, match="non-empty"):
            schedule_tasks([T(title)])

    def test_negative_hours_rejected(self):
        with pytest.raises(InvalidTaskError, match="negative"):
            schedule_tasks([T("A", hours=-1)])

    @pytest.mark.parametrize("hours", [True, 1.5, "3"])
    def test_non_integer_hours_rejected(self, hours):
        with pytest.raises(InvalidTaskError, match="integer"):
            schedule_tasks([T("A", hours=hours)])

    def test_bad_due_date_string_rejected(self):
        with pytest.raises(InvalidTaskError, match="due date"):
            schedule_tasks([{"title": "A", "dueDate": "next tuesday"}])

    def test_errors_share_scheduling_base(self):
        for exc in (
            DuplicateTitleError(["a", "A"]),
            UnknownDependencyError("A", "Ghost"),
            InfeasibleDependenciesError(["A"]),
            InvalidTaskError("", "title must be a non-empty string"),
        ):
            assert isinstance(exc, SchedulingError)
            assert exc.http_status == 400
            assert exc.is_recoverable is False

    def test_api_response_carries_code_and_context(self):
        body = UnknownDependencyError("A", "Ghost").to_api_response()
        assert body == {
            "error": "Unknown dependency 'Ghost' for task 'A'",
            "code": "UnknownDependency",
            "details": {"task": "A", "dependency": "Ghost"},
        }


class TestScheduleResult:

    def test_position_is_case_insensitive(self):
        result = schedule_tasks([T("Alpha"), T("Beta", ["alpha"])])
        assert result.position("BETA") == 1
        with pytest.raises(KeyError):
            result.position("gamma")

    def test_to_dict(self):
        result = schedule_tasks([T("A"), T("B", ["A"])])
        assert result.to_dict() == {"recommendedOrder": ["A", "B"]}

    def test_task_input_dependencies_become_tuple(self):
        task = TaskInput(title="A", dependencies=["x", "y"])
        assert task.dependencies == ("x", "y")
        assert task.key == "a"

    def test_single_string_dependency_is_one_title(self):
        task = TaskInput(title="B", dependencies="Design")
        assert task.dependencies == ("Design",)
        result = schedule_tasks([TaskInput("Design"), task])
        assert result.order == ("Design", "B")
