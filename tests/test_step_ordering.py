"""
Tests — step ordering engine.

Covers:
    - insert (append, positional, clamped)
    - move forward / backward / out of range / round trip
    - delete closes the gap
    - move up / down at the boundaries
    - full reorder and its validation
    - orders stay dense after mixed operation sequences
"""

import random

import pytest

from testmanager.core.exceptions import NotFoundError, ValidationError
from testmanager.models import db
from testmanager.models.project import Project
from testmanager.models.testing import Fixture, TestCase
from testmanager.services import step_ordering


def _parent(model=Fixture, name="Login"):
    project = Project.query.filter_by(name="Ordering").first()
    if project is None:
        project = Project(name="Ordering")
        db.session.add(project)
        db.session.flush()
    parent = model(project_id=project.id, name=name)
    db.session.add(parent)
    db.session.flush()
    return parent


def _with_steps(actions, model=Fixture):
    parent = _parent(model)
    steps = [step_ordering.insert_step(parent, {"action": a}) for a in actions]
    return parent, steps


def _actions(parent):
    return [s.action for s in parent.ordered_steps()]


class TestInsert:
    def test_append_assigns_next_order(self):
        parent, steps = _with_steps(["A", "B", "C"])
        assert [s.order for s in steps] == [0, 1, 2]

    def test_insert_in_the_middle_shifts_later_steps(self):
        parent, _ = _with_steps(["A", "B", "C"])
        step_ordering.insert_step(parent, {"action": "X"}, 1)
        assert _actions(parent) == ["A", "X", "B", "C"]
        assert step_ordering.is_dense(parent)

    def test_position_is_clamped(self):
        parent, _ = _with_steps(["A", "B"])
        step_ordering.insert_step(parent, {"action": "first"}, -5)
        step_ordering.insert_step(parent, {"action": "last"}, 99)
        assert _actions(parent) == ["first", "A", "B", "last"]

    def test_blank_action_is_rejected(self):
        parent, _ = _with_steps(["A"])
        with pytest.raises(ValidationError):
            step_ordering.insert_step(parent, {"action": "   "})
        assert step_ordering.order_values(parent) == [0]

    def test_works_for_test_cases(self):
        parent, _ = _with_steps(["A", "B"], model=TestCase)
        step_ordering.insert_step(parent, {"action": "C"}, 0)
        assert _actions(parent) == ["C", "A", "B"]


class TestMove:
    def test_move_last_to_front(self):
        parent, (a, b, c) = _with_steps(["A", "B", "C"])
        step_ordering.move_step(parent, c.id, 0)
        assert _actions(parent) == ["C", "A", "B"]
        assert step_ordering.order_values(parent) == [0, 1, 2]

    def test_move_first_to_back(self):
        parent, (a, b, c) = _with_steps(["A", "B", "C"])
        step_ordering.move_step(parent, a.id, 2)
        assert _actions(parent) == ["B", "C", "A"]

    def test_move_round_trip_restores_order(self):
        parent, steps = _with_steps(["A", "B", "C", "D", "E"])
        original = _actions(parent)
        step_ordering.move_step(parent, steps[1].id, 4)
        step_ordering.move_step(parent, steps[1].id, 1)
        assert _actions(parent) == original

    def test_out_of_range_leaves_state_untouched(self):
        parent, (a, b, c) = _with_steps(["A", "B", "C"])
        with pytest.raises(ValidationError):
            step_ordering.move_step(parent, a.id, 3)
        with pytest.raises(ValidationError):
            step_ordering.move_step(parent, a.id, -1)
        assert _actions(parent) == ["A", "B", "C"]

    def test_non_integer_position(self):
        parent, (a,) = _with_steps(["A"])
        with pytest.raises(ValidationError):
            step_ordering.move_step(parent, a.id, "first")

    def test_step_of_other_parent_is_not_found(self):
        parent, (a,) = _with_steps(["A"])
        other = _parent(name="Other")
        with pytest.raises(NotFoundError):
            step_ordering.move_step(other, a.id, 0)


class TestDelete:
    def test_delete_middle_closes_gap(self):
        parent, (a, b, c) = _with_steps(["A", "B", "C"])
        removed = step_ordering.delete_step(parent, b.id)
        assert removed == 1
        assert _actions(parent) == ["A", "C"]
        assert c.order == 1

    def test_delete_unknown_step(self):
        parent, _ = _with_steps(["A"])
        with pytest.raises(NotFoundError):
            step_ordering.delete_step(parent, 9999)


class TestAdjacent:
    def test_move_up_swaps(self):
        parent, (a, b, c) = _with_steps(["A", "B", "C"])
        step_ordering.move_step_up(c.id)
        assert _actions(parent) == ["A", "C", "B"]

    def test_move_up_first_is_noop(self):
        parent, (a, b) = _with_steps(["A", "B"])
        step_ordering.move_step_up(a.id)
        assert _actions(parent) == ["A", "B"]

    def test_move_down_last_is_noop(self):
        parent, (a, b) = _with_steps(["A", "B"])
        step_ordering.move_step_down(b.id)
        assert _actions(parent) == ["A", "B"]

    def test_move_down_swaps(self):
        parent, (a, b) = _with_steps(["A", "B"])
        step_ordering.move_step_down(a.id)
        assert _actions(parent) == ["B", "A"]


class TestReorder:
    def test_full_permutation(self):
        parent, (a, b, c) = _with_steps(["A", "B", "C"])
        step_ordering.reorder_steps(parent, [c.id, a.id, b.id])
        assert _actions(parent) == ["C", "A", "B"]
        assert step_ordering.is_dense(parent)

    def test_foreign_ids_rejected(self):
        parent, (a, b) = _with_steps(["A", "B"])
        _, (x,) = _with_steps(["X"])
        with pytest.raises(ValidationError) as exc:
            step_ordering.reorder_steps(parent, [b.id, x.id])
        assert exc.value.details["invalid_step_ids"] == [x.id]

    def test_partial_list_rejected(self):
        parent, (a, b, c) = _with_steps(["A", "B", "C"])
        with pytest.raises(ValidationError):
            step_ordering.reorder_steps(parent, [a.id, b.id])
        with pytest.raises(ValidationError):
            step_ordering.reorder_steps(parent, [a.id, a.id, b.id])
        assert _actions(parent) == ["A", "B", "C"]


class TestDuplicate:
    def test_copy_appended_with_suffix(self):
        parent, (a, b) = _with_steps(["A", "B"])
        copy = step_ordering.duplicate_step(a.id)
        assert copy.order == 2
        assert _actions(parent) == ["A", "B", "A (Copy)"]


def test_orders_stay_dense_after_random_operations():
    parent, _ = _with_steps([f"S{i}" for i in range(6)])
    rng = random.Random(7)
    for i in range(60):
        ids = [s.id for s in parent.ordered_steps()]
        op = rng.choice(["insert", "move", "delete", "up", "down"])
        if op == "insert" or len(ids) < 2:
            step_ordering.insert_step(parent, {"action": f"N{i}"}, rng.randint(0, len(ids)))
        elif op == "move":
            step_ordering.move_step(parent, rng.choice(ids), rng.randrange(len(ids)))
        elif op == "delete":
            step_ordering.delete_step(parent, rng.choice(ids))
        elif op == "up":
            step_ordering.move_step_up(rng.choice(ids))
        else:
            step_ordering.move_step_down(rng.choice(ids))
        assert step_ordering.is_dense(parent), f"gap after {op}"
