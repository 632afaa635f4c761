"""Tests for tasks.TaskService and the derived completion state."""

import pytest

from database import StaleWrite
from errors import Forbidden, InvalidInput, NotFound
from permissions import is_assignable
from schemas import Assignment, Task
from tasks import is_completed


@pytest.fixture
def ids(users):
    return {name: user.id for name, user in users.items()}


@pytest.fixture
def shipped(task_service, eng, ids, due):
    """High priority task in Eng assigned to bob and carol."""
    return task_service.create_task(
        ids["alice"], eng.id, "Ship v1", "Release", "High", due, [ids["bob"], ids["carol"]]
    )


class TestIsCompleted:

    def _task(self, *statuses):
        return Task(
            creator_id="c", team_id="t", title="x", due_date="2024-03-01T00:00:00Z",
            assigned_members=[Assignment(user_id=str(i), status=s) for i, s in enumerate(statuses)],
        )

    def test_no_assignees_is_never_completed(self):
        assert not is_completed(self._task())

    def test_all_completed(self):
        assert is_completed(self._task("Completed", "Completed"))

    def test_partial(self):
        assert not is_completed(self._task("Completed", "In Progress"))


class TestCreateTask:

    def test_assignees_start_not_started(self, shipped, ids):
        assert [(a.user_id, a.status) for a in shipped.assigned_members] == [
            (ids["bob"], "Not Started"),
            (ids["carol"], "Not Started"),
        ]
        assert shipped.creator_id == ids["alice"]
        assert shipped.priority == "High"

    def test_assignees_were_accepted_members(self, shipped, store):
        team = store.teams.find(shipped.team_id)
        assert all(is_assignable(team, a.user_id) for a in shipped.assigned_members)

    def test_admin_member_may_create(self, task_service, eng, ids, due):
        task = task_service.create_task(ids["carol"], eng.id, "Docs", "", "Low", due, [ids["bob"]])
        assert task.creator_id == ids["carol"]

    def test_plain_member_forbidden(self, task_service, eng, ids, due):
        with pytest.raises(Forbidden):
            task_service.create_task(ids["bob"], eng.id, "Docs", "", "Low", due, [])

    def test_missing_team_looks_forbidden(self, task_service, ids, due):
        with pytest.raises(Forbidden):
            task_service.create_task(ids["alice"], "0" * 24, "Docs", "", "Low", due, [])

    @pytest.mark.parametrize("assignee", ["dave", "erin"])
    def test_pending_or_outside_assignee_rejected(self, task_service, eng, ids, due, assignee):
        with pytest.raises(InvalidInput):
            task_service.create_task(ids["alice"], eng.id, "Docs", "", "Low", due, [ids[assignee]])

    def test_creator_without_membership_entry_not_assignable(self, task_service, team_service, store, ids, due):
        team = team_service.create_team(ids["erin"], "Solo")
        team.members = []
        store.teams.update(team)
        with pytest.raises(InvalidInput):
            task_service.create_task(ids["erin"], team.id, "Docs", "", "Low", due, [ids["erin"]])

    def test_duplicate_assignees_collapse(self, task_service, eng, ids, due):
        task = task_service.create_task(ids["alice"], eng.id, "Docs", "", "Low", due, [ids["bob"], ids["bob"]])
        assert [a.user_id for a in task.assigned_members] == [ids["bob"]]

    def test_blank_title_and_bad_priority(self, task_service, eng, ids, due):
        with pytest.raises(InvalidInput):
            task_service.create_task(ids["alice"], eng.id, " ", "", "Low", due, [])
        with pytest.raises(InvalidInput):
            task_service.create_task(ids["alice"], eng.id, "Docs", "", "Urgent", due, [])


class TestGetTasksForUser:

    def test_creator_and_assignee_views_newest_first(self, task_service, eng, ids, due, shipped):
        later = task_service.create_task(ids["carol"], eng.id, "Later", "", "Low", due, [ids["bob"]])
        assert [t.id for t in task_service.get_tasks_for_user(ids["bob"])] == [later.id, shipped.id]
        assert [t.id for t in task_service.get_tasks_for_user(ids["alice"])] == [shipped.id]
        assert [t.id for t in task_service.get_tasks_for_user(ids["carol"])] == [later.id, shipped.id]
        assert task_service.get_tasks_for_user(ids["erin"]) == []


class TestUpdateTask:

    def test_fields_overwritten(self, task_service, ids, due, shipped):
        task = task_service.update_task(ids["carol"], shipped.id, "Ship v1.1", "", "Low", due)
        assert (task.title, task.description, task.priority) == ("Ship v1.1", "", "Low")
        assert [a.user_id for a in task.assigned_members] == [ids["bob"], ids["carol"]]

    def test_untouched_assignees_keep_progress(self, task_service, ids, due, shipped):
        task_service.update_task_status(ids["bob"], shipped.id, "Completed")
        task = task_service.update_task(ids["alice"], shipped.id, "Ship v1", "Release", "High", due)
        assert task.assigned_members[0].status == "Completed"

    def test_reassignment_resets_progress(self, task_service, ids, due, shipped):
        task_service.update_task_status(ids["bob"], shipped.id, "Completed")
        task = task_service.update_task(
            ids["alice"], shipped.id, "Ship v1", "Release", "High", due, [ids["bob"], ids["alice"]]
        )
        assert [(a.user_id, a.status) for a in task.assigned_members] == [
            (ids["bob"], "Not Started"),
            (ids["alice"], "Not Started"),
        ]

    def test_reassignment_validates_membership(self, task_service, ids, due, shipped):
        with pytest.raises(InvalidInput):
            task_service.update_task(ids["alice"], shipped.id, "Ship v1", "", "High", due, [ids["erin"]])

    def test_member_forbidden(self, task_service, ids, due, shipped):
        with pytest.raises(Forbidden):
            task_service.update_task(ids["bob"], shipped.id, "Mine now", "", "High", due)

    def test_missing_task(self, task_service, ids, due):
        with pytest.raises(NotFound):
            task_service.update_task(ids["alice"], "0" * 24, "x", "", "Low", due)


class TestUpdateTaskStatus:

    def test_only_callers_entry_changes(self, task_service, ids, shipped, clock):
        task = task_service.update_task_status(ids["bob"], shipped.id, "In Progress")
        statuses = {a.user_id: a.status for a in task.assigned_members}
        assert statuses == {ids["bob"]: "In Progress", ids["carol"]: "Not Started"}
        assert task.assigned_members[0].updated_at == clock.now

    def test_any_transition_allowed(self, task_service, ids, shipped):
        task_service.update_task_status(ids["bob"], shipped.id, "Completed")
        task = task_service.update_task_status(ids["bob"], shipped.id, "Not Started")
        assert task.assigned_members[0].status == "Not Started"

    def test_admin_who_is_not_assignee_forbidden(self, task_service, ids, shipped):
        with pytest.raises(Forbidden):
            task_service.update_task_status(ids["alice"], shipped.id, "Completed")

    def test_invalid_status(self, task_service, ids, shipped):
        with pytest.raises(InvalidInput):
            task_service.update_task_status(ids["bob"], shipped.id, "Done")

    def test_missing_task(self, task_service, ids):
        with pytest.raises(NotFound):
            task_service.update_task_status(ids["bob"], "not-an-id", "Completed")

    def test_concurrent_updates_both_survive(self, task_service, store, ids, shipped, monkeypatch):
        real_update = store.tasks.update
        raced = []

        def racing_update(task):
            if not raced:
                raced.append(task.id)
                # carol's write lands between bob's read and bob's write
                task_service.update_task_status(ids["carol"], shipped.id, "Completed")
            return real_update(task)

        monkeypatch.setattr(store.tasks, "update", racing_update)
        task_service.update_task_status(ids["bob"], shipped.id, "In Progress")

        statuses = {a.user_id: a.status for a in store.tasks.find(shipped.id).assigned_members}
        assert statuses == {ids["bob"]: "In Progress", ids["carol"]: "Completed"}

    def test_stale_copy_is_rejected(self, store, ids, shipped, task_service):
        stale = store.tasks.find(shipped.id)
        task_service.update_task_status(ids["bob"], shipped.id, "Completed")
        stale.assigned_members[1].status = "Completed"
        with pytest.raises(StaleWrite):
            store.tasks.update(stale)


class TestDeleteTask:

    def test_admin_deletes(self, task_service, store, ids, shipped):
        task_service.delete_task(ids["carol"], shipped.id)
        assert store.tasks.find(shipped.id) is None

    def test_member_forbidden(self, task_service, ids, shipped):
        with pytest.raises(Forbidden):
            task_service.delete_task(ids["bob"], shipped.id)

    def test_missing(self, task_service, ids):
        with pytest.raises(NotFound):
            task_service.delete_task(ids["alice"], "0" * 24)
