from __future__ import annotations

import unittest

from streamdesk import database as db
from streamdesk.altrequests import AltRequestWorkflow
from streamdesk.entities import ACCEPTED, PENDING, REJECTED, EmployeeAlt, ExternalAlt

from scheduling_fixtures import WEEK_START, build_schedule, make_sync, seed_week


class AltRequestWorkflowTests(unittest.IsolatedAsyncioTestCase):
    def setUp(self) -> None:
        self.schedule = build_schedule()
        self.crew = self.schedule.crew
        self.snapshot_id = seed_week(self.schedule, locked=True)["id"]

    def tearDown(self) -> None:
        self.schedule.engine.dispose()

    async def workflow_for(self, employee):
        sync, backend, notices = make_sync(self.schedule, employee)
        await sync.load_week(WEEK_START)
        return AltRequestWorkflow(sync), backend, notices

    async def open_request(self, note="Doctor's appointment"):
        host, _, _ = await self.workflow_for(self.crew.host)
        await host.load_request(self.snapshot_id)
        return host, await host.create_request(self.snapshot_id, note)

    async def test_request_is_offered_only_after_the_latest_one_is_known(self) -> None:
        host, backend, _ = await self.workflow_for(self.crew.host)
        snapshot = host.sync.snapshot(self.snapshot_id)
        self.assertFalse(host.can_create_request(snapshot))

        self.assertIsNone(await host.load_request(self.snapshot_id))
        self.assertTrue(host.can_create_request(snapshot))

        request = await host.create_request(self.snapshot_id, "  Doctor's appointment ")
        self.assertEqual(request.status, PENDING)
        self.assertEqual(request.alt_note, "Doctor's appointment")
        self.assertFalse(host.can_create_request(host.sync.snapshot(self.snapshot_id)))
        self.assertIsNone(await host.create_request(self.snapshot_id, "again"))
        self.assertEqual(backend.mutations(), ["create_alt_request"])
        self.assertTrue(host.can_view_request(snapshot))
        self.assertFalse(host.can_act_on_request(snapshot))

    async def test_only_the_assignee_may_ask(self) -> None:
        other, backend, notices = await self.workflow_for(self.crew.other_host)
        await other.load_request(self.snapshot_id)
        self.assertFalse(other.can_create_request(other.sync.snapshot(self.snapshot_id)))
        self.assertIsNone(await other.create_request(self.snapshot_id, "please"))
        self.assertEqual(backend.mutations(), [])
        self.assertEqual(notices[-1][0], "error")

    async def test_unlocked_week_has_no_requests(self) -> None:
        leader_sync, _, _ = make_sync(self.schedule, self.crew.leader)
        await leader_sync.load_week(WEEK_START)
        await leader_sync.lock_week(False)

        host, _, _ = await self.workflow_for(self.crew.host)
        await host.load_request(self.snapshot_id)
        self.assertFalse(host.can_create_request(host.sync.snapshot(self.snapshot_id)))

    async def test_accept_sets_the_replacement(self) -> None:
        host, request = await self.open_request("Sick")
        leader, _, _ = await self.workflow_for(self.crew.leader)
        await leader.load_request(self.snapshot_id)
        snapshot = leader.sync.snapshot(self.snapshot_id)
        self.assertTrue(leader.can_act_on_request(snapshot))
        self.assertTrue(leader.can_view_request(snapshot))

        decided = await leader.accept(request.id, self.crew.other_host.id)

        self.assertEqual(decided.status, ACCEPTED)
        self.assertEqual(decided.alt_assignee.id, self.crew.other_host.id)
        covered = leader.sync.snapshot(self.snapshot_id)
        self.assertEqual(covered.alt, EmployeeAlt(self.crew.other_host.id))
        self.assertEqual(covered.alt_note, "Sick")
        self.assertFalse(leader.can_act_on_request(covered))
        self.assertIsNone(await leader.reject(request.id))

        await host.sync.refresh()
        await host.load_request(self.snapshot_id)
        self.assertFalse(host.can_create_request(host.sync.snapshot(self.snapshot_id)))

    async def test_accept_needs_a_different_replacement(self) -> None:
        _, request = await self.open_request()
        leader, backend, _ = await self.workflow_for(self.crew.leader)
        await leader.load_request(self.snapshot_id)
        self.assertIsNone(await leader.accept(request.id, None))
        self.assertIsNone(await leader.accept(request.id, self.crew.host.id))
        self.assertEqual(backend.mutations(), [])

    async def test_rejected_request_can_be_followed_by_a_new_one(self) -> None:
        host, request = await self.open_request()
        leader, _, _ = await self.workflow_for(self.crew.leader)
        await leader.load_request(self.snapshot_id)
        self.assertEqual((await leader.reject(request.id)).status, REJECTED)

        await host.load_request(self.snapshot_id)
        self.assertTrue(host.request_for(self.snapshot_id).is_terminal)
        self.assertTrue(host.can_create_request(host.sync.snapshot(self.snapshot_id)))
        second = await host.create_request(self.snapshot_id, "Still sick")
        self.assertNotEqual(second.id, request.id)
        self.assertTrue(second.is_pending)

    async def test_employees_cannot_decide(self) -> None:
        host, request = await self.open_request()
        self.assertIsNone(await host.accept(request.id, self.crew.other_host.id))
        self.assertIsNone(await host.reject(request.id))
        self.assertNotIn("update_alt_request_status", host.backend.calls)
        self.assertTrue(host.request_for(self.snapshot_id).is_pending)

    async def test_direct_override_resolves_the_pending_request(self) -> None:
        _, request = await self.open_request()
        leader, _, _ = await self.workflow_for(self.crew.leader)
        await leader.load_request(self.snapshot_id)
        snapshot = leader.sync.snapshot(self.snapshot_id)
        self.assertTrue(leader.can_set_alt_directly(snapshot))

        self.assertTrue(await leader.set_alt(self.snapshot_id, ExternalAlt("Cousin Sam"), "family help"))

        self.assertEqual(leader.request_for(self.snapshot_id).status, REJECTED)
        covered = leader.sync.snapshot(self.snapshot_id)
        self.assertEqual(covered.alt, ExternalAlt("Cousin Sam"))
        self.assertEqual(covered.alt_note, "family help")
        with self.schedule.session_factory() as session:
            superseded = db.list_audit_log(session, action="ALT_REQUEST_SUPERSEDED", target_id=request.id)
        self.assertEqual(len(superseded), 1)

        self.assertTrue(await leader.clear_alt(self.snapshot_id))
        cleared = leader.sync.snapshot(self.snapshot_id)
        self.assertIsNone(cleared.alt)
        self.assertIsNone(cleared.alt_note)

    async def test_override_with_an_employee_accepts(self) -> None:
        await self.open_request()
        leader, _, _ = await self.workflow_for(self.crew.leader)
        await leader.load_request(self.snapshot_id)
        self.assertTrue(await leader.set_alt(self.snapshot_id, EmployeeAlt(self.crew.assistant.id)))
        request = leader.request_for(self.snapshot_id)
        self.assertEqual(request.status, ACCEPTED)
        self.assertEqual(request.alt_assignee.id, self.crew.assistant.id)

    async def test_override_is_leader_only(self) -> None:
        host, _, _ = await self.workflow_for(self.crew.host)
        self.assertFalse(await host.set_alt(self.snapshot_id, ExternalAlt("Friend")))
        self.assertNotIn("update_alt", host.backend.calls)

    async def test_author_edits_and_deletes_a_pending_request(self) -> None:
        host, request = await self.open_request()
        updated = await host.update_note(request.id, "Moved to Tuesday")
        self.assertEqual(updated.alt_note, "Moved to Tuesday")
        self.assertIsNone(await host.update_note(request.id, "   "))

        self.assertTrue(await host.delete_request(request.id))
        self.assertIsNone(host.request_for(self.snapshot_id))
        self.assertIn(self.snapshot_id, host.requests)
        self.assertTrue(host.can_create_request(host.sync.snapshot(self.snapshot_id)))

    async def test_search_is_scoped_for_employees(self) -> None:
        await self.open_request()
        leader, _, _ = await self.workflow_for(self.crew.leader)
        other, _, _ = await self.workflow_for(self.crew.other_host)
        self.assertEqual(len(await leader.search(status="pending")), 1)
        self.assertEqual(await leader.search(status="accepted"), [])
        self.assertEqual(await other.search(), [])


if __name__ == "__main__":
    unittest.main()
