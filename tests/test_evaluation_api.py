"""Daily evaluations and AI note drafts through the HTTP API."""

import asyncio
from datetime import datetime, timedelta

from training_center.models import Evaluation
from training_center.services.evaluation_service import CRITERIA_BY_ID
from training_center.settings import settings

TEAMWORK = "classroomSkills.teamwork"
FOCUS = "technicalSkills.focusAndAttention"


def evaluation_payload(student_id, **overrides):
    payload = {
        "student_id": student_id,
        "date": "2024-03-10",
        "training_topic": "Network basics",
        "criteria": {TEAMWORK: {"score": 5, "notes": "<b>Great</b> team player"}},
        "overall_rating": "Very Good",
    }
    payload.update(overrides)
    return payload


class TestCriteriaAndNotes:
    def test_criteria_catalog(self, admin_client):
        body = admin_client.get("/evaluations/criteria").json()

        assert [s["id"] for s in body["sections"]] == ["personalSkills", "classroomSkills", "technicalSkills"]
        assert sum(len(s["criteria"]) for s in body["sections"]) == len(CRITERIA_BY_ID)
        assert body["default_score"] == 3
        assert "Needs Improvement" in body["overall_ratings"]

    def test_students_are_kept_out(self, student_client):
        assert student_client.get("/evaluations/criteria").status_code == 403

    def test_generate_notes(self, admin_client, fake_ai):
        resp = admin_client.post(
            "/evaluations/generate-notes",
            json={"criteria": [{"id": TEAMWORK, "name": "Teamwork", "score": 4}]},
        )

        assert resp.status_code == 200
        assert resp.json() == {"ok": True, "result": {"notes": [{"id": TEAMWORK, "note": "AI note 4/5"}]}}

    def test_generate_notes_failure(self, admin_client, fake_ai):
        fake_ai.fail = True
        resp = admin_client.post(
            "/evaluations/generate-notes",
            json={"criteria": [{"id": TEAMWORK, "name": "Teamwork", "score": 4}]},
        )

        assert resp.status_code == 500
        assert resp.json()["ok"] is False
        assert resp.json()["error"]


class TestStoredEvaluations:
    def test_create_fills_defaults_and_cleans_notes(self, admin_client, student_user):
        resp = admin_client.post("/evaluations", json=evaluation_payload(student_user.id))

        assert resp.status_code == 201
        body = resp.json()
        assert body["student_name"] == "Alice Student"
        assert set(body["criteria"]) == set(CRITERIA_BY_ID)
        assert body["criteria"][TEAMWORK] == {"score": 5, "notes": "Great team player"}
        assert body["criteria"][FOCUS] == {"score": 3, "notes": ""}

    def test_unknown_criterion(self, admin_client, student_user):
        payload = evaluation_payload(student_user.id, criteria={"made.up": {"score": 2}})
        assert admin_client.post("/evaluations", json=payload).status_code == 400

    def test_score_out_of_range(self, admin_client, student_user):
        payload = evaluation_payload(student_user.id, criteria={TEAMWORK: {"score": 6}})
        assert admin_client.post("/evaluations", json=payload).status_code == 422

    def test_only_students_can_be_evaluated(self, admin_client, admin_user):
        assert admin_client.post("/evaluations", json=evaluation_payload(admin_user.id)).status_code == 404

    def test_list_update_delete(self, admin_client, student_user):
        older = admin_client.post("/evaluations", json=evaluation_payload(student_user.id, date="2024-03-01")).json()
        newer = admin_client.post("/evaluations", json=evaluation_payload(student_user.id, date="2024-03-20")).json()

        listed = admin_client.get(f"/evaluations?student_id={student_user.id}").json()
        assert [e["id"] for e in listed] == [newer["id"], older["id"]]

        update = evaluation_payload(student_user.id, training_topic="Firewalls", overall_rating="Excellent")
        resp = admin_client.put(f"/evaluations/{older['id']}", json=update)
        assert resp.status_code == 200
        assert resp.json()["training_topic"] == "Firewalls"
        assert admin_client.get(f"/evaluations/{older['id']}").json()["overall_rating"] == "Excellent"

        assert admin_client.delete(f"/evaluations/{older['id']}").status_code == 204
        assert admin_client.get(f"/evaluations/{older['id']}").status_code == 404
        assert admin_client.put(f"/evaluations/{older['id']}", json=update).status_code == 404

    def test_timestamps_are_naive_utc(self, admin_client, student_user, session):
        before = datetime.utcnow() - timedelta(seconds=1)
        body = admin_client.post("/evaluations", json=evaluation_payload(student_user.id)).json()

        stored = session.get(Evaluation, body["id"])
        assert stored.created_at.tzinfo is None
        assert before <= stored.updated_at <= datetime.utcnow() + timedelta(seconds=1)
        assert datetime.fromisoformat(body["updated_at"]) == stored.updated_at


class TestDrafts:
    def test_new_draft_does_not_ask_for_notes(self, admin_client, student_user, fake_ai):
        resp = admin_client.post("/evaluations/drafts", json={"student_id": student_user.id})

        assert resp.status_code == 201
        body = resp.json()
        assert body["draft_id"]
        assert all(c["score"] == 3 for c in body["criteria"].values())
        assert set(body["owners"].values()) == {"empty"}
        assert fake_ai.note_calls == []

    def test_draft_for_unknown_student(self, admin_client):
        assert admin_client.post("/evaluations/drafts", json={"student_id": 9999}).status_code == 404

    def test_suggestions_fill_only_fields_the_user_did_not_write(self, admin_client, student_user, fake_ai):
        draft_id = admin_client.post("/evaluations/drafts", json={"student_id": student_user.id}).json()["draft_id"]

        resp = admin_client.patch(
            f"/evaluations/drafts/{draft_id}",
            json={"scores": {TEAMWORK: 5}, "notes": {FOCUS: "Stayed focused all day"}},
        )
        assert resp.json()["scheduled"] is True

        body = admin_client.post(f"/evaluations/drafts/{draft_id}/suggest").json()
        assert body["applied"] is True
        assert body["criteria"][TEAMWORK]["notes"] == "AI note 5/5"
        assert body["owners"][TEAMWORK] == "ai-owned"
        assert body["criteria"][FOCUS]["notes"] == "Stayed focused all day"
        assert body["owners"][FOCUS] == "user-owned"

    def test_notes_only_edit_schedules_nothing(self, admin_client, student_user):
        draft_id = admin_client.post("/evaluations/drafts", json={"student_id": student_user.id}).json()["draft_id"]

        resp = admin_client.patch(f"/evaluations/drafts/{draft_id}", json={"notes": {FOCUS: "ok"}})

        assert resp.json()["scheduled"] is False
        assert resp.json()["is_generating"] is False

    def test_debounced_suggestion_arrives_in_background(self, admin_client, student_user, fake_ai, monkeypatch):
        monkeypatch.setattr(settings, "notes_debounce_ms", 100)
        draft_id = admin_client.post("/evaluations/drafts", json={"student_id": student_user.id}).json()["draft_id"]

        for score in (2, 3, 4):
            admin_client.patch(f"/evaluations/drafts/{draft_id}", json={"scores": {TEAMWORK: score}})
        admin_client.run(asyncio.sleep(0.4))

        body = admin_client.get(f"/evaluations/drafts/{draft_id}").json()
        assert len(fake_ai.note_calls) == 1
        assert body["criteria"][TEAMWORK]["notes"] == "AI note 4/5"
        assert body["is_generating"] is False

    def test_failed_suggestion_keeps_fields(self, admin_client, student_user, fake_ai):
        fake_ai.fail = True
        draft_id = admin_client.post("/evaluations/drafts", json={"student_id": student_user.id}).json()["draft_id"]
        admin_client.patch(f"/evaluations/drafts/{draft_id}", json={"overall_rating": "Excellent"})

        body = admin_client.post(f"/evaluations/drafts/{draft_id}/suggest").json()

        assert body["applied"] is False
        assert body["last_error"]
        assert all(c["notes"] == "" for c in body["criteria"].values())

    def test_bad_patch(self, admin_client, student_user):
        draft_id = admin_client.post("/evaluations/drafts", json={"student_id": student_user.id}).json()["draft_id"]

        assert admin_client.patch(f"/evaluations/drafts/{draft_id}", json={"scores": {"made.up": 2}}).status_code == 400
        assert admin_client.patch(f"/evaluations/drafts/{draft_id}", json={"scores": {TEAMWORK: 9}}).status_code == 400

    def test_rejected_patch_changes_nothing(self, admin_client, student_user):
        draft_id = admin_client.post("/evaluations/drafts", json={"student_id": student_user.id}).json()["draft_id"]

        resp = admin_client.patch(
            f"/evaluations/drafts/{draft_id}",
            json={"scores": {TEAMWORK: 5, "technicalSkills.deviceUsage": 9}, "notes": {FOCUS: "typed"}},
        )
        assert resp.status_code == 400

        body = admin_client.get(f"/evaluations/drafts/{draft_id}").json()
        assert body["criteria"][TEAMWORK]["score"] == 3
        assert body["criteria"][FOCUS]["notes"] == ""
        assert body["is_generating"] is False

    def test_save_draft(self, admin_client, student_user, fake_ai):
        drafts = admin_client.post("/evaluations/drafts", json={"student_id": student_user.id}).json()
        draft_id = drafts["draft_id"]

        assert admin_client.post(f"/evaluations/drafts/{draft_id}/save").status_code == 400

        admin_client.patch(
            f"/evaluations/drafts/{draft_id}",
            json={"training_topic": "Routing", "date": "2024-04-02", "notes": {TEAMWORK: "Helps others"}},
        )
        resp = admin_client.post(f"/evaluations/drafts/{draft_id}/save")

        assert resp.status_code == 200
        saved = resp.json()
        assert saved["training_topic"] == "Routing"
        assert saved["date"] == "2024-04-02"
        assert saved["criteria"][TEAMWORK]["notes"] == "Helps others"
        assert admin_client.get(f"/evaluations/drafts/{draft_id}").status_code == 404

    def test_editing_existing_evaluation_keeps_notes_as_user_text(self, admin_client, student_user, fake_ai):
        evaluation = admin_client.post("/evaluations", json=evaluation_payload(student_user.id)).json()

        draft = admin_client.post("/evaluations/drafts", json={"evaluation_id": evaluation["id"]}).json()
        assert draft["owners"][TEAMWORK] == "user-owned"
        draft_id = draft["draft_id"]

        admin_client.patch(f"/evaluations/drafts/{draft_id}", json={"scores": {TEAMWORK: 1}})
        body = admin_client.post(f"/evaluations/drafts/{draft_id}/suggest").json()
        assert body["criteria"][TEAMWORK]["notes"] == "Great team player"
        assert body["criteria"][FOCUS]["notes"] == "AI note 3/5"

        saved = admin_client.post(f"/evaluations/drafts/{draft_id}/save").json()
        assert saved["id"] == evaluation["id"]
        assert saved["criteria"][TEAMWORK]["score"] == 1

    def test_discard_draft(self, admin_client, student_user):
        draft_id = admin_client.post("/evaluations/drafts", json={"student_id": student_user.id}).json()["draft_id"]

        assert admin_client.delete(f"/evaluations/drafts/{draft_id}").status_code == 204
        assert admin_client.get(f"/evaluations/drafts/{draft_id}").status_code == 404
