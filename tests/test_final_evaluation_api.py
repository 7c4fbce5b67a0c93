"""Final (end-of-course) evaluations and their drafts through the HTTP API."""

from training_center.services.final_evaluation_service import FINAL_CRITERIA_BY_ID

FORENSICS = "technicalSkills.forensics"
CLARITY = "communicationSkills.clarity"


def final_payload(student_id, **overrides):
    payload = {
        "student_id": student_id,
        "date": "2024-06-30",
        "trainer_name": "Omar Trainer",
        "training_period_start": "2024-04-01",
        "training_period_end": "2024-06-28",
        "criteria": {FORENSICS: {"score": 4, "notes": "<i>Solid</i> with disk images"}},
        "trainer_notes": "<script>x</script>Ready soon",
        "overall_rating": "Very Good",
        "final_recommendation": "Ready for Security+ exam",
    }
    payload.update(overrides)
    return payload


class TestFinalEvaluations:
    def test_criteria_catalog(self, admin_client):
        body = admin_client.get("/final-evaluations/criteria").json()

        assert [s["id"] for s in body["sections"]] == [
            "technicalSkills",
            "analyticalSkills",
            "behavioralSkills",
            "communicationSkills",
        ]
        assert sum(len(s["criteria"]) for s in body["sections"]) == len(FINAL_CRITERIA_BY_ID) == 18
        assert body["default_course"] == "Cybersecurity+"
        assert "Needs review before exam" in body["final_recommendations"]

    def test_students_are_kept_out(self, student_client, student_user):
        assert student_client.get("/final-evaluations/criteria").status_code == 403
        assert student_client.post("/final-evaluations", json=final_payload(student_user.id)).status_code == 403

    def test_create_fills_defaults_and_cleans_text(self, admin_client, student_user):
        resp = admin_client.post("/final-evaluations", json=final_payload(student_user.id))

        assert resp.status_code == 201
        body = resp.json()
        assert body["type"] == "final"
        assert body["course_name"] == "Cybersecurity+"
        assert body["student_name"] == "Alice Student"
        assert set(body["criteria"]) == set(FINAL_CRITERIA_BY_ID)
        assert body["criteria"][FORENSICS] == {"score": 4, "notes": "Solid with disk images"}
        assert body["criteria"][CLARITY] == {"score": 3, "notes": ""}
        assert "<script>" not in body["trainer_notes"]

    def test_daily_criteria_are_not_accepted(self, admin_client, student_user):
        payload = final_payload(student_user.id, criteria={"classroomSkills.participationQuality": {"score": 2}})
        assert admin_client.post("/final-evaluations", json=payload).status_code == 400

    def test_required_fields_and_period(self, admin_client, student_user):
        missing_trainer = final_payload(student_user.id)
        del missing_trainer["trainer_name"]
        assert admin_client.post("/final-evaluations", json=missing_trainer).status_code == 422

        backwards = final_payload(student_user.id, training_period_start="2024-07-01")
        assert admin_client.post("/final-evaluations", json=backwards).status_code == 422

        unknown = final_payload(student_user.id, final_recommendation="Skip the exam")
        assert admin_client.post("/final-evaluations", json=unknown).status_code == 422

    def test_list_update_delete(self, admin_client, student_user):
        older = admin_client.post("/final-evaluations", json=final_payload(student_user.id, date="2024-06-01")).json()
        newer = admin_client.post("/final-evaluations", json=final_payload(student_user.id, date="2024-07-01")).json()

        listed = admin_client.get(f"/final-evaluations?student_id={student_user.id}").json()
        assert [e["id"] for e in listed] == [newer["id"], older["id"]]

        update = final_payload(student_user.id, final_recommendation="Re-study recommended")
        resp = admin_client.put(f"/final-evaluations/{older['id']}", json=update)
        assert resp.status_code == 200
        assert admin_client.get(f"/final-evaluations/{older['id']}").json()["final_recommendation"] == "Re-study recommended"

        assert admin_client.delete(f"/final-evaluations/{older['id']}").status_code == 204
        assert admin_client.get(f"/final-evaluations/{older['id']}").status_code == 404
        assert admin_client.delete(f"/final-evaluations/{older['id']}").status_code == 404

    def test_daily_and_final_evaluations_are_listed_apart(self, admin_client, student_user):
        admin_client.post("/final-evaluations", json=final_payload(student_user.id))

        assert admin_client.get(f"/evaluations?student_id={student_user.id}").json() == []


class TestFinalDrafts:
    def test_new_draft_has_defaults(self, admin_client, student_user, fake_ai):
        resp = admin_client.post("/final-evaluations/drafts", json={"student_id": student_user.id})

        assert resp.status_code == 201
        body = resp.json()
        assert body["course_name"] == "Cybersecurity+"
        assert body["final_recommendation"] == "Needs review before exam"
        assert body["training_period_start"] is None
        assert set(body["criteria"]) == set(FINAL_CRITERIA_BY_ID)
        assert fake_ai.note_calls == []

    def test_suggestions_use_final_criteria(self, admin_client, student_user, fake_ai):
        draft_id = admin_client.post("/final-evaluations/drafts", json={"student_id": student_user.id}).json()["draft_id"]

        admin_client.patch(
            f"/final-evaluations/drafts/{draft_id}",
            json={"scores": {FORENSICS: 5}, "notes": {CLARITY: "Explains clearly"}},
        )
        body = admin_client.post(f"/final-evaluations/drafts/{draft_id}/suggest").json()

        assert body["applied"] is True
        assert {c.id for c in fake_ai.note_calls[0]} == set(FINAL_CRITERIA_BY_ID)
        assert body["criteria"][FORENSICS]["notes"] == "AI note 5/5"
        assert body["criteria"][CLARITY]["notes"] == "Explains clearly"
        assert body["owners"][CLARITY] == "user-owned"

    def test_recommendation_change_does_not_ask_for_notes(self, admin_client, student_user):
        draft_id = admin_client.post("/final-evaluations/drafts", json={"student_id": student_user.id}).json()["draft_id"]

        resp = admin_client.patch(
            f"/final-evaluations/drafts/{draft_id}",
            json={"final_recommendation": "Re-study recommended", "trainer_name": "Omar"},
        )

        assert resp.json()["scheduled"] is False
        assert resp.json()["final_recommendation"] == "Re-study recommended"

    def test_save_requires_trainer_and_period(self, admin_client, student_user):
        draft_id = admin_client.post("/final-evaluations/drafts", json={"student_id": student_user.id}).json()["draft_id"]

        resp = admin_client.post(f"/final-evaluations/drafts/{draft_id}/save")
        assert resp.status_code == 400
        assert "trainer_name" in resp.json()["detail"]

        admin_client.patch(
            f"/final-evaluations/drafts/{draft_id}",
            json={"trainer_name": "Omar", "training_period_start": "2024-05-01", "training_period_end": "2024-04-01"},
        )
        assert admin_client.post(f"/final-evaluations/drafts/{draft_id}/save").status_code == 400

        admin_client.patch(f"/final-evaluations/drafts/{draft_id}", json={"training_period_end": "2024-06-01"})
        resp = admin_client.post(f"/final-evaluations/drafts/{draft_id}/save")
        assert resp.status_code == 200
        assert resp.json()["trainer_name"] == "Omar"
        assert admin_client.get(f"/final-evaluations/drafts/{draft_id}").status_code == 404

    def test_editing_saved_evaluation(self, admin_client, student_user, fake_ai):
        saved = admin_client.post("/final-evaluations", json=final_payload(student_user.id)).json()

        draft = admin_client.post("/final-evaluations/drafts", json={"evaluation_id": saved["id"]}).json()
        assert draft["owners"][FORENSICS] == "user-owned"
        assert draft["training_period_end"] == "2024-06-28"

        admin_client.patch(f"/final-evaluations/drafts/{draft['draft_id']}", json={"scores": {FORENSICS: 2}})
        resaved = admin_client.post(f"/final-evaluations/drafts/{draft['draft_id']}/save").json()

        assert resaved["id"] == saved["id"]
        assert resaved["criteria"][FORENSICS] == {"score": 2, "notes": "Solid with disk images"}

    def test_drafts_are_not_shared_between_kinds(self, admin_client, student_user):
        daily_id = admin_client.post("/evaluations/drafts", json={"student_id": student_user.id}).json()["draft_id"]
        final_id = admin_client.post("/final-evaluations/drafts", json={"student_id": student_user.id}).json()["draft_id"]

        assert admin_client.get(f"/final-evaluations/drafts/{daily_id}").status_code == 404
        assert admin_client.get(f"/evaluations/drafts/{final_id}").status_code == 404

        assert admin_client.delete(f"/final-evaluations/drafts/{daily_id}").status_code == 204
        assert admin_client.get(f"/evaluations/drafts/{daily_id}").status_code == 200

    def test_unknown_student(self, admin_client):
        assert admin_client.post("/final-evaluations/drafts", json={"student_id": 9999}).status_code == 404
