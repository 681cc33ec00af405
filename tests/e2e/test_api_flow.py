import json
import sys
from pathlib import Path
import unittest

from fastapi.testclient import TestClient

sys.path.insert(0, str(Path(__file__).resolve().parents[2] / "src"))

from encounter_tracker.bootstrap import create_inmemory_container
from encounter_tracker.presentation.api.app import create_app


PASSWORD = "Str0ng!Passw0rd"


class ApiFlowTests(unittest.TestCase):
    def setUp(self) -> None:
        self.container = create_inmemory_container(bcrypt_rounds=4, share_secret="test-secret")
        self.client = TestClient(create_app(self.container))

    def _login(self, email="dm@example.com", username="dungeon_master") -> dict:
        response = self.client.post(
            "/api/auth/register",
            json={"email": email, "username": username, "first_name": "Dana", "last_name": "Mercer",
                  "password": PASSWORD},
        )
        self.assertEqual(201, response.status_code)
        token = self.container.users.get_user(response.json()["data"]["id"]).email_verification_token
        self.assertEqual(200, self.client.post("/api/auth/verify-email", json={"token": token}).status_code)

        login = self.client.post("/api/auth/login", json={"email": email, "password": PASSWORD})
        self.assertEqual(200, login.status_code)
        return {"Authorization": f"Bearer {login.json()['data']['token']}"}

    def test_health_reports_backend(self) -> None:
        response = self.client.get("/api/health")

        self.assertEqual(200, response.status_code)
        self.assertEqual(
            {"status": "ok", "backend": "memory", "database": True, "content": {"enabled": False}}, response.json()
        )

    def test_combat_flow_over_http(self) -> None:
        headers = self._login()
        character = self.client.post(
            "/api/characters",
            headers=headers,
            json={"name": "Aria", "race": "elf", "classes": [{"class": "ranger", "level": 3, "hit_die": 10}],
                  "ability_scores": {"dexterity": 16}, "hit_points": {"maximum": 24}},
        ).json()["data"]
        encounter = self.client.post(
            "/api/encounters",
            headers=headers,
            json={"name": "Goblin Ambush", "participants": [
                {"character_id": "gob", "name": "Goblin", "type": "monster", "max_hit_points": 7,
                 "dexterity": 14, "initiative": 12},
            ]},
        ).json()["data"]
        base = f"/api/encounters/{encounter['id']}"

        added = self.client.post(f"{base}/characters", headers=headers, json={"character_ids": [character["id"]]})
        self.assertEqual(200, added.status_code)
        self.client.post(
            f"{base}/combat/initiative", headers=headers,
            json={"participant_id": character["id"], "initiative": 18},
        )

        started = self.client.post(f"{base}/combat/start", headers=headers, json={"auto_roll": False}).json()["data"]
        self.assertEqual(character["id"], started["current_participant_id"])
        self.assertEqual("active", started["phase"])

        turn = self.client.post(f"{base}/combat/next-turn", headers=headers).json()["data"]
        self.assertEqual("gob", turn["current_participant_id"])

        hit = self.client.post(
            f"{base}/combat/damage", headers=headers, json={"participant_id": "gob", "amount": 9}
        ).json()
        self.assertTrue(hit["damage"]["defeated"])
        goblin = next(row for row in hit["data"]["order"] if row["participant_id"] == "gob")
        self.assertTrue(goblin["is_defeated"])

        ended = self.client.post(f"{base}/combat/end", headers=headers).json()["data"]
        self.assertEqual("ended", ended["phase"])

        log = self.client.get(f"{base}/combat/log", headers=headers).json()["data"]
        self.assertEqual("combat_started", log[0]["action"])

    def test_export_returns_attachment_and_import_copies_it(self) -> None:
        headers = self._login()
        encounter = self.client.post(
            "/api/encounters", headers=headers, json={"name": "Crypt", "tags": ["undead"]}
        ).json()["data"]

        exported = self.client.get(f"/api/encounters/{encounter['id']}/export", headers=headers)

        self.assertEqual(200, exported.status_code)
        self.assertIn("attachment", exported.headers["content-disposition"])
        self.assertEqual("Crypt", json.loads(exported.text)["encounter"]["name"])

        imported = self.client.post(
            "/api/encounters/import", headers=headers, json={"data": exported.text, "format": "json"}
        )
        self.assertEqual(201, imported.status_code)
        self.assertNotEqual(encounter["id"], imported.json()["data"]["encounter_id"])

    def test_errors_use_the_envelope(self) -> None:
        unauthenticated = self.client.get("/api/encounters")
        self.assertEqual(401, unauthenticated.status_code)
        self.assertEqual(
            {"success": False, "error": {"message": "Authentication required", "code": "AUTHENTICATION_REQUIRED",
                                         "details": []}},
            unauthenticated.json(),
        )

        headers = self._login()
        missing = self.client.get("/api/encounters/nope", headers=headers)
        self.assertEqual(404, missing.status_code)
        self.assertFalse(missing.json()["success"])

        invalid = self.client.post(
            "/api/encounters/whatever/combat/damage", headers=headers, json={"participant_id": "gob", "amount": -3}
        )
        self.assertEqual(400, invalid.status_code)
        self.assertEqual("VALIDATION_ERROR", invalid.json()["error"]["code"])

    def test_other_users_cannot_run_combat(self) -> None:
        owner = self._login()
        stranger = self._login("player@example.com", "player_one")
        encounter = self.client.post(
            "/api/encounters", headers=owner,
            json={"name": "Duel", "is_public": True, "participants": [{"name": "Wolf", "max_hit_points": 11}]},
        ).json()["data"]

        viewed = self.client.get(f"/api/encounters/{encounter['id']}", headers=stranger)
        refused = self.client.post(f"/api/encounters/{encounter['id']}/combat/start", headers=stranger)

        self.assertEqual(200, viewed.status_code)
        self.assertEqual(403, refused.status_code)


if __name__ == "__main__":
    unittest.main()
