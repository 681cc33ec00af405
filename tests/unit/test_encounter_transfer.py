import json
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path
import unittest

sys.path.insert(0, str(Path(__file__).resolve().parents[2] / "src"))

from encounter_tracker.application.dtos import BatchOptions, ExportOptions, ImportOptions
from encounter_tracker.application.services.encounter_transfer_service import document_to_xml, xml_to_document
from encounter_tracker.bootstrap import create_inmemory_container
from encounter_tracker.domain.errors import NotFoundError, PermissionDeniedError, ValidationError
from encounter_tracker.infrastructure.security.share_tokens import ShareTokenSigner


def _seed(container):
    character = container.characters.create_character(
        "dm",
        {
            "name": "Aria",
            "race": "elf",
            "classes": [{"class": "ranger", "level": 3, "hit_die": 10}],
            "hit_points": {"maximum": 24},
            "backstory": "Raised by wolves",
            "notes": "Owes the thieves guild",
        },
    )
    encounter = container.encounters.create_encounter(
        "dm",
        {
            "name": "Goblin Ambush",
            "tags": ["goblins"],
            "participants": [
                {"character_id": "gob-1", "name": "Goblin", "type": "monster", "max_hit_points": 7,
                 "dexterity": 14, "notes": "Carries the map"},
            ],
        },
    )
    container.encounters.add_character(encounter.id, "dm", character.id)
    return character, encounter


class ExportTests(unittest.TestCase):
    def setUp(self) -> None:
        self.container = create_inmemory_container(bcrypt_rounds=4, share_secret="test-secret")
        self.character, self.encounter = _seed(self.container)

    def test_export_aliases_ids_and_hides_private_notes(self) -> None:
        document = self.container.transfer.build_export(self.encounter.id, "dm")

        participants = document["encounter"]["participants"]
        self.assertTrue(all(p["id"].startswith("temp_") for p in participants))
        self.assertEqual("", participants[0]["notes"])
        self.assertEqual("dm", document["metadata"]["exported_by"])
        self.assertNotIn("combat_state", document["encounter"])

    def test_export_with_sheets_strips_personal_data(self) -> None:
        options = ExportOptions(include_character_sheets=True, include_ids=True, strip_personal_data=True)

        document = self.container.transfer.build_export(self.encounter.id, "dm", options)

        sheet = document["encounter"]["character_sheets"][0]
        self.assertEqual(self.character.id, sheet["id"])
        self.assertEqual("", sheet["backstory"])
        self.assertEqual("", sheet["notes"])
        self.assertNotIn("owner_id", sheet)
        self.assertEqual("", document["metadata"]["exported_by"])

    def test_export_includes_running_combat(self) -> None:
        self.container.combat.start_combat(self.encounter.id, "dm", auto_roll=False)

        document = self.container.transfer.build_export(self.encounter.id, "dm", ExportOptions(include_ids=True))

        combat = document["encounter"]["combat_state"]
        self.assertTrue(combat["is_active"])
        self.assertNotIn("turn_started_at", combat)
        self.assertEqual(2, len(combat["initiative_order"]))

    def test_export_rejects_unknown_format_and_strangers(self) -> None:
        with self.assertRaises(ValidationError):
            self.container.transfer.build_export(self.encounter.id, "dm", ExportOptions(format="yaml"))
        self.container.encounters.publish(self.encounter.id, "dm")
        with self.assertRaises(PermissionDeniedError):
            self.container.transfer.build_export(self.encounter.id, "stranger")


class ImportTests(unittest.TestCase):
    def setUp(self) -> None:
        self.container = create_inmemory_container(bcrypt_rounds=4, share_secret="test-secret")
        self.character, self.encounter = _seed(self.container)

    def test_json_import_creates_new_encounter_with_fresh_ids(self) -> None:
        exported = self.container.transfer.export_json(self.encounter.id, "dm")

        result = self.container.transfer.import_json(exported, "player")

        imported = self.container.encounters.get_encounter(result.encounter_id, "player")
        self.assertNotEqual(self.encounter.id, imported.id)
        self.assertEqual("Goblin Ambush", imported.name)
        self.assertEqual(2, len(imported.participants))
        self.assertEqual([], result.warnings)

    def test_xml_import_reads_back_lists_and_numbers(self) -> None:
        exported = self.container.transfer.export_xml(self.encounter.id, "dm")

        result = self.container.transfer.import_xml(exported, "player")

        imported = self.container.encounters.get_encounter(result.encounter_id, "player")
        self.assertEqual(["goblins"], imported.tags)
        goblin = next(p for p in imported.participants if p.name == "Goblin")
        self.assertEqual(7, goblin.max_hit_points)
        self.assertEqual(14, goblin.dexterity)

    def test_xml_round_trip_keeps_text_that_looks_typed(self) -> None:
        self.container.encounters.update_encounter(
            self.encounter.id, "dm", {"name": "true", "description": "007", "tags": ["1.50", "false"]}
        )
        exported = self.container.transfer.export_xml(
            self.encounter.id, "dm", ExportOptions(include_character_sheets=True)
        )

        result = self.container.transfer.import_xml(
            exported, "player", ImportOptions(create_missing_characters=True)
        )

        imported = self.container.encounters.get_encounter(result.encounter_id, "player")
        self.assertEqual("true", imported.name)
        self.assertEqual("007", imported.description)
        self.assertEqual(["1.50", "false"], imported.tags)
        self.assertFalse(imported.is_public)
        sheet = self.container.characters.get_character(result.created_characters[0], "player")
        self.assertEqual(24, sheet.hit_points.maximum)

    def test_sheets_skipped_unless_requested(self) -> None:
        exported = self.container.transfer.export_json(
            self.encounter.id, "dm", ExportOptions(include_character_sheets=True)
        )

        skipped = self.container.transfer.import_json(exported, "player")
        created = self.container.transfer.import_json(
            exported, "player", ImportOptions(create_missing_characters=True)
        )

        self.assertEqual(["Skipped 1 character sheet(s)"], skipped.warnings)
        self.assertEqual(1, len(created.created_characters))
        new_character = self.container.characters.get_character(created.created_characters[0], "player")
        imported = self.container.encounters.get_encounter(created.encounter_id, "player")
        self.assertIsNotNone(imported.get_participant(new_character.id))

    def test_overwrite_existing_matches_by_name(self) -> None:
        exported = self.container.transfer.export_json(self.encounter.id, "dm")

        result = self.container.transfer.import_json(exported, "dm", ImportOptions(overwrite_existing=True))

        self.assertEqual(self.encounter.id, result.encounter_id)
        self.assertEqual(1, len(self.container.encounters.list_encounters("dm").items))

    def test_invalid_documents_are_rejected(self) -> None:
        with self.assertRaises(ValidationError) as bad_json:
            self.container.transfer.import_json("{not json", "dm")
        with self.assertRaises(ValidationError) as bad_shape:
            self.container.transfer.import_json(json.dumps({"encounter": {"name": ""}}), "dm")
        with self.assertRaises(ValidationError):
            self.container.transfer.import_xml("<encounter_export><unclosed></encounter_export>", "dm")

        self.assertEqual("INVALID_IMPORT_FORMAT", bad_json.exception.code)
        self.assertTrue(any(detail.startswith("metadata") for detail in bad_shape.exception.details))


class XmlCodecTests(unittest.TestCase):
    def test_array_fields_stay_lists(self) -> None:
        xml = document_to_xml({"encounter": {"tags": ["solo"], "participants": [], "is_public": False}})

        parsed = xml_to_document(xml)

        self.assertEqual({"encounter": {"tags": ["solo"], "participants": [], "is_public": False}}, parsed)

    def test_only_typed_leaves_are_converted(self) -> None:
        document = {"encounter": {"name": "007", "target_level": 5, "is_public": True, "tags": ["1.50"]}}

        parsed = xml_to_document(document_to_xml(document))

        self.assertEqual(document, parsed)
        hand_written = xml_to_document("<encounter_export><encounter><name>true</name></encounter></encounter_export>")
        self.assertEqual({"encounter": {"name": "true"}}, hand_written)

    def test_malformed_typed_leaf_is_rejected(self) -> None:
        with self.assertRaises(ValidationError) as ctx:
            xml_to_document('<encounter_export><x type="integer">seven</x></encounter_export>')

        self.assertEqual("INVALID_IMPORT_FORMAT", ctx.exception.code)


class TemplateAndShareTests(unittest.TestCase):
    def setUp(self) -> None:
        self.container = create_inmemory_container(bcrypt_rounds=4, share_secret="test-secret")
        self.character, self.encounter = _seed(self.container)

    def test_template_resets_participants(self) -> None:
        self.container.combat.apply_damage(self.encounter.id, "dm", "gob-1", 4)
        self.container.combat.add_condition(self.encounter.id, "dm", "gob-1", "prone")

        template = self.container.transfer.create_template(self.encounter.id, "dm", "Roadside Ambush")

        body = template["encounter"]
        goblin = next(p for p in body["participants"] if p["name"] == "Goblin")
        self.assertEqual("Roadside Ambush", body["name"])
        self.assertEqual("Template created from: Goblin Ambush", body["description"])
        self.assertEqual(7, goblin["current_hit_points"])
        self.assertEqual([], goblin["conditions"])
        self.assertIsNone(goblin["initiative"])

    def test_share_link_resolves_until_expiry(self) -> None:
        link = self.container.transfer.generate_share_link(self.encounter.id, "dm", timedelta(hours=1))

        self.assertTrue(link.url.endswith(f"/encounters/shared/{link.token}"))
        self.assertEqual(self.encounter.id, self.container.transfer.resolve_share_link(link.token).id)
        with self.assertRaises(NotFoundError):
            self.container.transfer.resolve_share_link(link.token + "x")
        with self.assertRaises(ValidationError):
            self.container.transfer.generate_share_link(self.encounter.id, "dm", timedelta(0))

    def test_signer_rejects_expired_and_foreign_tokens(self) -> None:
        now = datetime(2024, 5, 1, tzinfo=timezone.utc)
        signer = ShareTokenSigner("secret-a")
        token = signer.sign("enc-1", now + timedelta(minutes=5))

        self.assertEqual("enc-1", signer.verify(token, now)[0])
        self.assertIsNone(signer.verify(token, now + timedelta(minutes=6)))
        self.assertIsNone(ShareTokenSigner("secret-b").verify(token, now))
        self.assertIsNone(signer.verify("garbage", now))


class BatchTests(unittest.TestCase):
    def setUp(self) -> None:
        self.container = create_inmemory_container(bcrypt_rounds=4, share_secret="test-secret")
        self.character, self.encounter = _seed(self.container)

    def test_batch_reports_per_item_results(self) -> None:
        result = self.container.batch.run("archive", [self.encounter.id, "missing"], "dm", BatchOptions(archive_reason="Done"))

        self.assertEqual(1, result.succeeded)
        self.assertEqual(1, result.failed)
        self.assertEqual("Encounter not found", result.results[1].error)

    def test_batch_template_uses_prefix(self) -> None:
        result = self.container.batch.run("template", [self.encounter.id], "dm", BatchOptions(template_prefix="Kit"))

        self.assertEqual("Kit - Goblin Ambush", result.results[0].data["encounter"]["name"])

    def test_batch_export_keeps_real_ids(self) -> None:
        result = self.container.batch.run("export", [self.encounter.id], "dm")

        exported = json.loads(result.results[0].data)
        self.assertIn("gob-1", [p["id"] for p in exported["encounter"]["participants"]])

    def test_batch_duplicate(self) -> None:
        result = self.container.batch.run("duplicate", [self.encounter.id], "dm")

        self.assertNotEqual(self.encounter.id, result.results[0].result_id)
        self.assertEqual(2, len(self.container.encounters.list_encounters("dm").items))

    def test_batch_validates_request(self) -> None:
        with self.assertRaises(ValidationError) as ctx:
            self.container.batch.run("explode", [], "dm")
        self.assertEqual(2, len(ctx.exception.details))


if __name__ == "__main__":
    unittest.main()
