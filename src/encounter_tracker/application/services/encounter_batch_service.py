from __future__ import annotations

import logging
from typing import Any, Callable, Dict, Optional, Sequence

from encounter_tracker.application.dtos import BatchOptions, BatchResult, ExportOptions, ItemResult
from encounter_tracker.application.services.encounter_service import EncounterService
from encounter_tracker.application.services.encounter_transfer_service import EncounterTransferService
from encounter_tracker.domain.errors import TrackerError, ValidationError


logger = logging.getLogger(__name__)

MAX_BATCH_SIZE = 50
BATCH_OPERATIONS = ("export", "template", "delete", "archive", "publish", "duplicate")


class EncounterBatchService:
    """Runs one operation over many encounters, reporting per-encounter results."""

    def __init__(self, encounters: EncounterService, transfer: EncounterTransferService) -> None:
        self.encounters = encounters
        self.transfer = transfer
        self._handlers: Dict[str, Callable[[str, str, BatchOptions], ItemResult]] = {
            "export": self._export,
            "template": self._template,
            "delete": self._delete,
            "archive": self._archive,
            "publish": self._publish,
            "duplicate": self._duplicate,
        }

    def run(
        self,
        operation: str,
        encounter_ids: Sequence[str],
        user_id: str,
        options: Optional[BatchOptions] = None,
    ) -> BatchResult:
        options = options or BatchOptions()
        handler = self._handlers.get(operation)
        errors = []
        if handler is None:
            errors.append(f"operation must be one of: {', '.join(BATCH_OPERATIONS)}")
        if not 1 <= len(encounter_ids) <= MAX_BATCH_SIZE:
            errors.append(f"between 1 and {MAX_BATCH_SIZE} encounter ids are required")
        if options.format not in ("json", "xml"):
            errors.append("format must be json or xml")
        if len(options.template_prefix) > 50:
            errors.append("template_prefix cannot exceed 50 characters")
        if options.archive_reason and len(options.archive_reason) > 200:
            errors.append("archive_reason cannot exceed 200 characters")
        if errors:
            raise ValidationError("Invalid batch request", details=errors)

        result = BatchResult(operation=operation)
        for encounter_id in encounter_ids:
            try:
                result.results.append(handler(encounter_id, user_id, options))
            except TrackerError as exc:
                result.results.append(ItemResult(id=encounter_id, success=False, error=exc.message))
        logger.info(
            "Batch operation finished",
            extra={"operation": operation, "succeeded": result.succeeded, "failed": result.failed},
        )
        return result

    def _export(self, encounter_id: str, user_id: str, options: BatchOptions) -> ItemResult:
        export_options = ExportOptions(
            format=options.format,
            include_character_sheets=options.include_character_sheets,
            include_private_notes=options.include_private_notes,
            include_ids=True,
            strip_personal_data=options.strip_personal_data,
        )
        data: Any = self.transfer.export(encounter_id, user_id, export_options)
        return ItemResult(id=encounter_id, success=True, data=data)

    def _template(self, encounter_id: str, user_id: str, options: BatchOptions) -> ItemResult:
        encounter = self.encounters.get_encounter(encounter_id, user_id)
        name = f"{options.template_prefix} - {encounter.name}"[:100]
        return ItemResult(id=encounter_id, success=True, data=self.transfer.create_template(encounter_id, user_id, name))

    def _delete(self, encounter_id: str, user_id: str, options: BatchOptions) -> ItemResult:
        self.encounters.delete_encounter(encounter_id, user_id)
        return ItemResult(id=encounter_id, success=True)

    def _archive(self, encounter_id: str, user_id: str, options: BatchOptions) -> ItemResult:
        archived = self.encounters.archive(encounter_id, user_id, options.archive_reason)
        return ItemResult(id=encounter_id, success=True, result_id=archived.id)

    def _publish(self, encounter_id: str, user_id: str, options: BatchOptions) -> ItemResult:
        published = self.encounters.publish(encounter_id, user_id, options.make_public)
        return ItemResult(id=encounter_id, success=True, result_id=published.id)

    def _duplicate(self, encounter_id: str, user_id: str, options: BatchOptions) -> ItemResult:
        copy = self.encounters.duplicate(encounter_id, user_id)
        return ItemResult(id=encounter_id, success=True, result_id=copy.id)
