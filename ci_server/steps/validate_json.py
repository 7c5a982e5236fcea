"""Step validating the syntax of the JSON files in the checkout.

The data files are edited by hand and are a frequent source of broken
builds, so every file ending in .json has to parse.
"""

from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path

from ci_server.steps.base import Step, StepExecutionError

logger = logging.getLogger(__name__)


def find_json_files(root: Path) -> list[Path]:
    """Return the JSON files below root, skipping hidden directories."""
    return sorted(
        path
        for path in root.rglob("*.json")
        if path.is_file()
        and not any(part.startswith(".") for part in path.relative_to(root).parts[:-1])
    )


class ValidateJsonStep(Step):
    step_id = "validate-json"
    name = "Validate JSON files"

    async def run(self) -> None:
        try:
            files = await asyncio.to_thread(find_json_files, self.directory)
        except OSError as e:
            raise StepExecutionError(f"Unable to list JSON files: {e}") from e

        valid = 0
        invalid = 0
        lines: list[str] = []
        for path in files:
            relative = path.relative_to(self.directory).as_posix()
            try:
                data = await asyncio.to_thread(path.read_text, encoding="utf-8")
            except (OSError, UnicodeDecodeError) as e:
                raise StepExecutionError(f"Unable to read {relative}: {e}") from e

            try:
                json.loads(data)
            except json.JSONDecodeError as e:
                lines.append(f"ERROR: {relative} contains invalid JSON data: {e}\n")
                invalid += 1
            else:
                lines.append(f"{relative} contains valid JSON data.\n")
                valid += 1

        await self.log("".join(lines))
        logger.debug("Validated %d JSON files, %d invalid", valid, invalid)

        if invalid:
            self.set_status(False, f"Validated {valid} JSON files, failed {invalid}.")
        else:
            self.set_status(True, f"Validated {valid} JSON files.")


__all__ = ["ValidateJsonStep", "find_json_files"]
