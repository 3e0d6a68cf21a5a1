"""Entry classification for factory packages.

Maps an archive entry name to what the flash walk should do with it. The
policy is a set of ordered rule tables evaluated first-match-wins:

Top level of a factory package:
    1. *avb_pkmd.bin        -> flash to avb_custom_key
    2. *bootloader-*.img    -> flash to bootloader
    3. *radio-*.img         -> flash to radio
    4. *image-*.zip         -> recurse into the nested images archive
    5. anything else        -> ignore

Inside the nested images archive:
    *.img -> flash to the partition named by the file's base name

Below that level the table is empty, so deeper nesting is inert.

classify() is pure and total, so the policy can be tested without any archive
or device.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Optional, Union


@dataclass(frozen=True)
class FlashPartition:
    """Write the entry's bytes to ``partition``."""

    partition: str


@dataclass(frozen=True)
class RecurseArchive:
    """Open the entry as a nested archive and walk it one level deeper."""


@dataclass(frozen=True)
class Ignore:
    """Skip the entry."""


Action = Union[FlashPartition, RecurseArchive, Ignore]

IGNORE = Ignore()
RECURSE = RecurseArchive()


@dataclass(frozen=True)
class ClassificationRule:
    """One row of a rule table.

    Attributes:
        pattern: Searched against the full entry name
        action: Fixed action, or None to flash the partition captured by the
            pattern's ``partition`` group
        description: Human-readable label for logs
    """

    pattern: re.Pattern[str]
    action: Optional[Action]
    description: str

    def apply(self, entry_name: str) -> Optional[Action]:
        """Return this rule's action for ``entry_name``, or None if it does not match."""
        match = self.pattern.search(entry_name)
        if match is None:
            return None
        if self.action is not None:
            return self.action
        return FlashPartition(match.group("partition"))


PACKAGE_RULES: tuple[ClassificationRule, ...] = (
    ClassificationRule(re.compile(r"avb_pkmd\.bin$"), FlashPartition("avb_custom_key"), "AVB custom key"),
    ClassificationRule(re.compile(r"bootloader-.+\.img$"), FlashPartition("bootloader"), "bootloader image pack"),
    ClassificationRule(re.compile(r"radio-.+\.img$"), FlashPartition("radio"), "radio image pack"),
    ClassificationRule(re.compile(r"image-.+\.zip$"), RECURSE, "nested images zip"),
)

NESTED_IMAGE_RULES: tuple[ClassificationRule, ...] = (ClassificationRule(re.compile(r"(?:^|/)(?P<partition>[^/]+)\.img$"), None, "partition image"),)

# Indexed by walk depth; depths past the end have no rules
RULE_TABLES: tuple[tuple[ClassificationRule, ...], ...] = (PACKAGE_RULES, NESTED_IMAGE_RULES)


def rules_for_depth(depth: int) -> tuple[ClassificationRule, ...]:
    """Rule table for an archive at ``depth`` (0 = the package itself)."""
    if 0 <= depth < len(RULE_TABLES):
        return RULE_TABLES[depth]
    return ()


def classify(entry_name: str, rules: tuple[ClassificationRule, ...] = PACKAGE_RULES) -> Action:
    """Decide what to do with an archive entry.

    Args:
        entry_name: Full entry name within its archive
        rules: Ordered rule table; first match wins

    Returns:
        The first matching rule's action, or IGNORE
    """
    for rule in rules:
        action = rule.apply(entry_name)
        if action is not None:
            return action
    return IGNORE


def describe(entry_name: str, rules: tuple[ClassificationRule, ...] = PACKAGE_RULES) -> str:
    """Label of the rule that matches ``entry_name``, for log output."""
    for rule in rules:
        if rule.apply(entry_name) is not None:
            return rule.description
    return "ignored"
