"""
Factory image deployment for factoryflash.

This module decides which package entries go to which partition and drives the
flash sequence onto a device.
"""

from .callbacks import FlashCallback, NullCallback
from .classifier import (
    IGNORE,
    NESTED_IMAGE_RULES,
    PACKAGE_RULES,
    RECURSE,
    Action,
    ClassificationRule,
    FlashPartition,
    Ignore,
    RecurseArchive,
    classify,
    rules_for_depth,
)
from .flasher import DeviceFlasher, DryRunFlasher, FastbootFlasher
from .models import FlashPhase, FlashReport, FlashStep
from .orchestrator import FlashOrchestrator, flash_package

__all__ = [
    "Action",
    "ClassificationRule",
    "DeviceFlasher",
    "DryRunFlasher",
    "FastbootFlasher",
    "FlashCallback",
    "FlashOrchestrator",
    "FlashPartition",
    "FlashPhase",
    "FlashReport",
    "FlashStep",
    "IGNORE",
    "Ignore",
    "NESTED_IMAGE_RULES",
    "NullCallback",
    "PACKAGE_RULES",
    "RECURSE",
    "RecurseArchive",
    "classify",
    "flash_package",
    "rules_for_depth",
]
