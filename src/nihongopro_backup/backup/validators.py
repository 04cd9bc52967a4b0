"""
Structural validators for persisted and transported backup documents.

Every validator accepts any decoded JSON value and returns a
ValidationResult; none of them raise. Messages name the offending field,
and the composite validators prefix nested messages with their path
(``user.xp must be a non-negative number``, ``logs[3].date ...``).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from nihongopro_backup.backup.models import BACKUP_SOURCES, parse_iso_datetime

UI_LANGUAGES = ("zh", "en")
TARGET_LANGUAGES = ("ja", "ko")
THEMES = ("light", "dark")
TTS_PROVIDERS = ("native", "minimax", "openai-tts")


@dataclass
class ValidationResult:
    """Outcome of a validation: ``valid`` plus the list of problems."""

    valid: bool
    errors: list[str] = field(default_factory=list)

    @classmethod
    def from_errors(cls, errors: list[str]) -> ValidationResult:
        return cls(valid=not errors, errors=errors)


def _is_number(value: Any) -> bool:
    # bool is an int subclass but never a valid number here
    return isinstance(value, int | float) and not isinstance(value, bool)


def _is_integer(value: Any) -> bool:
    return _is_number(value) and (isinstance(value, int) or value.is_integer())


def _is_object(value: Any) -> bool:
    return isinstance(value, dict)


def _prefixed(prefix: str, result: ValidationResult) -> list[str]:
    return [f"{prefix}.{error}" for error in result.errors]


def is_valid_iso_date(value: Any) -> bool:
    """Check whether a value is a parseable ISO 8601 date string."""
    return parse_iso_datetime(value) is not None


def validate_backup_version(obj: Any) -> ValidationResult:
    """Validate a catalog entry (BackupVersion wire dict)."""
    if not _is_object(obj):
        return ValidationResult(False, ["BackupVersion must be an object"])

    errors: list[str] = []

    if not isinstance(obj.get("id"), str) or not obj["id"]:
        errors.append("id must be a non-empty string")

    number = obj.get("versionNumber")
    if not _is_integer(number) or number < 1:
        errors.append("versionNumber must be a positive integer")

    if not is_valid_iso_date(obj.get("timestamp")):
        errors.append("timestamp must be a valid ISO 8601 date string")

    size = obj.get("dataSize")
    if not _is_number(size) or size < 0:
        errors.append("dataSize must be a non-negative number")

    if not isinstance(obj.get("checksum"), str) or not obj["checksum"]:
        errors.append("checksum must be a non-empty string")

    if obj.get("source") not in BACKUP_SOURCES:
        errors.append('source must be "local" or "imported"')

    if obj.get("description") is not None and not isinstance(obj["description"], str):
        errors.append("description must be a string if provided")

    return ValidationResult.from_errors(errors)


def validate_user(obj: Any) -> ValidationResult:
    """Validate the user profile section."""
    if not _is_object(obj):
        return ValidationResult(False, ["User must be an object"])

    errors: list[str] = []

    for key in ("name", "avatarId", "lastLogin"):
        if not isinstance(obj.get(key), str):
            errors.append(f"{key} must be a string")

    for key in ("xp", "streak"):
        value = obj.get(key)
        if not _is_number(value) or value < 0:
            errors.append(f"{key} must be a non-negative number")

    for key in ("favorites", "mistakes"):
        if not isinstance(obj.get(key), list):
            errors.append(f"{key} must be an array")

    if "dailyGoals" in obj and not _is_object(obj["dailyGoals"]):
        errors.append("dailyGoals must be an object")

    return ValidationResult.from_errors(errors)


def validate_study_log(obj: Any) -> ValidationResult:
    """Validate a single study log entry."""
    if not _is_object(obj):
        return ValidationResult(False, ["StudyLog must be an object"])

    errors: list[str] = []

    if not isinstance(obj.get("type"), str):
        errors.append("type must be a string")
    if not isinstance(obj.get("content"), str):
        errors.append("content must be a string")
    if "score" not in obj or (obj["score"] is not None and not _is_number(obj["score"])):
        errors.append("score must be a number or null")
    if not is_valid_iso_date(obj.get("date")):
        errors.append("date must be a valid ISO 8601 date string")

    return ValidationResult.from_errors(errors)


def _validate_ai_config(obj: Any) -> list[str]:
    if not _is_object(obj):
        return ["aiConfig must be an object"]
    errors = []
    if "enabled" in obj and not isinstance(obj["enabled"], bool):
        errors.append("aiConfig.enabled must be a boolean")
    if "provider" in obj and not isinstance(obj["provider"], str):
        errors.append("aiConfig.provider must be a string")
    return errors


def _validate_tts_config(obj: Any) -> list[str]:
    if not _is_object(obj):
        return ["ttsConfig must be an object"]
    errors = []
    if "enabled" in obj and not isinstance(obj["enabled"], bool):
        errors.append("ttsConfig.enabled must be a boolean")
    if "provider" in obj and obj["provider"] not in TTS_PROVIDERS:
        errors.append('ttsConfig.provider must be "native", "minimax" or "openai-tts"')
    return errors


def validate_app_settings(obj: Any) -> ValidationResult:
    """Validate the settings section."""
    if not _is_object(obj):
        return ValidationResult(False, ["AppSettings must be an object"])

    errors: list[str] = []

    if obj.get("lang") not in UI_LANGUAGES:
        errors.append('lang must be "zh" or "en"')
    if obj.get("targetLang") not in TARGET_LANGUAGES:
        errors.append('targetLang must be "ja" or "ko"')
    if obj.get("theme") not in THEMES:
        errors.append('theme must be "light" or "dark"')
    if not isinstance(obj.get("onlineMode"), bool):
        errors.append("onlineMode must be a boolean")

    # Older app releases did not write these sections
    if "aiConfig" in obj:
        errors.extend(_validate_ai_config(obj["aiConfig"]))
    if "ttsConfig" in obj:
        errors.extend(_validate_tts_config(obj["ttsConfig"]))

    return ValidationResult.from_errors(errors)


def validate_backup_data(obj: Any) -> ValidationResult:
    """
    Validate a complete backup envelope.

    Aggregates the sub-validators' messages under their field paths
    (``backupVersion.``, ``user.``, ``logs[i].``, ``settings.``).
    """
    if not _is_object(obj):
        return ValidationResult(False, ["BackupData must be an object"])

    errors: list[str] = []

    if not isinstance(obj.get("version"), str):
        errors.append("version must be a string")

    errors.extend(_prefixed("backupVersion", validate_backup_version(obj.get("backupVersion"))))
    errors.extend(_prefixed("user", validate_user(obj.get("user"))))

    logs = obj.get("logs")
    if not isinstance(logs, list):
        errors.append("logs must be an array")
    else:
        for index, log in enumerate(logs):
            errors.extend(_prefixed(f"logs[{index}]", validate_study_log(log)))

    errors.extend(_prefixed("settings", validate_app_settings(obj.get("settings"))))

    if not is_valid_iso_date(obj.get("exportDate")):
        errors.append("exportDate must be a valid ISO 8601 date string")

    return ValidationResult.from_errors(errors)


def validate_backup_metadata(obj: Any) -> ValidationResult:
    """Validate the persisted catalog."""
    if not _is_object(obj):
        return ValidationResult(False, ["BackupMetadata must be an object"])

    errors: list[str] = []

    versions = obj.get("versions")
    if not isinstance(versions, list):
        errors.append("versions must be an array")
    else:
        for index, version in enumerate(versions):
            errors.extend(_prefixed(f"versions[{index}]", validate_backup_version(version)))

    for key in ("lastBackupDate", "reminderDismissedAt"):
        # Both keys are required; null means unset
        if key not in obj or (obj[key] is not None and not is_valid_iso_date(obj[key])):
            errors.append(f"{key} must be a valid ISO 8601 date string or null")

    return ValidationResult.from_errors(errors)
