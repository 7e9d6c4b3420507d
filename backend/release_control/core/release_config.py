from __future__ import annotations

import copy
from dataclasses import dataclass, field
import json
from pathlib import Path
from typing import Any, Mapping

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

KNOWN_GATES = ("tests", "security", "coverage", "qa-approval")
DEFAULT_COVERAGE_THRESHOLD = 80


class _ConfigModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


class TierConfig(_ConfigModel):
    gates: list[str] = Field(default_factory=list)
    coverage_threshold: int = DEFAULT_COVERAGE_THRESHOLD
    auto_promote: bool = False
    requires_promotion: bool = False


class NotificationsConfig(_ConfigModel):
    on_deploy: list[Any] = Field(default_factory=lambda: ["slack"])
    on_accept: list[Any] = Field(default_factory=lambda: ["slack"])
    on_reject: list[Any] = Field(default_factory=lambda: ["slack"])

    def channels_for(self, event: str) -> list[Any]:
        return list(getattr(self, event, None) or [])


class ReleaseConfig(_ConfigModel):
    tag_pattern: str = "v*"
    preview_url_template: str = "qa-{tag}.{domain}"
    tiers: dict[str, TierConfig] = Field(default_factory=dict)
    notifications: NotificationsConfig = Field(default_factory=NotificationsConfig)

    def tier(self, name: str | None) -> TierConfig | None:
        if name is None:
            return None
        return self.tiers.get(name)


_DEFAULT_RAW: dict[str, Any] = {
    "tag_pattern": "v*",
    "preview_url_template": "qa-{tag}.{domain}",
    "tiers": {
        "rc": {
            "gates": ["tests", "security", "coverage", "qa-approval"],
            "coverage_threshold": 80,
            "auto_promote": False,
        },
        "beta": {
            "gates": ["tests", "security"],
            "coverage_threshold": 70,
            "auto_promote": False,
        },
        "release": {
            "gates": ["tests", "security", "coverage"],
            "coverage_threshold": 80,
            "requires_promotion": True,
        },
    },
    "notifications": {
        "on_deploy": ["slack"],
        "on_accept": ["slack"],
        "on_reject": ["slack"],
    },
}

DEFAULT_RELEASE_CONFIG = ReleaseConfig.model_validate(_DEFAULT_RAW)


@dataclass(frozen=True)
class ConfigValidation:
    valid: bool
    errors: list[str] = field(default_factory=list)


def _release_section(raw: Mapping[str, Any] | None) -> dict[str, Any]:
    if not isinstance(raw, Mapping):
        return {}
    section = raw.get("release")
    if not isinstance(section, Mapping):
        return {}
    return copy.deepcopy(dict(section))


def load_release_config(raw: Mapping[str, Any] | None) -> ReleaseConfig:
    """Build a release config from a project config mapping.

    Only the ``release`` section is read. Missing fields, missing tiers and
    missing per-tier fields fall back to ``DEFAULT_RELEASE_CONFIG``. The result
    never shares mutable state with the input or with other results.
    """
    section = _release_section(raw)
    overrides = ReleaseConfig.model_validate(section)
    fields_set = overrides.model_fields_set

    merged = DEFAULT_RELEASE_CONFIG.model_dump()
    if "tag_pattern" in fields_set:
        merged["tag_pattern"] = overrides.tag_pattern
    if "preview_url_template" in fields_set:
        merged["preview_url_template"] = overrides.preview_url_template
    if "notifications" in fields_set:
        notifications = overrides.notifications
        for name in notifications.model_fields_set:
            merged["notifications"][name] = getattr(notifications, name)

    for tier_name, tier in overrides.tiers.items():
        base = merged["tiers"].get(tier_name, TierConfig().model_dump())
        base.update(tier.model_dump(include=tier.model_fields_set))
        merged["tiers"][tier_name] = base

    return ReleaseConfig.model_validate(copy.deepcopy(merged))


def load_release_config_file(path: str | Path | None) -> ReleaseConfig:
    if path is None:
        return load_release_config(None)
    config_path = Path(path).expanduser()
    payload = json.loads(config_path.read_text(encoding="utf-8"))
    if isinstance(payload, Mapping) and "release" not in payload:
        payload = {"release": payload}
    return load_release_config(payload)


def validate_release_config(config: ReleaseConfig) -> ConfigValidation:
    errors: list[str] = []

    if not isinstance(config.tag_pattern, str) or not config.tag_pattern.strip():
        errors.append("tagPattern must be a non-empty glob pattern")

    if "{tag}" not in config.preview_url_template:
        errors.append("previewUrlTemplate must contain the {tag} placeholder")

    for tier_name, tier in config.tiers.items():
        for gate in tier.gates:
            if gate not in KNOWN_GATES:
                errors.append(
                    f"tier '{tier_name}' references unknown gate '{gate}' "
                    f"(known: {', '.join(KNOWN_GATES)})"
                )
        if not 0 <= tier.coverage_threshold <= 100:
            errors.append(f"tier '{tier_name}' coverageThreshold must be between 0 and 100")

    for event in ("on_deploy", "on_accept", "on_reject"):
        for channel in config.notifications.channels_for(event):
            if not isinstance(channel, str) or not channel.strip():
                errors.append(f"notification channel for {to_camel(event)} must be a non-empty string")

    return ConfigValidation(valid=not errors, errors=errors)


def get_gates_for_tier(config: ReleaseConfig, tier: str | None) -> list[str]:
    tier_config = config.tier(tier)
    if tier_config is None:
        return []
    return list(tier_config.gates)


def get_preview_url(config: ReleaseConfig, tag: str, domain: str) -> str:
    return config.preview_url_template.replace("{tag}", tag).replace("{domain}", domain)
