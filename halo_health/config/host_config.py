"""
Host configuration schema (read-only view).

The host owns ``config.json``; the health system only reads it to judge
whether it is usable and to summarise it in diagnostic reports. Two
historical layouts exist:

- v1: ``aiSources.current`` names the active provider; ``custom.apiKey``
  or ``<provider>.accessToken`` carry the credentials.
- v2: ``aiSources.version == 2``, ``currentId`` (may be null) selects one
  entry of ``sources[]``, each with ``authType`` of ``api-key`` or ``oauth``.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict, List, Literal, Optional, Tuple, Union
from urllib.parse import urlparse

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator


def _text(value: Any) -> Optional[str]:
    """Non-empty string or None; other JSON types never count."""
    return value if isinstance(value, str) and value else None


class AISourceEntry(BaseModel):
    """One configured AI source (v2 layout). Nothing here is schema-critical."""
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    id: Any = None
    name: Any = None
    provider: Any = None
    auth_type: Any = Field(default=None, alias="authType")
    api_key: Any = Field(default=None, alias="apiKey")
    access_token: Any = Field(default=None, alias="accessToken")
    api_url: Any = Field(default=None, alias="apiUrl")

    def credential(self) -> Optional[str]:
        if self.auth_type == "api-key":
            return _text(self.api_key)
        if self.auth_type == "oauth":
            return _text(self.access_token)
        return None

    def has_credentials(self) -> bool:
        return self.credential() is not None


class AISourcesV2(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    version: Literal[2]
    # Required key; null or any other value allowed
    current_id: Any = Field(..., alias="currentId")
    sources: List[AISourceEntry] = Field(default_factory=list)

    @field_validator("sources", mode="before")
    @classmethod
    def _skip_malformed_sources(cls, value: Any) -> List[Any]:
        if not isinstance(value, list):
            return []
        return [entry for entry in value if isinstance(entry, dict)]

    def active(self) -> Optional[AISourceEntry]:
        for source in self.sources:
            if source.id is not None and source.id == self.current_id:
                return source
        return None


class CustomSource(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    api_key: Any = Field(default=None, alias="apiKey")
    api_url: Any = Field(default=None, alias="apiUrl")
    provider: Any = None


class AISourcesV1(BaseModel):
    """Legacy layout; provider blocks other than ``custom`` land in extras."""
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    current: str
    custom: Optional[CustomSource] = None

    @model_validator(mode="before")
    @classmethod
    def _reject_v2_layout(cls, data: Any) -> Any:
        if isinstance(data, dict) and data.get("version") == 2:
            raise ValueError("aiSources declares version 2")
        return data

    @field_validator("custom", mode="before")
    @classmethod
    def _ignore_malformed_custom(cls, value: Any) -> Any:
        return value if isinstance(value, dict) else None


class HostConfig(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    ai_sources: Union[AISourcesV2, AISourcesV1] = Field(alias="aiSources")
    # Any JSON object or array; null and scalars are rejected
    permissions: Union[Dict[str, Any], List[Any]]
    mcp_servers: Any = Field(default=None, alias="mcpServers")

    @property
    def is_v2(self) -> bool:
        return isinstance(self.ai_sources, AISourcesV2)

    def active_credential(self) -> Optional[str]:
        """API key or access token of the active source, if usable."""
        sources = self.ai_sources
        if isinstance(sources, AISourcesV2):
            active = sources.active()
            return active.credential() if active else None
        if sources.current == "custom":
            return _text(sources.custom.api_key) if sources.custom else None
        block = (sources.model_extra or {}).get(sources.current)
        return _text(block.get("accessToken")) if isinstance(block, dict) else None

    def has_credentials(self) -> bool:
        return self.active_credential() is not None

    def summary(self) -> Dict[str, Any]:
        """Credential-free summary for diagnostic reports."""
        current_source = "none"
        provider = "unknown"
        has_api_key = False
        api_url_host = ""

        sources = self.ai_sources
        if isinstance(sources, AISourcesV2):
            active = sources.active()
            if active:
                current_source = _text(active.provider) or "unknown"
                provider = _text(active.provider) or "unknown"
                has_api_key = active.has_credentials()
                if active.auth_type == "api-key" and _text(active.api_url):
                    api_url_host = urlparse(active.api_url).hostname or ""
        else:
            current_source = sources.current
            provider = sources.current
            has_api_key = self.has_credentials()
            if sources.current == "custom" and sources.custom:
                provider = _text(sources.custom.provider) or "custom"
                if _text(sources.custom.api_url):
                    api_url_host = urlparse(sources.custom.api_url).hostname or ""

        return {
            "currentSource": current_source,
            "provider": provider,
            "hasApiKey": has_api_key,
            "apiUrlHost": api_url_host,
            "mcpServerCount": len(self.mcp_servers) if isinstance(self.mcp_servers, dict) else 0,
        }


def _looks_like_v2(data: Dict[str, Any]) -> bool:
    ai_sources = data.get("aiSources")
    return isinstance(ai_sources, dict) and ai_sources.get("version") == 2


def describe_validation_errors(data: Dict[str, Any], exc: ValidationError) -> List[str]:
    """Turn pydantic errors into the short field messages shown to users."""
    is_v2 = _looks_like_v2(data)
    # Union errors carry the member model name as the second loc element
    layout = "AISourcesV2" if is_v2 else "AISourcesV1"
    messages: List[str] = []
    for error in exc.errors():
        loc = tuple(error.get("loc") or ())
        head = loc[0] if loc else ""
        if head == "aiSources":
            if len(loc) > 1 and loc[1] in ("AISourcesV1", "AISourcesV2") and loc[1] != layout:
                continue
            field_path = [str(p) for p in loc[2:]] if len(loc) > 2 else []
            if not field_path or field_path[0] in ("current", "currentId"):
                msg = "Missing aiSources.currentId field" if is_v2 else "Missing aiSources.current field"
            else:
                msg = f"Invalid aiSources.{'.'.join(field_path)}: {error.get('msg')}"
        elif head == "permissions":
            msg = "Missing permissions field"
        else:
            msg = f"{'.'.join(str(p) for p in loc)}: {error.get('msg')}"
        if msg not in messages:
            messages.append(msg)
    return messages


def parse_host_config(data: Any) -> Tuple[Optional[HostConfig], List[str]]:
    """Validate decoded JSON. Returns (config, []) or (None, errors)."""
    if not isinstance(data, dict):
        return None, ["Config root is not an object"]
    try:
        return HostConfig.model_validate(data), []
    except ValidationError as e:
        return None, describe_validation_errors(data, e)


def load_host_config(path: Path) -> Optional[HostConfig]:
    """Best-effort load for reporting. Any problem yields None."""
    try:
        data = json.loads(Path(path).read_text(encoding="utf-8"))
    except (OSError, ValueError):
        return None
    config, _ = parse_host_config(data)
    return config
