"""
Pydantic v2 Configuration Models for Harvest

Provides strict, typed configuration for every harvest stage:
- HTTP client settings (timeouts, TLS, connect retries)
- Remote endpoint templates
- On-disk layout (directory names, record suffixes)
- Selection predicates (archive filter, category filter, identifier pattern,
  format markers)
- Pacing (conversion endpoint spacing, listing retries)
- Top-level HarvestConfig as single source of truth

All models use extra="forbid" for strict validation. Environment variables
and CLI overrides follow: file < env < CLI precedence.
"""

from __future__ import annotations

import re
from typing import ClassVar, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

# ============================================================================
# Network
# ============================================================================


class HttpClientConfig(BaseModel):
    """Configuration for HTTP client behavior."""

    model_config: ClassVar[ConfigDict] = ConfigDict(extra="forbid")

    user_agent: str = Field(default="mjlogkit-harvest/0.3", description="User-Agent string")
    timeout_connect_s: float = Field(default=10.0, description="Connection timeout in seconds")
    timeout_read_s: float = Field(default=60.0, description="Read timeout in seconds")
    connect_retries: int = Field(default=2, description="Transport-level connect retries")
    verify_tls: bool = Field(default=True, description="Verify TLS certificates")
    chunk_size_bytes: int = Field(default=1 << 16, description="Stream chunk size")

    @field_validator("timeout_connect_s", "timeout_read_s")
    @classmethod
    def validate_timeouts(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("Timeouts must be > 0")
        return v

    @field_validator("connect_retries")
    @classmethod
    def validate_retries(cls, v: int) -> int:
        if v < 0:
            raise ValueError("connect_retries must be >= 0")
        return v

    @field_validator("chunk_size_bytes")
    @classmethod
    def validate_chunk_size(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("chunk_size_bytes must be > 0")
        return v


class EndpointsConfig(BaseModel):
    """Remote endpoint templates; ``{name}`` and ``{id}`` are substituted per item."""

    model_config: ClassVar[ConfigDict] = ConfigDict(extra="forbid")

    listing_url: str = Field(
        default="https://tenhou.net/sc/raw/list.cgi?old",
        description="Listing that yields file/size pairs",
    )
    archive_url: str = Field(
        default="https://tenhou.net/sc/raw/dat/{name}",
        description="Archive download template",
    )
    record_url: str = Field(
        default="http://tenhou.net/0/log/?{id}",
        description="Raw record download template",
    )
    convert_url: str = Field(
        default="https://tenhou.net/5/mjlog2json.cgi?{id}",
        description="Conversion endpoint template",
    )

    @field_validator("archive_url")
    @classmethod
    def validate_archive_url(cls, v: str) -> str:
        if "{name}" not in v:
            raise ValueError("archive_url must contain a {name} placeholder")
        return v

    @field_validator("record_url", "convert_url")
    @classmethod
    def validate_identifier_urls(cls, v: str) -> str:
        if "{id}" not in v:
            raise ValueError("URL template must contain an {id} placeholder")
        return v


# ============================================================================
# Filesystem
# ============================================================================


class LayoutConfig(BaseModel):
    """Directory names (relative to the working root) and record suffixes."""

    model_config: ClassVar[ConfigDict] = ConfigDict(extra="forbid")

    index_dir: str = Field(default="index", description="Synchronized archives")
    downloads_dir: str = Field(default="downloads", description="Unclassified raw/converted pairs")
    trusted_dir: str = Field(default="trusted", description="Pairs that passed validation")
    quarantined_dir: str = Field(default="quarantined", description="Pairs that failed validation")
    raw_suffix: str = Field(default=".xml", description="Raw record suffix")
    converted_suffix: str = Field(default=".json", description="Converted artifact suffix")

    @field_validator("raw_suffix", "converted_suffix")
    @classmethod
    def validate_suffix(cls, v: str) -> str:
        if not v.startswith(".") or len(v) < 2 or "/" in v:
            raise ValueError("Suffix must look like '.ext'")
        return v

    @field_validator("index_dir", "downloads_dir", "trusted_dir", "quarantined_dir")
    @classmethod
    def validate_dir(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("Directory names must be non-empty")
        return v


# ============================================================================
# Selection & Validation
# ============================================================================


def _compile(pattern: str, *, groups: int) -> str:
    try:
        compiled = re.compile(pattern)
    except re.error as e:
        raise ValueError(f"Invalid regular expression {pattern!r}: {e}") from e
    if compiled.groups < groups:
        raise ValueError(f"Pattern {pattern!r} must define at least {groups} capture group(s)")
    return pattern


class SelectionConfig(BaseModel):
    """Patterns and markers that select and validate records."""

    model_config: ClassVar[ConfigDict] = ConfigDict(extra="forbid")

    listing_pattern: str = Field(
        default=r"file:'([^']*)',size:([0-9]+)",
        description="Regex with (name, size) groups applied to the listing body",
    )
    archive_filter: str = Field(
        default="scc", description="Regex searched in listing names to select archives"
    )
    archive_glob: str = Field(
        default="scc*.html.gz", description="Glob matched (recursively) inside the index dir"
    )
    category_filter: str = Field(
        default="四鳳南喰赤－", description="Regex searched in archive lines to select records"
    )
    identifier_pattern: str = Field(
        default=r'log=([^"]+)', description="Regex whose first group is the identifier"
    )
    raw_marker: str = Field(default='<mjloggm ver="2.3">', description="Raw format marker")
    converted_marker: str = Field(default='"ver":2.3', description="Converted format marker")

    @field_validator("listing_pattern")
    @classmethod
    def validate_listing_pattern(cls, v: str) -> str:
        return _compile(v, groups=2)

    @field_validator("identifier_pattern")
    @classmethod
    def validate_identifier_pattern(cls, v: str) -> str:
        return _compile(v, groups=1)

    @field_validator("archive_filter", "category_filter")
    @classmethod
    def validate_filter(cls, v: str) -> str:
        return _compile(v, groups=0)

    @field_validator("raw_marker", "converted_marker")
    @classmethod
    def validate_marker(cls, v: str) -> str:
        if not v:
            raise ValueError("Markers must be non-empty")
        return v


class PacingConfig(BaseModel):
    """Request pacing and listing retry policy."""

    model_config: ClassVar[ConfigDict] = ConfigDict(extra="forbid")

    convert_min_interval_ms: int = Field(
        default=300, description="Minimum spacing between conversion requests (global)"
    )
    listing_max_attempts: int = Field(default=4, description="Listing fetch attempts")
    listing_max_delay_s: float = Field(default=30.0, description="Listing retry deadline")

    @field_validator("convert_min_interval_ms")
    @classmethod
    def validate_interval(cls, v: int) -> int:
        if v < 0:
            raise ValueError("convert_min_interval_ms must be >= 0")
        return v

    @field_validator("listing_max_attempts")
    @classmethod
    def validate_attempts(cls, v: int) -> int:
        if v < 1:
            raise ValueError("listing_max_attempts must be >= 1")
        return v


# ============================================================================
# Top-Level Configuration
# ============================================================================


class HarvestConfig(BaseModel):
    """
    Single source of truth for harvest configuration.

    Loaded from file (YAML/JSON), overlaid with environment variables,
    and finally overridden by CLI arguments. Precedence: file < env < CLI.
    """

    model_config: ClassVar[ConfigDict] = ConfigDict(extra="forbid", validate_assignment=True)

    root: str = Field(default=".", description="Working directory holding every stage's output")
    workers: int = Field(default=1, description="Worker threads per stage")
    limit: Optional[int] = Field(default=None, description="Max items processed per run")
    http: HttpClientConfig = Field(
        default_factory=HttpClientConfig, description="HTTP client configuration"
    )
    endpoints: EndpointsConfig = Field(
        default_factory=EndpointsConfig, description="Remote endpoint templates"
    )
    layout: LayoutConfig = Field(default_factory=LayoutConfig, description="On-disk layout")
    selection: SelectionConfig = Field(
        default_factory=SelectionConfig, description="Selection patterns and markers"
    )
    pacing: PacingConfig = Field(default_factory=PacingConfig, description="Pacing policy")

    @field_validator("workers")
    @classmethod
    def validate_workers(cls, v: int) -> int:
        if v < 1:
            raise ValueError("workers must be >= 1")
        return v

    @field_validator("limit")
    @classmethod
    def validate_limit(cls, v: Optional[int]) -> Optional[int]:
        if v is not None and v <= 0:
            raise ValueError("limit must be > 0 or None")
        return v

    def config_hash(self) -> str:
        """
        Compute deterministic SHA256 hash of config for reproducibility.

        Returns:
            Hex-encoded SHA256 hash of normalized config JSON.
        """
        import hashlib
        import json

        normalized = json.dumps(self.model_dump(mode="json"), sort_keys=True, separators=(",", ":"))
        return hashlib.sha256(normalized.encode()).hexdigest()
