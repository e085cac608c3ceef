"""Load and validate the desired-state document."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Mapping

import yaml
from jinja2 import Environment, FileSystemLoader, StrictUndefined
from jinja2.exceptions import TemplateError
from pydantic import BaseModel, ConfigDict, Field, ValidationError as PydanticValidationError
from pydantic import field_validator, model_validator

from . import registry
from .errors import ConfigurationError, UnknownTypeError
from .models import DomainConfig, NameserverCount, RawRecordConfig, to_nameservers


class RecordSpec(BaseModel):
    """Schema for one desired record.

    The data is either positional ``args`` or a single ``value`` written as
    zone-file rdata.
    """

    model_config = ConfigDict(extra="forbid")

    type: str
    name: str = "@"
    args: list[Any] | None = None
    value: str | None = None
    ttl: int = Field(default=0, ge=0)
    meta: dict[str, Any] = Field(default_factory=dict)
    subdomain: str = ""
    ensure_absent: bool = False

    @field_validator("type")
    @classmethod
    def _uppercase_type(cls, value: str) -> str:
        """Normalise RR type to uppercase."""
        return value.strip().upper()

    @model_validator(mode="after")
    def _one_data_form(self) -> RecordSpec:
        """Require exactly one of ``args`` and ``value``."""
        if (self.args is None) == (self.value is None):
            raise ValueError(f"{self.type} {self.name!r}: give exactly one of 'args' or 'value'")
        return self


class DomainSpec(BaseModel):
    """Schema for one domain of the document."""

    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    name: str
    registrar: str = ""
    dsps: dict[str, int | None] = Field(default_factory=dict, alias="dnsProviders")
    nameservers: list[str] = Field(default_factory=list)
    records: list[RecordSpec] = Field(default_factory=list)
    default_ttl: int = Field(default=0, ge=0)
    keep_unknown: bool = False
    ignore: list[str] = Field(default_factory=list)
    meta: dict[str, Any] = Field(default_factory=dict)

    @field_validator("name")
    @classmethod
    def _strip_name(cls, value: str) -> str:
        """Strip the trailing dot; keep a split-horizon ``!tag`` suffix."""
        zone, bang, tag = value.strip().partition("!")
        zone = zone.rstrip(".")
        if not zone:
            raise ValueError("domain name cannot be empty")
        if bang and not tag.strip():
            raise ValueError(f"domain {value!r} has an empty split-horizon tag")
        return f"{zone}!{tag.strip()}" if bang else zone


class DocumentSpec(BaseModel):
    """Schema for the whole document."""

    model_config = ConfigDict(extra="forbid")

    domains: list[DomainSpec]


def _render_document(path: Path, extra_context: Mapping[str, Any] | None = None) -> str:
    """Render a document through Jinja2."""
    env = Environment(
        loader=FileSystemLoader(str(path.parent)),
        undefined=StrictUndefined,
        autoescape=False,
        keep_trailing_newline=True,
    )
    context: dict[str, Any] = {"env": os.environ}
    if extra_context:
        context.update(extra_context)
    try:
        return env.get_template(path.name).render(**context)
    except TemplateError as exc:
        raise ConfigurationError(f"failed to render {path}: {exc}") from exc


def _record_args(spec: RecordSpec, domain: str) -> list[Any]:
    """Return the positional arguments (after the label) of a record entry."""
    if spec.args is not None:
        return list(spec.args)
    try:
        handler = registry.lookup(spec.type)
    except UnknownTypeError as exc:
        raise UnknownTypeError(f"{domain}: {exc} (label {spec.name!r})") from exc
    try:
        return handler.text_to_args(spec.value or "")
    except ValueError as exc:
        raise ConfigurationError(f"{domain}: {spec.type} {spec.name!r}: {exc}") from exc


def _to_domain(spec: DomainSpec) -> DomainConfig:
    """Convert a validated domain entry into a DomainConfig."""
    raw_records = [
        RawRecordConfig(
            type=record.type,
            args=[record.name, *_record_args(record, spec.name)],
            metas=[record.meta] if record.meta else [],
            ttl=record.ttl or spec.default_ttl,
            subdomain=record.subdomain,
            ensure_absent=record.ensure_absent,
        )
        for record in spec.records
    ]
    metadata = {str(key): "" if value is None else str(value) for key, value in spec.meta.items()}
    return DomainConfig(
        name=spec.name,
        registrar_name=spec.registrar,
        dsps={name: NameserverCount.from_int(count) for name, count in spec.dsps.items()},
        raw_records=raw_records,
        nameservers=to_nameservers(spec.nameservers),
        metadata=metadata,
        default_ttl=spec.default_ttl,
        keep_unknown=spec.keep_unknown,
        unmanaged=list(spec.ignore),
    )


def parse_document(data: Any) -> list[DomainConfig]:
    """Validate a parsed document and return one DomainConfig per domain."""
    if not isinstance(data, dict):
        raise ConfigurationError("the document must be a mapping with a 'domains' list")
    try:
        spec = DocumentSpec(**data)
    except PydanticValidationError as exc:
        raise ConfigurationError(f"document validation error: {exc}") from exc
    seen: set[str] = set()
    domains: list[DomainConfig] = []
    for domain_spec in spec.domains:
        dc = _to_domain(domain_spec)
        if dc.unique_name in seen:
            raise ConfigurationError(f"domain {dc.unique_name!r} is listed more than once")
        seen.add(dc.unique_name)
        domains.append(dc)
    return domains


def load_document(path: Path | str, template_vars: Mapping[str, Any] | None = None) -> list[DomainConfig]:
    """Render, parse and validate a desired-state document (YAML or JSON)."""
    path = Path(path)
    if not path.is_file():
        raise ConfigurationError(f"document {path} does not exist")
    rendered = _render_document(path, template_vars)
    try:
        data = yaml.safe_load(rendered) or {}
    except yaml.YAMLError as exc:
        raise ConfigurationError(f"failed to parse {path}: {exc}") from exc
    return parse_document(data)
