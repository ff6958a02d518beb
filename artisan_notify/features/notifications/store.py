"""Storage seams for the notification engine.

The engine depends only on the abstract ``DeliveryRecordStore`` and
``TemplateStore``; the in-memory implementations here back the default
deployment and the tests.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any

import yaml
from jinja2 import StrictUndefined, TemplateError, TemplateSyntaxError, meta
from jinja2.sandbox import SandboxedEnvironment

from artisan_notify.features.notifications.models import DeliveryRecord

logger = logging.getLogger(__name__)

DEFAULT_LANGUAGE = "en"


class DeliveryRecordStore(ABC):
    """Persistence for delivery records, keyed by gateway message id."""

    @abstractmethod
    async def get(self, message_id: str) -> DeliveryRecord | None: ...

    @abstractmethod
    async def save(self, record: DeliveryRecord) -> None: ...

    @abstractmethod
    async def delete_many(self, message_ids: Iterable[str]) -> int: ...

    @abstractmethod
    async def all_records(self) -> list[DeliveryRecord]: ...

    @abstractmethod
    async def count(self) -> int: ...

    async def updated_before(self, cutoff: datetime) -> list[DeliveryRecord]:
        return [r for r in await self.all_records() if r.updated_at < cutoff]

    async def by_recipient(self, recipient: str) -> list[DeliveryRecord]:
        return [r for r in await self.all_records() if r.recipient == recipient]


class InMemoryDeliveryRecordStore(DeliveryRecordStore):
    def __init__(self) -> None:
        self._records: dict[str, DeliveryRecord] = {}

    async def get(self, message_id: str) -> DeliveryRecord | None:
        return self._records.get(message_id)

    async def save(self, record: DeliveryRecord) -> None:
        self._records[record.gateway_message_id] = record

    async def delete_many(self, message_ids: Iterable[str]) -> int:
        removed = 0
        for message_id in message_ids:
            if self._records.pop(message_id, None) is not None:
                removed += 1
        return removed

    async def all_records(self) -> list[DeliveryRecord]:
        return list(self._records.values())

    async def count(self) -> int:
        return len(self._records)


class TemplateRenderError(Exception):
    """Raised when a template cannot be rendered with the given parameters."""

    def __init__(self, message: str, template_name: str, missing_params: list[str] | None = None) -> None:
        super().__init__(message)
        self.template_name = template_name
        self.missing_params = missing_params or []


_env = SandboxedEnvironment(autoescape=False, undefined=StrictUndefined)


@dataclass(frozen=True)
class MessageTemplate:
    """A pre-approved message skeleton.

    ``body`` uses ``{{param}}`` placeholders. Rich sends pass the parameter
    values to the gateway as-is; plain sends render the body locally.
    """

    name: str
    body: str
    language: str = DEFAULT_LANGUAGE
    approved: bool = True
    category: str = "transactional"

    @property
    def required_params(self) -> set[str]:
        try:
            return set(meta.find_undeclared_variables(_env.parse(self.body)))
        except TemplateSyntaxError:
            # Malformed bodies are reported when rendered.
            return set()

    def missing_params(self, params: dict[str, Any]) -> list[str]:
        return sorted(self.required_params - set(params))


class TemplateStore(ABC):
    """Lookup and rendering of message templates."""

    @abstractmethod
    async def get(self, name: str, language: str = DEFAULT_LANGUAGE) -> MessageTemplate | None:
        """Return the template for ``language``, falling back to the default language."""

    @abstractmethod
    async def all_templates(self) -> list[MessageTemplate]: ...

    def render(self, template: MessageTemplate, params: dict[str, Any]) -> str:
        """Render a template body to plain text.

        Raises:
            TemplateRenderError: If parameters are missing or the body is malformed.
        """
        missing = template.missing_params(params)
        if missing:
            msg = f"Missing parameters for template {template.name}: {', '.join(missing)}"
            raise TemplateRenderError(msg, template.name, missing)
        try:
            return _env.from_string(template.body).render(**params)
        except TemplateError as exc:
            msg = f"Failed to render template {template.name}: {exc}"
            raise TemplateRenderError(msg, template.name) from exc


class InMemoryTemplateStore(TemplateStore):
    def __init__(self, templates: Iterable[MessageTemplate] = ()) -> None:
        self._templates: dict[tuple[str, str], MessageTemplate] = {}
        for template in templates:
            self.add(template)

    def add(self, template: MessageTemplate) -> None:
        self._templates[(template.name, template.language)] = template
        logger.debug(
            "Template registered",
            extra={"template": template.name, "language": template.language},
        )

    def remove(self, name: str, language: str = DEFAULT_LANGUAGE) -> bool:
        return self._templates.pop((name, language), None) is not None

    async def get(self, name: str, language: str = DEFAULT_LANGUAGE) -> MessageTemplate | None:
        template = self._templates.get((name, language))
        if template is None and language != DEFAULT_LANGUAGE:
            template = self._templates.get((name, DEFAULT_LANGUAGE))
        return template

    async def all_templates(self) -> list[MessageTemplate]:
        return list(self._templates.values())


def load_templates_file(path: str | Path) -> list[MessageTemplate]:
    """Read message templates from a YAML file.

    The document is either a list of template mappings or a mapping with a
    ``templates`` list. Each entry needs ``name`` and ``body``; ``language``,
    ``approved`` and ``category`` are optional.

    Example:
        templates:
          - name: order_shipped
            body: "Hi {{ name }}, order {{ order_id }} has shipped."
          - name: order_shipped
            language: hi
            body: "..."

    Raises:
        OSError: If the file cannot be read.
        ValueError: If the document does not describe a list of templates.
    """
    path = Path(path)
    with path.open(encoding="utf-8") as f:
        document = yaml.safe_load(f)

    entries = document.get("templates") if isinstance(document, dict) else document
    if entries is None:
        entries = []
    if not isinstance(entries, list):
        msg = f"{path}: expected a list of templates"
        raise ValueError(msg)

    templates = []
    for index, entry in enumerate(entries):
        if not isinstance(entry, dict) or not entry.get("name") or not entry.get("body"):
            msg = f"{path}: template #{index} needs a name and a body"
            raise ValueError(msg)
        templates.append(
            MessageTemplate(
                name=str(entry["name"]),
                body=str(entry["body"]),
                language=str(entry.get("language", DEFAULT_LANGUAGE)),
                approved=bool(entry.get("approved", True)),
                category=str(entry.get("category", "transactional")),
            ),
        )
    logger.info("Templates loaded", extra={"path": str(path), "count": len(templates)})
    return templates


__all__ = [
    "DEFAULT_LANGUAGE",
    "DeliveryRecordStore",
    "InMemoryDeliveryRecordStore",
    "InMemoryTemplateStore",
    "MessageTemplate",
    "TemplateRenderError",
    "TemplateStore",
    "load_templates_file",
]
