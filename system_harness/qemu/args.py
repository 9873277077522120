"""Rendering of structured QEMU option values.

QEMU options such as ``-device`` or ``-machine`` take a comma-separated
property list (``driver=virtio-blk,drive=f1``); backend options such as
``-chardev`` prefix that list with the backend name and id
(``socket,id=serial0,path=serial.sock``).
"""

from enum import Enum
from typing import Any, ClassVar, Iterable, Iterator, Optional, Union

from pydantic import BaseModel, ConfigDict, field_validator, model_validator


def property_value(value: Any) -> Optional[str]:
    """Render a single property value, or None if it should be left out."""
    if value is None:
        return None
    if isinstance(value, Enum):
        return str(value.value)
    if isinstance(value, bool):
        return "on" if value else "off"
    return str(value)


def property_list(properties: Iterable[tuple[str, Any]]) -> str:
    """Join valued properties as ``key=value,key=value``."""
    rendered = []
    for key, value in properties:
        text = property_value(value)
        if text is not None:
            rendered.append(f"{key}={text}")
    return ",".join(rendered)


class PropertyModel(BaseModel):
    """An option value rendered as a property list.

    Declared fields come first, in declaration order and under their
    aliases; free-form extra properties (on models that allow them) follow
    in sorted key order.
    """

    model_config = ConfigDict(populate_by_name=True, extra="forbid")

    def properties(self) -> Iterator[tuple[str, Any]]:
        for name, field in type(self).model_fields.items():
            yield field.alias or name, getattr(self, name)
        extra = self.model_extra or {}
        for key in sorted(extra):
            yield key, extra[key]

    def to_arg(self) -> str:
        return property_list(self.properties())


class BackendArg(BaseModel):
    """A named backend with an id, e.g. a character or network device.

    The ``backend`` field is either the bare variant name (``"stdio"``) or a
    single-key mapping from the variant name to its properties
    (``{"socket": {"path": "serial.sock"}}``).
    """

    model_config = ConfigDict(extra="forbid")

    # Variant name -> required property names, in rendering order
    variants: ClassVar[dict[str, tuple[str, ...]]] = {}

    backend: Union[str, dict[str, Optional[dict[str, Any]]]]
    id: str

    @field_validator("backend")
    @classmethod
    def _single_variant(cls, value):
        if isinstance(value, dict) and len(value) != 1:
            raise ValueError("backend must name exactly one variant")
        return value

    @model_validator(mode="after")
    def _known_variant(self):
        if self.name not in self.variants:
            known = ", ".join(sorted(self.variants))
            raise ValueError(f"unknown backend '{self.name}' (expected one of: {known})")
        missing = [key for key in self.variants[self.name] if key not in self._raw_properties()]
        if missing:
            raise ValueError(f"backend '{self.name}' is missing: {', '.join(missing)}")
        return self

    @property
    def name(self) -> str:
        if isinstance(self.backend, str):
            return self.backend
        return next(iter(self.backend))

    def _raw_properties(self) -> dict[str, Any]:
        if isinstance(self.backend, str):
            return {}
        return self.backend[self.name] or {}

    def properties(self) -> list[tuple[str, Any]]:
        raw = self._raw_properties()
        return [(key, raw[key]) for key in self.variants[self.name]]

    def to_arg(self) -> str:
        props = property_list(self.properties())
        head = f"{self.name},id={self.id}"
        return f"{head},{props}" if props else head
