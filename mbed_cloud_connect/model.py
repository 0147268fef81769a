"""Base model for all JSON backed API objects."""

from __future__ import annotations

from dataclasses import dataclass, fields
from typing import Any, Mapping, Self

from mashumaro import DataClassDictMixin
from mashumaro.config import BaseConfig


def field_aliases(cls: type) -> dict[str, str]:
    """Return a map of python field name to API name for a dataclass."""
    return {
        f.name: alias
        for f in fields(cls)
        if (alias := f.metadata.get("alias")) is not None
    }


@dataclass
class ApiDataClass(DataClassDictMixin):
    """Base model for objects parsed from and sent to the API.

    Subclasses declare the wire names of their fields with `field_options(alias=...)`.
    """

    @classmethod
    def parse(cls, raw_data: Mapping[str, Any]) -> Self:
        """Parse a new dataclass from an API response record."""
        return cls.from_dict(dict(raw_data))

    @property
    def raw_data(self) -> dict[str, Any]:
        """Return the object as it is represented by the API."""
        return self.to_dict(by_alias=True, omit_none=True)

    class Config(BaseConfig):
        code_generation_options = [
            "TO_DICT_ADD_BY_ALIAS_FLAG",
            "TO_DICT_ADD_OMIT_NONE_FLAG",
        ]
        serialize_by_alias = True
        allow_deserialization_not_by_alias = True
