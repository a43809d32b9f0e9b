"""
Panel configuration models.

A panel is a named, ordered list of accept/reject rules. Two rule dialects
exist in stored configurations and both are supported:

- substring: {"kind": "substring", "field": "from", "addresses": ["@company.com"], "action": "accept"}
- pattern:   {"kind": "pattern", "field": "from", "pattern": "@company\\.com$", "action": "accept"}

Older configurations omit "kind"; those are classified by which of
"addresses" or "pattern" they carry.
"""

from typing import Annotated, Any, List, Literal, Union

from pydantic import AliasChoices, BaseModel, Discriminator, Field, Tag

RuleField = Literal["from", "to"]
RuleAction = Literal["accept", "reject"]


class SubstringRule(BaseModel):
    """Matches when the header contains any of the addresses (case-insensitive)."""

    kind: Literal["substring"] = "substring"
    field: RuleField
    addresses: List[str] = Field(default_factory=list)
    action: RuleAction


class PatternRule(BaseModel):
    """Matches when the regular expression is found in the header (case-insensitive)."""

    kind: Literal["pattern"] = "pattern"
    field: RuleField
    pattern: str = Field(validation_alias=AliasChoices("pattern", "expression"))
    action: RuleAction


def _rule_kind(value: Any) -> str:
    if isinstance(value, dict):
        kind = value.get("kind")
        if kind:
            return kind
        if "pattern" in value or "expression" in value:
            return "pattern"
        return "substring"
    return getattr(value, "kind", "substring")


PanelRule = Annotated[
    Union[
        Annotated[SubstringRule, Tag("substring")],
        Annotated[PatternRule, Tag("pattern")],
    ],
    Discriminator(_rule_kind),
]


class PanelConfig(BaseModel):
    """A named panel; rule order matters (first match wins)."""

    name: str
    rules: List[PanelRule] = Field(default_factory=list)

    @property
    def is_unfiltered(self) -> bool:
        return not self.rules
