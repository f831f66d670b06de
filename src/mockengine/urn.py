"""URN composition and parsing.

A URN has the shape:
    urn:pulumi:{stack}::{project}::{qualified_type}::{name}

The qualified type is the resource's own type token, prefixed by its parent's
own type and a "$" when the resource has a parent:
    urn:pulumi:dev::web::my:mod:Component$aws:s3:Bucket::logs

Only one level of ancestry is encoded; a grandparent's type never appears in
a grandchild's URN.
"""

from __future__ import annotations

from dataclasses import dataclass

URN_PREFIX = "urn:pulumi:"
URN_NAME_DELIMITER = "::"
TYPE_DELIMITER = "$"


class InvalidUrnError(ValueError):
    """Raised when a string cannot be parsed as a URN."""

    pass


@dataclass(frozen=True)
class Urn:
    """Parsed components of a URN."""

    stack: str
    project: str
    qualified_type: str
    name: str

    @property
    def type(self) -> str:
        """The resource's own type token, without any inherited parent type."""
        return self.qualified_type.split(TYPE_DELIMITER)[-1]

    def __str__(self) -> str:
        return format_urn(self.stack, self.project, self.qualified_type, self.name)


def qualify_type(type_: str, parent_type: str | None = None) -> str:
    """Compose the qualified type segment for a resource.

    Args:
        type_: The resource's own type token (package:module:Type).
        parent_type: The parent's own type token, if the resource has a parent.

    Returns:
        "parent_type$type_" with a parent, otherwise type_ unchanged.
    """
    if parent_type:
        return parent_type + TYPE_DELIMITER + type_
    return type_


def format_urn(stack: str, project: str, qualified_type: str, name: str) -> str:
    """Join URN components."""
    return URN_PREFIX + URN_NAME_DELIMITER.join([stack, project, qualified_type, name])


def parse_urn(urn: str) -> Urn:
    """Split a URN into its components.

    Logical names may themselves contain "::", so everything after the
    qualified type belongs to the name.

    Raises:
        InvalidUrnError: If the string is not a well-formed URN.
    """
    if not urn or not urn.startswith(URN_PREFIX):
        raise InvalidUrnError(f"invalid URN {urn!r}: missing '{URN_PREFIX}' prefix")

    parts = urn[len(URN_PREFIX):].split(URN_NAME_DELIMITER)
    if len(parts) < 4:
        raise InvalidUrnError(
            f"invalid URN {urn!r}: expected stack, project, type and name components"
        )

    stack, project, qualified_type = parts[0], parts[1], parts[2]
    name = URN_NAME_DELIMITER.join(parts[3:])
    if not qualified_type:
        raise InvalidUrnError(f"invalid URN {urn!r}: empty type component")

    return Urn(stack=stack, project=project, qualified_type=qualified_type, name=name)


def new_urn(
    stack: str,
    project: str,
    type_: str,
    name: str,
    parent: str | None = None,
) -> str:
    """Synthesize a URN from a parent URN string.

    This is the string-only form: the parent's own type is recovered by
    parsing the parent URN. MockMonitor prefers the type recorded on the
    parent's registry entry and uses this only for unregistered parents.
    """
    parent_type = parse_urn(parent).type if parent else None
    return format_urn(stack, project, qualify_type(type_, parent_type), name)
