"""XML patch applier: writes resolved values at XPath-selected nodes.

The body is parsed with lxml in strict mode (no recovery, no network access,
no entity expansion). Each rule selects nodes with XPath 1.0:

- attribute node (``//user/@status``) -> the attribute value is replaced
- text node (``//root/text()``)       -> that text (or tail) is replaced
- element                            -> children removed, value set as its text

A rule that selects nothing, or whose XPath evaluates to a number, string or
boolean, changes nothing.
"""

from __future__ import annotations

import logging
from typing import Any

from lxml import etree

from restive_parser.errors import InvalidPatchPathError, InvalidXmlBodyError
from restive_parser.models import PatchRule
from restive_parser.resolver import VariableResolver, resolve_text

logger = logging.getLogger(__name__)


async def apply_xml_patches(
    xml_text: str,
    rules: list[PatchRule],
    resolve_variables: VariableResolver,
) -> str:
    """Apply *rules* in order to an XML document and return the serialized result.

    Raises:
        InvalidXmlBodyError: If *xml_text* is not well-formed XML.
        InvalidPatchPathError: If a rule path is not valid XPath.
    """
    if not rules:
        return xml_text

    tree = _parse(xml_text)

    for rule in rules:
        resolved = await resolve_text(resolve_variables, rule.raw_value)
        nodes = select_nodes(tree, rule.path)
        logger.debug("XML patch %s matched %d node(s)", rule.path, len(nodes))
        for node in nodes:
            _apply_value(node, resolved)

    return _serialize(tree, xml_text)


def _parse(xml_text: str) -> etree._ElementTree:
    # The body is already decoded text; its encoding declaration describes the
    # original bytes, not the UTF-8 bytes handed to lxml here.
    parser = etree.XMLParser(
        recover=False, resolve_entities=False, no_network=True, encoding="utf-8"
    )
    try:
        # Bytes, because lxml rejects str input that carries an encoding declaration.
        root = etree.fromstring(xml_text.encode("utf-8"), parser)
    except etree.XMLSyntaxError as e:
        raise InvalidXmlBodyError(f"XML patch: body is not valid XML: {e}") from e
    return root.getroottree()


def select_nodes(tree: etree._ElementTree, path: str) -> list[Any]:
    """Evaluate *path* and return only node results (elements, attributes, text).

    Raises:
        InvalidPatchPathError: If *path* is not valid XPath.
    """
    try:
        result = tree.xpath(path)
    except etree.XPathError as e:
        raise InvalidPatchPathError(f"XML patch: invalid XPath '{path}': {e}") from e

    if not isinstance(result, list):
        return []
    return [node for node in result if _is_node(node)]


def _is_node(result: Any) -> bool:
    if isinstance(result, etree._Element):
        return True
    # Attribute and text results are "smart strings" that know their parent.
    return getattr(result, "getparent", None) is not None and result.getparent() is not None


def _apply_value(node: Any, value: str) -> None:
    if isinstance(node, etree._Element):
        for child in list(node):
            node.remove(child)
        node.text = value
        return

    parent = node.getparent()
    if node.is_attribute:
        parent.set(node.attrname, value)
    elif node.is_tail:
        parent.tail = value
    else:
        parent.text = value


def _serialize(tree: etree._ElementTree, original_text: str) -> str:
    if original_text.lstrip().startswith("<?xml"):
        encoding = tree.docinfo.encoding or "UTF-8"
        return etree.tostring(tree, xml_declaration=True, encoding=encoding).decode(encoding)
    return etree.tostring(tree, encoding="unicode")
