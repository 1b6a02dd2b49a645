"""
VAREJO-ECF — Module 1: MarkupExtractor
Parses the raw ConsultaEcf response into an element tree and exposes
null-propagating field readers scoped to one element.

The SOAP response wraps a dataset of flat, repeated records:
    <cupom><COO>123</COO><CHCFE>3525...</CHCFE>...</cupom>
    <cupom_item><COO>123</COO><MATNR>4000123</MATNR>...</cupom_item>
Namespaces are ignored: elements are matched by local name.
"""

import logging
import re
import xml.etree.ElementTree as ET
from decimal import Decimal, InvalidOperation
from typing import Iterator, Optional

logger = logging.getLogger(__name__)

_NUMERIC_PREFIX = re.compile(r"^[+-]?(\d+\.?\d*|\.\d+)([eE][+-]?\d+)?")


class ParseError(Exception):
    """Raised when the response text is not well-formed XML."""
    def __init__(self, message: str, status_code: int = 502):
        self.message = message
        self.status_code = status_code
        super().__init__(self.message)


def _local_name(tag) -> Optional[str]:
    if not isinstance(tag, str):
        return None
    return tag.split("}")[-1] if "}" in tag else tag


def _descendants(element: ET.Element, tag: str) -> Iterator[ET.Element]:
    for node in element.iter():
        if node is not element and _local_name(node.tag) == tag:
            yield node


class XmlDocument:
    """Parsed response document."""

    def __init__(self, root: ET.Element):
        self.root = root

    def elements(self, tag: str) -> list[ET.Element]:
        """All elements named `tag` (root included), in document order."""
        return [node for node in self.root.iter() if _local_name(node.tag) == tag]


def parse_document(text: str) -> XmlDocument:
    """
    Parse raw markup text.

    Raises:
        ParseError: If the text is empty or not well-formed XML
    """
    if not text or not text.strip():
        raise ParseError("A resposta da API está vazia.")
    try:
        root = ET.fromstring(text)
    except ET.ParseError as e:
        logger.debug(f"XML parse failure: {e}")
        raise ParseError(f"A resposta da API não é um XML válido: {e}") from e
    return XmlDocument(root)


def text(element: ET.Element, tag: str) -> Optional[str]:
    """Trimmed text of the first descendant named `tag`; None if absent or empty."""
    node = next(_descendants(element, tag), None)
    if node is None:
        return None
    value = "".join(node.itertext()).strip()
    return value or None


def parse_decimal(value: Optional[str]) -> Optional[Decimal]:
    """Decimal of the leading numeric part of `value` ('12.5kg' -> 12.5); None when there is none."""
    if not value:
        return None
    match = _NUMERIC_PREFIX.match(value.strip())
    if not match:
        return None
    try:
        return Decimal(match.group(0))
    except InvalidOperation:
        return None


def decimal(element: ET.Element, tag: str) -> Optional[Decimal]:
    return parse_decimal(text(element, tag))
