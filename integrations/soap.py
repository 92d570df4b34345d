"""
SOAP Envelope Codec

Builds SOAP 1.1 request envelopes with a token/domain auth header and parses
provider responses with ElementTree.

Record extraction uses a shallow flattener (``flatten_record``) that maps
child element names to their text. It is only adequate for providers whose
result records are flat; nested structures come back as nested dicts and
attributes are ignored. It is not a general XML-to-object mapper.
"""

import xml.etree.ElementTree as ET
from datetime import date, datetime
from decimal import Decimal
from typing import Any

from integrations.exceptions import ProtocolError

SOAP_ENV_NS = "http://schemas.xmlsoap.org/soap/envelope/"
XSI_NS = "http://www.w3.org/2001/XMLSchema-instance"

ET.register_namespace("soap", SOAP_ENV_NS)


def local_name(tag: str) -> str:
    """Strip the ``{namespace}`` prefix from an ElementTree tag."""
    return tag.rsplit("}", 1)[-1]


def format_value(value: Any) -> str:
    """Render a Python value as SOAP element text."""
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    if isinstance(value, Decimal):
        return format(value, "f")
    return str(value)


def build_envelope(
    namespace: str,
    method: str,
    auth: dict[str, str],
    params: dict[str, Any] | None = None,
    auth_header: str = "AuthHeaderWithDomain",
) -> bytes:
    """
    Build a SOAP request envelope.

    Args:
        namespace: Service namespace for header and body elements
        method: SOAP method, used as the body element name
        auth: Ordered header fields, e.g. ``{"Token": ..., "Domain": ...}``
        params: Ordered body parameters (tenant scoped ids first)
        auth_header: Name of the header element wrapping ``auth``

    Returns:
        UTF-8 encoded envelope. All text is escaped by the serializer.
    """
    envelope = ET.Element(f"{{{SOAP_ENV_NS}}}Envelope")
    header = ET.SubElement(envelope, f"{{{SOAP_ENV_NS}}}Header")
    auth_el = ET.SubElement(header, f"{{{namespace}}}{auth_header}")
    for name, value in auth.items():
        ET.SubElement(auth_el, f"{{{namespace}}}{name}").text = format_value(value)

    body = ET.SubElement(envelope, f"{{{SOAP_ENV_NS}}}Body")
    call = ET.SubElement(body, f"{{{namespace}}}{method}")
    for name, value in (params or {}).items():
        ET.SubElement(call, f"{{{namespace}}}{name}").text = format_value(value)

    return ET.tostring(envelope, encoding="utf-8", xml_declaration=True)


def find_first(root: ET.Element, name: str) -> ET.Element | None:
    """First descendant (or root) whose local name is ``name``."""
    for element in root.iter():
        if local_name(element.tag) == name:
            return element
    return None


def extract_fault(payload: bytes | str) -> str | None:
    """Return the fault string of a SOAP response, if it carries one."""
    try:
        root = ET.fromstring(payload)
    except ET.ParseError:
        return None
    fault = find_first(root, "faultstring")
    if fault is None:
        return None
    return (fault.text or "").strip()


def parse_response(payload: bytes | str, method: str) -> ET.Element:
    """
    Locate the ``{method}Result`` element of a SOAP response.

    Raises:
        ProtocolError: malformed XML, a SOAP fault, or no result element
    """
    try:
        root = ET.fromstring(payload)
    except ET.ParseError as exc:
        raise ProtocolError(f"Malformed SOAP response: {exc}") from exc

    result = find_first(root, f"{method}Result")
    if result is not None:
        return result

    fault = find_first(root, "faultstring")
    if fault is not None:
        raise ProtocolError(f"SOAP fault: {(fault.text or '').strip()}", code="soap_fault")
    raise ProtocolError("Invalid SOAP response")


def _is_nil(element: ET.Element) -> bool:
    return element.get(f"{{{XSI_NS}}}nil") == "true"


def flatten_record(element: ET.Element) -> dict[str, Any]:
    """
    Flatten one result record into a dict keyed by child local name.

    Leaf elements map to their stripped text (``None`` when empty or nil).
    Repeated child names collect into a list.
    """
    record: dict[str, Any] = {}
    for child in element:
        key = local_name(child.tag)
        if len(child):
            value: Any = flatten_record(child)
        elif _is_nil(child):
            value = None
        else:
            value = (child.text or "").strip() or None

        if key in record:
            if not isinstance(record[key], list):
                record[key] = [record[key]]
            record[key].append(value)
        else:
            record[key] = value
    return record


def records(result: ET.Element, tag: str) -> list[dict[str, Any]]:
    """Flatten every element named ``tag`` below a result element."""
    return [
        flatten_record(element)
        for element in result.iter()
        if element is not result and local_name(element.tag) == tag
    ]
