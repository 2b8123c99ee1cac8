"""
Minimal SOAP 1.1 envelope building and response parsing.

Envelopes are built with ElementTree so every value placed in them is
escaped; invoice fields such as the callback URL and additional data
come from callers and must never be concatenated into markup.
"""

import xml.etree.ElementTree as ET
from typing import Any, Iterable, Optional

from bankpay.engine.retry import PermanentError

SOAP_ENV_NS = "http://schemas.xmlsoap.org/soap/envelope/"
SOAP_CONTENT_TYPE = "text/xml; charset=utf-8"

ET.register_namespace("soapenv", SOAP_ENV_NS)


def build_envelope(
    operation: str,
    namespace: str,
    fields: Iterable[tuple[str, Any]],
    prefix: str = "int",
) -> bytes:
    """
    Build a SOAP envelope calling `operation` with child elements in the given order.

    None values produce empty elements.
    """
    ET.register_namespace(prefix, namespace)
    envelope = ET.Element(f"{{{SOAP_ENV_NS}}}Envelope")
    ET.SubElement(envelope, f"{{{SOAP_ENV_NS}}}Header")
    body = ET.SubElement(envelope, f"{{{SOAP_ENV_NS}}}Body")
    call = ET.SubElement(body, f"{{{namespace}}}{operation}")
    for name, value in fields:
        child = ET.SubElement(call, name)
        child.text = "" if value is None else str(value)
    return ET.tostring(envelope, encoding="utf-8")


def _local_name(tag: str) -> str:
    return tag.rsplit("}", 1)[-1]


def find_value(xml_text: str, element: str = "return") -> Optional[str]:
    """
    Return the text of the first element named `element`, ignoring namespaces.

    Raises:
        PermanentError: If the response is not well-formed XML.
    """
    try:
        root = ET.fromstring(xml_text)
    except ET.ParseError as e:
        raise PermanentError(f"Malformed SOAP response: {e}", status_code=502) from e

    fault = next((el for el in root.iter() if _local_name(el.tag) == "Fault"), None)
    if fault is not None:
        reason = next(
            (el.text for el in fault.iter() if _local_name(el.tag) == "faultstring" and el.text),
            "unknown fault",
        )
        raise PermanentError(f"SOAP fault from gateway: {reason}", status_code=502)

    for el in root.iter():
        if _local_name(el.tag) == element:
            return (el.text or "").strip()
    return None
