"""Field extraction from Junos XML replies."""

from typing import Dict, Optional

from lxml import etree

from keyserver.utils.error_handling import ParseError

KEYCHAIN_COMMAND = "show security keychain"
UPTIME_COMMAND = "show system uptime"

# DeviceKeyState field -> element under <hakr-keychain>
KEYCHAIN_FIELDS = {
    "active_send_key": "hakr-keychain-active-send-key",
    "active_receive_key": "hakr-keychain-active-receive-key",
    "next_send_key": "hakr-keychain-next-send-key",
    "next_receive_key": "hakr-keychain-next-receive-key",
    "next_key_time": "hakr-keychain-next-key-time",
}


def parse_reply(reply) -> etree._Element:
    """Accept an lxml element or raw XML text."""
    if isinstance(reply, (str, bytes)):
        try:
            return etree.fromstring(reply.encode() if isinstance(reply, str) else reply)
        except etree.XMLSyntaxError as exc:
            raise ParseError(f"malformed XML reply: {exc}") from exc
    return reply


def find_keychain(reply, keychain: str) -> Optional[etree._Element]:
    """Return the <hakr-keychain> element named *keychain*, or None."""
    root = parse_reply(reply)
    matches = root.xpath(
        "descendant-or-self::hakr-keychain[normalize-space(hakr-keychain-name)=$name]",
        name=keychain,
    )
    return matches[0] if matches else None


def extract_keychain_fields(reply, keychain: str, device: Optional[str] = None) -> Dict[str, str]:
    """
    Pull the active/next key fields for *keychain* out of a keychain status reply.

    Raises:
        ParseError: If the key-chain or any of its fields is missing
    """
    element = find_keychain(reply, keychain)
    if element is None:
        raise ParseError(f"couldn't get keychain information for {keychain!r}", device)

    fields = {}
    for name, tag in KEYCHAIN_FIELDS.items():
        child = element.find(tag)
        if child is None:
            raise ParseError(f"couldn't get {name.replace('_', ' ')}", device)
        fields[name] = (child.text or "").strip()
    return fields


def time_source_label(reply) -> Optional[str]:
    """Return the time-source label from a system uptime reply, if present."""
    root = parse_reply(reply)
    matches = root.xpath("descendant-or-self::system-uptime-information/time-source")
    if not matches:
        return None
    return (matches[0].text or "").strip()


def is_ntp_synchronized(reply) -> bool:
    label = time_source_label(reply)
    return bool(label) and "NTP" in label
