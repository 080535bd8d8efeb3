# dispatch/transform.py
from __future__ import annotations
import re
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Tuple

from .utils import normalize_phone

_PLACEHOLDER = re.compile(r"^\{\{\s*([\w.-]+)\s*\}\}$")


@dataclass(frozen=True)
class Contact:
    phone: str
    name: str = ""
    custom_fields: Dict[str, object] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, d: dict) -> "Contact":
        return cls(
            phone=str(d.get("phone") or ""),
            name=str(d.get("name") or ""),
            custom_fields=dict(d.get("custom_fields") or {}),
        )


@dataclass(frozen=True)
class OutboundMessage:
    phone: str
    name: str
    variables: Tuple[str, ...] = ()


def resolve_variables(template_variables: Iterable[str], contact: Contact) -> List[str]:
    """
    Campaign variables are either literals or placeholders like "{{name}}".
    Placeholders resolve against the contact: name, phone, then custom fields.
    Unknown placeholders become "".
    """
    out = []
    for raw in template_variables:
        m = _PLACEHOLDER.match(str(raw).strip())
        if not m:
            out.append(str(raw))
            continue
        key = m.group(1)
        if key in ("name", "nome"):
            value = contact.name
        elif key in ("phone", "telefone"):
            value = contact.phone
        else:
            value = contact.custom_fields.get(key, "")
        out.append("" if value is None else str(value))
    return out


def build_messages(contacts: Iterable[Contact], template_variables: Iterable[str] = ()
                   ) -> Tuple[List[OutboundMessage], List[Contact]]:
    """
    Turn campaign contacts into send-ready messages.
    Returns (messages, rejected): rejected holds contacts with an invalid
    phone or a phone already seen earlier in the list.
    """
    variables = list(template_variables)
    seen = set()
    messages, rejected = [], []
    for c in contacts:
        phone = normalize_phone(c.phone)
        if phone is None or phone in seen:
            rejected.append(c)
            continue
        seen.add(phone)
        messages.append(OutboundMessage(
            phone=phone,
            name=c.name,
            variables=tuple(resolve_variables(variables, c)),
        ))
    return messages, rejected
