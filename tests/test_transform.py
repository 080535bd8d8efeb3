# tests/test_transform.py
import pytest

from dispatch.transform import Contact, OutboundMessage, build_messages, resolve_variables
from dispatch.utils import mask_phone, normalize_phone


@pytest.mark.parametrize("raw,expected", [
    ("5511999998888", "5511999998888"),
    ("+55 (11) 99999-8888", "5511999998888"),
    ("11 99999-8888", "5511999998888"),
    ("(11) 3333-4444", "551133334444"),
    ("0055 11 99999 8888", "5511999998888"),
    ("0012125551234", "12125551234"),
    ("001 212 555 1234", "12125551234"),
    ("+1 555 123 4567", "15551234567"),
    ("123", None),
    ("", None),
    (None, None),
    ("+0 11 99999 8888", None),
])
def test_normalize_phone(raw, expected):
    assert normalize_phone(raw) == expected


def test_mask_phone():
    assert mask_phone("5511999998888") == "*********8888"
    assert mask_phone("123") == "***"


def test_resolve_variables_from_contact():
    c = Contact(phone="5511999998888", name="Ana", custom_fields={"plano": "Gold", "valor": 10})
    out = resolve_variables(["{{name}}", "{{ plano }}", "{{valor}}", "literal", "{{missing}}"], c)
    assert out == ["Ana", "Gold", "10", "literal", ""]


def test_resolve_portuguese_aliases():
    c = Contact(phone="5511999998888", name="João")
    assert resolve_variables(["{{nome}}", "{{telefone}}"], c) == ["João", "5511999998888"]


def test_build_messages_normalizes_and_dedupes():
    contacts = [
        Contact(phone="11 99999-8888", name="Ana"),
        Contact(phone="+55 11 99999-8888", name="Ana again"),
        Contact(phone="abc", name="Bad"),
        Contact(phone="5521988887777", name="Bia"),
    ]
    messages, rejected = build_messages(contacts, ["{{name}}"])

    assert messages == [
        OutboundMessage(phone="5511999998888", name="Ana", variables=("Ana",)),
        OutboundMessage(phone="5521988887777", name="Bia", variables=("Bia",)),
    ]
    assert [c.name for c in rejected] == ["Ana again", "Bad"]


def test_contact_from_dict_tolerates_missing_fields():
    c = Contact.from_dict({"phone": 5511999998888, "custom_fields": None})
    assert c.phone == "5511999998888"
    assert c.name == ""
    assert c.custom_fields == {}
