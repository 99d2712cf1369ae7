"""
Test capability tokens, value types and CapabilitySet semantics.
"""

import pytest

from auth.capabilities import (
    CapabilityName, CapabilityRecord, CapabilitySet, RoleCapabilityAssignment, RoleRecord,
    get_capability_category,
)
from core.errors import UnknownCapability, ValidationError


def _set(**flags):
    return CapabilitySet({CapabilityName(name): flag for name, flag in flags.items()})


class TestCapabilityName:

    def test_parse_is_case_insensitive(self):
        assert CapabilityName.parse(" document_edit ") is CapabilityName.DOCUMENT_EDIT

    def test_parse_unknown_falls_back(self):
        assert CapabilityName.parse("DOCUMENT_EDTI") is CapabilityName.UNKNOWN
        assert CapabilityName.parse(None) is CapabilityName.UNKNOWN

    def test_require_rejects_unknown(self):
        with pytest.raises(UnknownCapability) as exc_info:
            CapabilityName.require("DOCUMENT_EDTI")
        assert exc_info.value.status_code == 400
        assert isinstance(exc_info.value, ValidationError)

    def test_require_rejects_unknown_member(self):
        with pytest.raises(UnknownCapability):
            CapabilityName.require(CapabilityName.UNKNOWN)

    def test_category_lookup(self):
        assert get_capability_category("WORKFLOW_MANAGE") == "workflow"
        assert get_capability_category(CapabilityName.ADMIN_ACCESS) == "system"


class TestValueTypes:

    def test_record_rejects_empty_name(self):
        with pytest.raises(ValidationError):
            CapabilityRecord(id="c1", name="  ")

    def test_record_rejects_unknown_category(self):
        with pytest.raises(ValidationError):
            CapabilityRecord(id="c1", name="DOCUMENT_VIEW", category="billing")

    def test_record_token(self):
        assert CapabilityRecord(id="c1", name="DOCUMENT_VIEW").token is CapabilityName.DOCUMENT_VIEW
        assert CapabilityRecord(id="c2", name="LEGACY_THING").token is CapabilityName.UNKNOWN

    def test_role_rejects_negative_level(self):
        with pytest.raises(ValidationError):
            RoleRecord(id="r1", name="editor", level=-1)

    def test_assignment_requires_both_ids(self):
        with pytest.raises(ValidationError):
            RoleCapabilityAssignment(role_id="r1", capability_id="")


class TestCapabilitySet:

    def test_exact_membership(self):
        caps = _set(DOCUMENT_EDIT=False)
        assert caps.has("DOCUMENT_EDIT")
        assert not caps.has("DOCUMENT_APPROVE")
        assert not caps.is_super

    def test_super_capability_grants_everything(self):
        caps = _set(ADMIN_ACCESS=True)
        assert caps.is_super
        for token in CapabilityName:
            if token is not CapabilityName.UNKNOWN:
                assert caps.has(token)

    def test_has_any_and_all(self):
        caps = _set(DOCUMENT_EDIT=False, DOCUMENT_VIEW=False)
        assert caps.has_any(["DOCUMENT_APPROVE", "DOCUMENT_VIEW"])
        assert not caps.has_any(["DOCUMENT_APPROVE"])
        assert not caps.has_any([])
        assert caps.has_all(["DOCUMENT_EDIT", "DOCUMENT_VIEW"])
        assert not caps.has_all(["DOCUMENT_EDIT", "DOCUMENT_APPROVE"])

    def test_check_with_unknown_name_raises(self):
        with pytest.raises(UnknownCapability):
            _set(DOCUMENT_EDIT=False).has("DOCUMENT_EDTI")

    def test_from_records_skips_unknown_and_merges_super(self):
        caps = CapabilitySet.from_records([
            CapabilityRecord(id="1", name="DOCUMENT_VIEW"),
            CapabilityRecord(id="2", name="NOT_A_CAPABILITY"),
            CapabilityRecord(id="3", name="ADMIN_ACCESS", category="system", is_super=True),
        ])
        assert caps.names() == ["ADMIN_ACCESS", "DOCUMENT_VIEW"]
        assert caps.super_names() == ["ADMIN_ACCESS"]
        assert CapabilityName.UNKNOWN not in caps

    def test_empty_set(self):
        caps = CapabilitySet.empty()
        assert len(caps) == 0
        assert not caps.has("DOCUMENT_VIEW")
        assert caps.to_dict() == {}

    def test_equality(self):
        assert _set(DOCUMENT_VIEW=False) == _set(DOCUMENT_VIEW=False)
        assert _set(DOCUMENT_VIEW=False) != _set(DOCUMENT_VIEW=True)
