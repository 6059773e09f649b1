"""Tests for comfyproxy.api.models: Pydantic request/response models."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from comfyproxy.api.models import GenerateRequest, GenerateResponse


class TestGenerateRequest:
    """Test GenerateRequest Pydantic model."""

    def test_camel_case_alias(self):
        req = GenerateRequest.model_validate(
            {"workflow": {"3": {}}, "workflowValues": {"prompt": "cat"}}
        )
        assert req.workflow == {"3": {}}
        assert req.workflow_values == {"prompt": "cat"}

    def test_snake_case_name_accepted(self):
        req = GenerateRequest.model_validate({"workflow": {}, "workflow_values": {"a": "b"}})
        assert req.workflow_values == {"a": "b"}

    def test_fields_default_to_none(self):
        req = GenerateRequest.model_validate({})
        assert req.workflow is None
        assert req.workflow_values is None

    def test_scalar_values_keep_their_type(self):
        req = GenerateRequest.model_validate(
            {"workflow": {}, "workflowValues": {"s": "42", "n": 42, "f": 1.5, "b": True}}
        )
        assert req.workflow_values == {"s": "42", "n": 42, "f": 1.5, "b": True}
        assert isinstance(req.workflow_values["s"], str)
        assert isinstance(req.workflow_values["b"], bool)

    def test_nested_values_rejected(self):
        with pytest.raises(ValidationError):
            GenerateRequest.model_validate({"workflow": {}, "workflowValues": {"a": {"b": 1}}})

    def test_workflow_may_be_text(self):
        req = GenerateRequest.model_validate({"workflow": '{"seed": {{s}}}', "workflowValues": {}})
        assert req.workflow == '{"seed": {{s}}}'


class TestGenerateResponse:
    """Test GenerateResponse serialisation."""

    def test_serialises_with_alias(self):
        resp = GenerateResponse(base64_img="aGk=")
        assert resp.model_dump(by_alias=True) == {"base64Img": "aGk="}
