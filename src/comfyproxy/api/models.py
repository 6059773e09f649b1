"""Pydantic request and response models for the Comfy Proxy API.

FastAPI uses these models for request validation, serialisation, and
OpenAPI documentation.  Field aliases keep the camelCase wire names used by
existing clients (``workflowValues``, ``base64Img``) while the Python
attributes stay snake_case.

Models
------
GenerateRequest
    Payload for ``POST /generate``: a workflow template and its values.
GenerateResponse
    Result of ``POST /generate``: the output image as base64.
HealthResponse
    Result of ``GET /health``.
"""

from __future__ import annotations

from typing import Any, Union

from pydantic import BaseModel, ConfigDict, Field

# A workflow value: placeholders are bound to scalars only.
WorkflowValue = Union[str, int, float, bool]


class GenerateRequest(BaseModel):
    """Request body for the ``POST /generate`` endpoint.

    Both fields are optional at the schema level so the route can answer a
    missing field with a descriptive 400 instead of a generic 422.

    Attributes:
        workflow: Engine workflow in API format, containing ``{{name}}``
            placeholders.  May also be the workflow's JSON text, which
            allows unquoted placeholders for numeric fields.
        workflow_values: Placeholder name → value.  Values that are
            ``http``/``https`` URLs are staged as engine input images and
            replaced by the engine-assigned filename.
    """

    model_config = ConfigDict(populate_by_name=True)

    workflow: Any = Field(
        default=None,
        description="Workflow template (API format) with {{placeholder}} tokens.",
    )
    workflow_values: dict[str, WorkflowValue] | None = Field(
        default=None,
        alias="workflowValues",
        description="Placeholder values; http(s) URLs are uploaded as input images.",
    )


class GenerateResponse(BaseModel):
    """Response body for the ``POST /generate`` endpoint.

    Attributes:
        base64_img: The selected output image, base64-encoded.
    """

    model_config = ConfigDict(populate_by_name=True)

    base64_img: str = Field(
        ...,
        alias="base64Img",
        description="Output image, base64-encoded.",
    )


class ChannelStatus(BaseModel):
    shared: bool
    available: bool


class HealthResponse(BaseModel):
    """Response body for the ``GET /health`` endpoint."""

    status: str = "ok"
    version: str
    output_mode: str
    event_channel: ChannelStatus
