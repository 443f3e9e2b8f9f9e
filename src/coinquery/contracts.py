"""Pydantic schemas for the analysis request/result contract.

Field names are snake_case in Python and camelCase on the wire:
- AnalysisRequest: {query | userInput, systemPrompt?, model?}
- AnalysisResult: {success: true, data: {rawData, analysis, debugInfo}}
  or {success: false, error: {message, timestamp, details}}
"""

from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from coinquery.errors import CoinQueryError, utc_timestamp


class _WireModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class AnalysisRequest(_WireModel):
    """One natural-language question to resolve.

    Presence of ``user_input`` and ``system_prompt`` is checked by the
    orchestrator so that a missing field is a ValidationFault, not a schema error.
    """

    user_input: str | None = Field(
        None,
        validation_alias=AliasChoices("query", "userInput", "user_input"),
        serialization_alias="userInput",
        description="Natural language question",
    )
    system_prompt: str | None = Field(
        None,
        validation_alias=AliasChoices("systemPrompt", "system_prompt"),
        serialization_alias="systemPrompt",
        description="Persona/system prompt for the analysis call",
    )
    model: str | None = Field(None, description="Model route name (default route when omitted)")


class DebugInfo(_WireModel):
    """What each stage produced, for inspecting a run."""

    generated_code: str = Field("", serialization_alias="generatedCode", description="Program text after sanitizing")
    system_prompt: str | None = Field(None, serialization_alias="systemPrompt")
    model: str
    timestamp: str = Field(default_factory=utc_timestamp)
    execution_error: str | None = Field(None, serialization_alias="executionError")
    synthesis_error: str | None = Field(None, serialization_alias="synthesisError")
    warnings: list[str] = Field(default_factory=list)
    elapsed_ms: dict[str, float] = Field(default_factory=dict, serialization_alias="elapsedMs")


class AnalysisData(_WireModel):
    raw_data: Any = Field(None, serialization_alias="rawData")
    analysis: str
    debug_info: DebugInfo = Field(..., serialization_alias="debugInfo")


class ErrorInfo(_WireModel):
    message: str
    timestamp: str = Field(default_factory=utc_timestamp)
    details: dict[str, Any] | None = None

    @classmethod
    def from_fault(cls, fault: CoinQueryError) -> "ErrorInfo":
        payload = fault.to_dict()
        return cls(message=payload["message"], timestamp=payload["timestamp"], details=payload["details"])


class AnalysisResult(_WireModel):
    """Exactly one of ``data`` (success) or ``error`` (failure) is set."""

    success: bool
    data: AnalysisData | None = None
    error: ErrorInfo | None = None

    @classmethod
    def ok(cls, data: AnalysisData) -> "AnalysisResult":
        return cls(success=True, data=data)

    @classmethod
    def failed(cls, fault: CoinQueryError) -> "AnalysisResult":
        return cls(success=False, error=ErrorInfo.from_fault(fault))

    def to_response(self) -> dict[str, Any]:
        """Serialize to the wire shape, omitting the unused branch."""
        if self.success and self.data is not None:
            return {"success": True, "data": self.data.model_dump(by_alias=True)}
        error = self.error or ErrorInfo(message="Unknown error")
        return {"success": False, "error": error.model_dump(by_alias=True)}
