"""Pydantic request models for the scam-risk API.

Wire fields are camelCase; each request converts itself into the engine's
option records.
"""

from pydantic import BaseModel, Field, field_validator, ConfigDict
from typing import Dict, List, Optional

from scamscope.models import (
    AnalyzeOptions,
    CallContext,
    ContextMode,
    ContextOptions,
    ExplicitActions,
    LinkCandidate,
    PrefilterContext,
    PrefilterOptions,
)


class CallFlags(BaseModel):
    """Checkboxes of a phone-call front end."""

    model_config = ConfigDict(extra="ignore")

    otpAsked: bool = Field(default=False)
    remoteAsked: bool = Field(default=False)
    urgentPressured: bool = Field(default=False)
    firstContact: bool = Field(default=False)

    def to_call_context(self) -> CallContext:
        return CallContext(
            otp_asked=self.otpAsked,
            remote_asked=self.remoteAsked,
            urgent_pressured=self.urgentPressured,
            first_contact=self.firstContact,
        )


class ExplicitActionCounts(BaseModel):
    model_config = ConfigDict(extra="ignore")

    copyUrl: int = Field(default=0, ge=0)
    openUrl: int = Field(default=0, ge=0)
    installClick: int = Field(default=0, ge=0)


class LinkPair(BaseModel):
    model_config = ConfigDict(extra="ignore")

    href: str = Field(...)
    text: Optional[str] = Field(default=None)


class _ThreadRequest(BaseModel):
    model_config = ConfigDict(extra="ignore")

    threadText: str = Field(default="")

    @field_validator("threadText", mode="before")
    @classmethod
    def _coerce_thread_text(cls, value):
        """Clients sometimes send null or a list of lines."""
        if value is None:
            return ""
        if isinstance(value, list):
            return "\n".join(str(v) for v in value)
        return value


class PrefilterRequest(_ThreadRequest):
    """Incoming payload on POST /prefilter."""

    recentLines: Optional[int] = Field(default=None, ge=1)
    thresholdSoft: Optional[int] = Field(default=None, ge=0, le=100)
    thresholdAuto: Optional[int] = Field(default=None, ge=0, le=100)
    allowHosts: List[str] = Field(default_factory=list)
    isSavedContact: Optional[bool] = Field(default=None)
    explicitActions: ExplicitActionCounts = Field(default_factory=ExplicitActionCounts)
    linkCandidates: List[LinkPair] = Field(default_factory=list)
    debug: bool = Field(default=False)

    def to_options(self) -> PrefilterOptions:
        return PrefilterOptions(
            recent_lines=self.recentLines,
            threshold_soft=self.thresholdSoft,
            threshold_auto=self.thresholdAuto,
            allow_hosts=self.allowHosts,
            context=PrefilterContext(
                is_saved_contact=self.isSavedContact,
                explicit_actions=ExplicitActions(
                    copy_url=self.explicitActions.copyUrl,
                    open_url=self.explicitActions.openUrl,
                    install_click=self.explicitActions.installClick,
                ),
                link_candidates=[LinkCandidate(href=c.href, text=c.text) for c in self.linkCandidates],
            ),
            debug=self.debug,
        )


class AnalyzeRequest(_ThreadRequest):
    """Incoming payload on POST /analyze."""

    callContext: CallFlags = Field(default_factory=CallFlags)
    contextMode: ContextMode = Field(default="auto")
    maxMessages: int = Field(default=20)
    maxStickyMessages: int = Field(default=160)
    weights: Optional[Dict[str, float]] = Field(default=None)
    thresholdMedium: Optional[float] = Field(default=None)
    thresholdHigh: Optional[float] = Field(default=None)
    prefilterEnabled: bool = Field(default=True)
    simTopK: int = Field(default=10, ge=1, le=50)
    simGate: Optional[float] = Field(default=None, ge=0, le=1)

    def to_options(self) -> AnalyzeOptions:
        return AnalyzeOptions(
            weights=self.weights,
            threshold_medium=self.thresholdMedium,
            threshold_high=self.thresholdHigh,
            context=ContextOptions(
                mode=self.contextMode,
                max_messages=self.maxMessages,
                max_sticky_messages=self.maxStickyMessages,
            ),
            prefilter_enabled=self.prefilterEnabled,
            sim_top_k=self.simTopK,
            sim_gate=self.simGate,
        )


class SimilarRequest(_ThreadRequest):
    """Incoming payload on POST /similar.

    Either a ready sparse ``vec`` or a ``threadText`` whose signals are
    turned into one.
    """

    vec: Optional[Dict[str, float]] = Field(default=None)
    topK: int = Field(default=3, ge=1, le=50)
    minSim: float = Field(default=0.35, ge=0, le=1)


class ResolveRequest(BaseModel):
    """Incoming payload on POST /resolve."""

    model_config = ConfigDict(extra="ignore")

    url: str = Field(...)
    maxHops: Optional[int] = Field(default=None, ge=0, le=10)
    timeoutMs: Optional[int] = Field(default=None, ge=0)
