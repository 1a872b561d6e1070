"""
KYC Core Data Structures
========================
Pydantic models for session state, typed conversation turns and the
structured outputs expected back from the model.
"""

from typing import Annotated, FrozenSet, List, Literal, Optional, Union
from pydantic import BaseModel, Field
from datetime import datetime
import uuid

SessionStatus = Literal["ACTIVE", "APPROVED", "REJECTED"]
KycStatus = Literal["CONTINUE", "APPROVED", "REJECTED"]

TERMINAL_STATUSES = ("APPROVED", "REJECTED")

# ─── MODEL OUTPUTS ──────────────────────────────────────────────────────────

class Decision(BaseModel):
    next_question: str = Field(..., description="Text to speak in the selected language. Under 2 sentences.")
    kyc_status: KycStatus = Field(..., description="CONTINUE while more information is needed")
    risk_flag: Optional[bool] = Field(None, description="True when fraud indicators were observed")
    language_code: Optional[str] = Field(None, description="Language code of next_question")

    def session_status(self) -> SessionStatus:
        return "ACTIVE" if self.kyc_status == "CONTINUE" else self.kyc_status


WarningKind = Literal["NONE", "NO_FACE", "CAMERA_BLOCKED", "MULTIPLE_PEOPLE", "SUSPICIOUS_ENVIRONMENT"]


class EnvironmentVerdict(BaseModel):
    warning_kind: WarningKind = Field(..., description="Most severe problem seen in the frame, or NONE")
    face_visible: bool = Field(False, description="Exactly one face is clearly visible")
    camera_blocked: bool = Field(False, description="Lens covered, black or frozen frame")
    environment: str = Field("unknown", description="home, office, public, vehicle or unknown")
    warning: Optional[str] = Field(None, description="Short human-readable warning, null when warning_kind is NONE")


# ─── CONVERSATION TURNS ─────────────────────────────────────────────────────

class SystemInstruction(BaseModel):
    kind: Literal["instruction"] = "instruction"
    role: Literal["investigator"] = "investigator"
    version: str
    text: str


class RespondentUtterance(BaseModel):
    kind: Literal["utterance"] = "utterance"
    role: Literal["respondent"] = "respondent"
    text: str
    at: datetime = Field(default_factory=datetime.now)


class PriorDecision(BaseModel):
    kind: Literal["decision"] = "decision"
    role: Literal["investigator"] = "investigator"
    decision: Decision
    at: datetime = Field(default_factory=datetime.now)


Turn = Annotated[Union[SystemInstruction, RespondentUtterance, PriorDecision], Field(discriminator="kind")]

# ─── SESSION STATE ──────────────────────────────────────────────────────────

class EnvironmentEntry(BaseModel):
    timestamp: datetime = Field(default_factory=datetime.now)
    warning_kind: WarningKind
    message: Optional[str] = None


class KycSession(BaseModel):
    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    created_at: datetime = Field(default_factory=datetime.now)
    updated_at: datetime = Field(default_factory=datetime.now)
    language: str = Field(..., frozen=True)
    status: SessionStatus = "ACTIVE"
    risk_flag: bool = False

    # Insertion order is the model's context window
    history: List[Turn] = Field(default_factory=list)
    environment_log: List[EnvironmentEntry] = Field(default_factory=list)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def instructions(self) -> Optional[SystemInstruction]:
        for turn in self.history:
            if isinstance(turn, SystemInstruction):
                return turn
        return None

    def conversation(self) -> List[Turn]:
        """History without the system instruction, as sent to the model."""
        return [t for t in self.history if not isinstance(t, SystemInstruction)]

    def respondent_turns(self) -> int:
        return sum(1 for t in self.history if isinstance(t, RespondentUtterance))


class TurnOutcome(BaseModel):
    """What the caller gets back from start() and process()."""
    session_id: str
    next_question: str
    status: SessionStatus
    risk_flag: bool
    language_code: str
    fallback: bool = False

    @property
    def kyc_status(self) -> KycStatus:
        return "CONTINUE" if self.status == "ACTIVE" else self.status


# ─── UPSTREAM DISCOVERY ─────────────────────────────────────────────────────

class ModelInfo(BaseModel):
    name: str
    capabilities: FrozenSet[str] = frozenset()
