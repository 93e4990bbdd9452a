from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, NonNegativeInt


class Policy(BaseModel):
    """Admin-controlled global ruleset, stored under the original setting names."""

    model_config = ConfigDict(populate_by_name=True)

    voting_open: bool = Field(default=True, alias="votingOpen")
    results_visible_to_voters: bool = Field(default=True, alias="showResultsToUsers")
    allow_multiple_votes: bool = Field(default=False, alias="allowMultipleVotes")
    require_verification: bool = Field(default=True, alias="requireFaceCheck")

    def to_storage(self) -> dict:
        return self.model_dump(by_alias=True)


class Snapshot(BaseModel):
    """Export/import document. Every field defaults when absent."""

    users: Dict[str, str] = Field(default_factory=dict)
    votes: Dict[str, NonNegativeInt] = Field(default_factory=dict)
    options: List[str] = Field(default_factory=list)
    userVotes: Dict[str, str] = Field(default_factory=dict)
    settings: Policy = Field(default_factory=Policy)


# --- Request bodies ---
class RegisterRequest(BaseModel):
    username: str
    password: str
    enroll_face: bool = False
    enroll_platform_credential: bool = False


class LoginRequest(BaseModel):
    username: str
    password: str


class UsernameRequest(BaseModel):
    username: str


class VoteRequest(BaseModel):
    option: str


class OptionRequest(BaseModel):
    name: str


class PolicyUpdate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    voting_open: Optional[bool] = Field(default=None, alias="votingOpen")
    results_visible_to_voters: Optional[bool] = Field(default=None, alias="showResultsToUsers")
    allow_multiple_votes: Optional[bool] = Field(default=None, alias="allowMultipleVotes")
    require_verification: Optional[bool] = Field(default=None, alias="requireFaceCheck")


class ResultRowOut(BaseModel):
    option: str
    count: int
    percent: int


class ResultsOut(BaseModel):
    total: int
    results: List[ResultRowOut]


class PasswordRequest(BaseModel):
    password: str
