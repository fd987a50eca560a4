from pydantic import BaseModel, Field, field_validator
from typing import Optional, List, Union

# --- Request bodies ---

class AddCandidateInput(BaseModel):
    name: str = Field(..., examples=["Alice"])

class CastVoteInput(BaseModel):
    voterAddress: str = Field(..., examples=["0x70997970C51812dc3A010C7d01b50e0d17dc79C8"])
    candidateIndex: int = Field(..., examples=[0])

    @field_validator("candidateIndex", mode="before")
    @classmethod
    def reject_bool(cls, v):
        if isinstance(v, bool):
            raise ValueError("candidateIndex must be an integer")
        return v


# --- Responses ---

class CandidateSchema(BaseModel):
    index: int
    name: str
    voteCount: int

    class Config:
        from_attributes = True

class CandidateListSchema(BaseModel):
    success: bool = True
    totalCandidates: int
    candidates: List[CandidateSchema]

class AddCandidateSchema(BaseModel):
    success: bool = True
    candidateIndex: Optional[int] = None
    name: str
    transactionHash: str
    blockNumber: int
    gasUsed: int

class VoteSchema(BaseModel):
    success: bool = True
    voter: str
    candidateIndex: int
    transactionHash: str
    blockNumber: int
    gasUsed: int

class WinnerSchema(BaseModel):
    success: bool = True
    winner: Union[str, List[str], None] = None
    winnerIndexes: List[int]
    voteCount: int
    isTie: bool
    message: str

class StatusSchema(BaseModel):
    success: bool = True
    state: int
    stateName: str

class LifecycleSchema(BaseModel):
    success: bool = True
    message: str
    transactionHash: str
    blockNumber: int

class HasVotedSchema(BaseModel):
    success: bool = True
    address: str
    hasVoted: bool

class HealthSchema(BaseModel):
    success: bool = True
    message: str
    timestamp: str
    network: str
    contract: Optional[str] = None
    initialized: bool

class ErrorSchema(BaseModel):
    success: bool = False
    error: str
    timestamp: str
