from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, Field

VoteType = Literal["Election", "Pledge", "Bidding"]
PledgeRound = Literal["board", "blackball"]

ABSTAIN = "Abstain"
BOARD_CHOICES = ("Continue", "Board")
BLACKBALL_CHOICES = ("Continue", "Blackball")
BID_CHOICES = ("Bid", "No Bid")


class VoteCreate(BaseModel):
    type: VoteType
    title: Optional[str] = None
    options: List[str] = Field(default_factory=list, example=["Alice", "Bob"])
    pledges: List[str] = Field(default_factory=list)
    rushees: List[str] = Field(default_factory=list)


class VoteEnd(BaseModel):
    countdown_seconds: Optional[int] = Field(None, ge=0)


class RoundUpdate(BaseModel):
    round: PledgeRound


class OptionIn(BaseModel):
    option: str


class BallotIn(BaseModel):
    """A single ballot; which fields apply depends on the vote type."""
    choice: str
    pledge: Optional[str] = None
    round: Optional[PledgeRound] = None
    rushee: Optional[str] = None
    proxy: bool = False


class PledgeBallotItem(BaseModel):
    pledge: str
    board_choice: Optional[str] = None
    blackball_choice: Optional[str] = None


class PledgeBatchIn(BaseModel):
    ballot: List[PledgeBallotItem]
    proxy: bool = False


class InvalidateIn(BaseModel):
    voter_id: str


class PledgeConsIn(BaseModel):
    pledge_valid_cons: Dict[str, bool]


class SnapBidIn(BaseModel):
    rushee: str
