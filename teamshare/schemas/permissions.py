from typing import Optional, List, Literal
from sqlmodel import SQLModel, Field




class PropagationResult(SQLModel):
    resource_id: str
    name: str
    type: Literal["file", "folder"]
    updated: bool = False
    error: Optional[str] = None
    # Members found in more than one tier of the stored ACL
    conflicts: List[str] = Field(default_factory=list)
    # Set when an unreadable stored ACL was replaced by a full resync
    note: Optional[str] = None




class PropagationReport(SQLModel):
    team_id: str
    total: int
    updated: int
    failed: int
    results: List[PropagationResult]

    @classmethod
    def from_results(cls, team_id: str, results: List[PropagationResult]) -> "PropagationReport":
        return cls(
            team_id=team_id,
            total=len(results),
            updated=sum(1 for result in results if result.updated),
            failed=sum(1 for result in results if result.error),
            results=results,
        )
