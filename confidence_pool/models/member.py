from pydantic import BaseModel


class Participation(BaseModel):
    # Members who predate the participation flag are treated as opted in
    confidence_enabled: bool = True


class PoolMember(BaseModel):
    """A pool participant as listed in the members document"""

    display_name: str = "Unknown"
    participation: Participation = Participation()

    class Config:
        populate_by_name = True
