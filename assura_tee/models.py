from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field


class PolicyModel(BaseModel):
    score: int = 0
    expiry: int = 0
    chainId: int = 0


class AttestRequest(BaseModel):
    # Unknown fields (a client-sent "score" included) are dropped.
    model_config = ConfigDict(extra="ignore")

    userAddress: str
    chainId: Optional[int] = None
    username: Optional[str] = None
    key: Optional[str] = None


class VerifyRequest(BaseModel):
    app: str
    key: str = "0x00"
    complianceData: str
    policy: PolicyModel = Field(default_factory=PolicyModel)


class AttestedDataModel(BaseModel):
    score: str
    timeAtWhichAttested: str
    chainId: str


class RegistrationModel(BaseModel):
    success: bool
    username: str
    created: bool


class AttestResponse(BaseModel):
    attestedData: AttestedDataModel
    signature: str
    teeAddress: str
    userAddress: str
    key: str
    complianceData: str
    registration: Optional[RegistrationModel] = None


class VerifyResponse(BaseModel):
    accepted: bool
    reason: Optional[str] = None
    details: Dict[str, Any] = Field(default_factory=dict)
