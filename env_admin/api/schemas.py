"""
Pydantic schemas for API requests
"""

from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field


# Authentication schemas
class LoginRequest(BaseModel):
    username: str = Field(..., min_length=1)
    password: str = Field(..., min_length=1)


class EnvironmentLoginRequest(BaseModel):
    environment_id: str
    username: str
    password: str


# Environment schemas
class CreateEnvironmentRequest(BaseModel):
    name: str = Field(..., min_length=1)
    port: int
    username: str = Field(..., min_length=1)
    password: str = Field(..., min_length=1)
    integrations: List[str] = Field(default_factory=list)
    pipeline_ref: Optional[str] = None


class UpdateEnvironmentRequest(BaseModel):
    name: Optional[str] = None
    pipeline_ref: Optional[str] = None
    active: Optional[bool] = None


class SetIntegrationsRequest(BaseModel):
    integrations: List[str]


# Credential schemas
class UpdateCredentialsRequest(BaseModel):
    login: Optional[str] = None
    password: Optional[str] = None
    verify: bool = True


class VerifyCredentialsRequest(BaseModel):
    login: str
    password: str
    environment_id: Optional[str] = None


# Profile schemas
class CreateProfileRequest(BaseModel):
    name: str = Field(..., min_length=1)
    permissions: Dict[str, bool] = Field(default_factory=dict)


class UpdateProfileRequest(BaseModel):
    name: Optional[str] = None
    permissions: Optional[Dict[str, bool]] = None
    active: Optional[bool] = None


# Login schemas
class CreateLoginRequest(BaseModel):
    username: str = Field(..., min_length=1)
    password: str = Field(..., min_length=1)
    environment_id: str
    profile_id: Optional[str] = None


class UpdateLoginRequest(BaseModel):
    username: Optional[str] = None
    password: Optional[str] = None
    environment_id: Optional[str] = None
    profile_id: Optional[str] = None
    active: Optional[bool] = None


class LoginCheckRequest(BaseModel):
    password: str


# CLT lookup schemas
class LookupSubjectModel(BaseModel):
    cpf: str
    telefone: str
    dataNascimento: str
    nome: Optional[str] = ""


class SimulateRequest(LookupSubjectModel):
    integrations: List[str] = Field(..., min_length=1)


class BatchRequest(BaseModel):
    records: List[Dict[str, Any]] = Field(..., min_length=1)
    integrations: List[str] = Field(..., min_length=1)
