import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field

# --- Schemas ---

# Token
class TokenData(BaseModel):
    email: Optional[str] = None
    role: Optional[str] = None


# User Schemas
class UserBase(BaseModel):
    email: EmailStr
    full_name: str


class UserCreate(UserBase):
    password: str
    role: str
    organization_name: str
    organization_type: str
    wallet_address: Optional[str] = None


class UserRegisterResponse(BaseModel):
    user_id: int
    email: EmailStr
    full_name: str
    role: str
    message: str


class UserLoginResponse(BaseModel):
    accessToken: str
    token_type: str = "bearer"
    user_id: int
    role: str


class UserInDB(UserBase):
    user_id: int
    organization_id: Optional[int] = None
    role: str
    wallet_address: Optional[str] = None
    created_at: datetime.datetime

    model_config = ConfigDict(from_attributes=True)


# Project Schemas
class ProjectCreate(BaseModel):
    title: str
    project_type: str
    location_name: str
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)
    area_hectares: float = Field(..., gt=0)
    tree_species: List[str] = []
    media_urls: List[str] = []
    estimated_co2_tons: float = Field(..., gt=0)
    price_per_credit: Optional[float] = Field(None, gt=0)


class ProjectResponse(BaseModel):
    id: str
    title: str
    project_type: str
    location_name: str
    latitude: float
    longitude: float
    area_hectares: float
    tree_species: List[str]
    media_urls: List[str]
    submitted_by: int
    created_at: datetime.datetime
    status: str
    verification_date: Optional[datetime.datetime] = None
    verification_notes: Optional[str] = None
    estimated_co2_tons: float
    price_per_credit: Optional[float] = None
    ipfs_hash: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class ImpactSummary(BaseModel):
    trees_planted: float
    carbon_sequestered: float
    communities_benefited: int
    jobs_created: int


class ProjectMetricsResponse(BaseModel):
    priority: str
    displayed_credits: str
    estimated_trees: float
    # Placeholder derived from declared area, not imagery.
    vegetation_increase_percent: int
    price_per_credit: float
    total_value: float
    impact: ImpactSummary


class ProjectDetail(ProjectResponse):
    organization_name: Optional[str] = None
    metrics: ProjectMetricsResponse


class ReviewQueueItem(ProjectResponse):
    organization_name: Optional[str] = None
    priority: str
    displayed_credits: str


# Review Schemas
class ReviewDecision(BaseModel):
    notes: Optional[str] = None


class ReviewResponse(BaseModel):
    project_id: str
    status: str
    verification_date: datetime.datetime
    verification_notes: Optional[str] = None
    message: str


class DashboardStats(BaseModel):
    pending_count: int
    verified_count: int
    rejected_count: int
    total_count: int
    total_credits_issued: float
    active_organization_count: int


# Marketplace Schemas
class MarketplaceListingResponse(BaseModel):
    project_id: str
    project_name: str
    organization_name: str
    project_type: str
    location: str
    area_hectares: float
    credits_available: float
    price_per_credit: float
    total_value: float
    estimated_trees: float
    # Placeholder until a review system exists.
    rating: float
    review_count: int
    verification_date: Optional[datetime.datetime] = None
    impact: ImpactSummary
    tree_species: List[str]
    media_urls: List[str]


class MarketStatsResponse(BaseModel):
    total_credits: float
    average_price: float
    total_value: float
    active_projects: int


# Blockchain Schemas
# Fields are optional so that a missing field is answered with 400, not a validation error.
class BlockchainRegisterRequest(BaseModel):
    project_data: Optional[Dict[str, Any]] = None
    ngo_address: Optional[str] = None


class MintRequest(BaseModel):
    project_id: Optional[str] = None
    ngo_address: Optional[str] = None
    credits_amount: Optional[float] = None
    verification_data: Optional[Dict[str, Any]] = None


class ChainVerifyRequest(BaseModel):
    project_id: Optional[str] = None
    verifier_address: Optional[str] = None
