import datetime
import uuid

from sqlalchemy import JSON, CheckConstraint, Column, DateTime, Float, ForeignKey, Integer, String, Text
from sqlalchemy.orm import relationship

from carbonsync.database import Base

PENDING = "pending"
VERIFIED = "verified"
REJECTED = "rejected"
PROJECT_STATUSES = (PENDING, VERIFIED, REJECTED)

ROLE_ADMIN = "admin"
ROLE_NGO = "ngo"
ROLE_INVESTOR = "investor"
USER_ROLES = (ROLE_ADMIN, ROLE_NGO, ROLE_INVESTOR)


def utcnow():
    return datetime.datetime.now(datetime.timezone.utc)


def new_project_id():
    return str(uuid.uuid4())


# --- Models ---
class Organization(Base):
    __tablename__ = "Organizations"
    organization_id = Column(Integer, primary_key=True, index=True)
    organization_name = Column(String(255), nullable=False)
    organization_type = Column(String(50), nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow)


class User(Base):
    __tablename__ = "Users"
    user_id = Column(Integer, primary_key=True, index=True)
    organization_id = Column(Integer, ForeignKey("Organizations.organization_id"))
    email = Column(String(255), nullable=False, unique=True, index=True)
    password_hash = Column(String(255), nullable=False)
    full_name = Column(String(255), nullable=False)
    role = Column(String(50), nullable=False)  # 'admin', 'ngo', 'investor'
    wallet_address = Column(String(42), nullable=True, unique=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    organization = relationship("Organization")


class Project(Base):
    __tablename__ = "Projects"
    __table_args__ = (
        CheckConstraint("status IN ('pending', 'verified', 'rejected')", name="ck_project_status"),
        CheckConstraint("area_hectares > 0", name="ck_project_area_positive"),
        CheckConstraint("estimated_co2_tons > 0", name="ck_project_co2_positive"),
    )

    id = Column(String(36), primary_key=True, default=new_project_id)
    title = Column(String(255), nullable=False)
    project_type = Column(String(100), nullable=False)
    location_name = Column(String(255), nullable=False)
    latitude = Column(Float, nullable=False)
    longitude = Column(Float, nullable=False)
    area_hectares = Column(Float, nullable=False)
    tree_species = Column(JSON, nullable=False, default=list)
    media_urls = Column(JSON, nullable=False, default=list)
    submitted_by = Column(Integer, ForeignKey("Users.user_id"), nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    status = Column(String(20), nullable=False, default=PENDING, index=True)
    verification_date = Column(DateTime(timezone=True), nullable=True)
    verification_notes = Column(Text, nullable=True)

    estimated_co2_tons = Column(Float, nullable=False)

    # Listing terms; None means the marketplace default / placeholder applies.
    price_per_credit = Column(Float, nullable=True)
    rating = Column(Float, nullable=True)
    review_count = Column(Integer, nullable=True)

    ipfs_hash = Column(String(64), nullable=True)

    # Bumped on every UPDATE; a stale snapshot fails to flush instead of overwriting a review.
    version_id = Column(Integer, nullable=False)

    submitter = relationship("User")

    __mapper_args__ = {"version_id_col": version_id}

    @property
    def organization_name(self):
        if self.submitter is None or self.submitter.organization is None:
            return None
        return self.submitter.organization.organization_name
