import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, FastAPI, HTTPException, Query, Request, status
from fastapi.responses import JSONResponse
from fastapi.security import OAuth2PasswordRequestForm
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from carbonsync import __version__, lifecycle
from carbonsync.auth import (
    authenticate_user,
    create_access_token,
    get_current_user,
    get_password_hash,
    get_user,
    require_admin,
    require_ngo,
)
from carbonsync.chain import (
    WalletGateway,
    format_address,
    generate_project_id,
    generate_token_id,
    get_wallet_gateway,
    is_wallet_address,
    portfolio_value,
)
from carbonsync.database import Base, engine, get_db
from carbonsync.exceptions import InvalidTransition, LifecycleError
from carbonsync.ipfs import IPFSClient, get_ipfs_client
from carbonsync.logger import get_logger
from carbonsync.models import PENDING, PROJECT_STATUSES, USER_ROLES, VERIFIED, Organization, Project, User
from carbonsync.schemas import (
    BlockchainRegisterRequest,
    ChainVerifyRequest,
    DashboardStats,
    ImpactSummary,
    MarketplaceListingResponse,
    MarketStatsResponse,
    MintRequest,
    ProjectCreate,
    ProjectDetail,
    ProjectMetricsResponse,
    ProjectResponse,
    ReviewDecision,
    ReviewQueueItem,
    ReviewResponse,
    UserCreate,
    UserInDB,
    UserLoginResponse,
    UserRegisterResponse,
)

logger = get_logger("carbonsync.api")

# --- Routers ---
auth_router = APIRouter()
users_router = APIRouter()
admin_router = APIRouter()
projects_router = APIRouter()
marketplace_router = APIRouter()
blockchain_router = APIRouter()
wallet_router = APIRouter()


def _now_iso():
    return datetime.datetime.now(datetime.timezone.utc).isoformat()


def _impact(impact: lifecycle.ImpactEstimate) -> ImpactSummary:
    return ImpactSummary(**impact._asdict())


def _project_detail(project: Project) -> ProjectDetail:
    metrics = lifecycle.project_metrics(project)
    return ProjectDetail(
        **ProjectResponse.model_validate(project).model_dump(),
        organization_name=project.organization_name,
        metrics=ProjectMetricsResponse(
            priority=metrics.priority.value,
            displayed_credits=metrics.displayed_credits.label,
            estimated_trees=metrics.estimated_trees,
            vegetation_increase_percent=metrics.vegetation_increase_percent,
            price_per_credit=metrics.price_per_credit,
            total_value=metrics.total_value,
            impact=_impact(metrics.impact),
        ),
    )


def _listing(entry: lifecycle.MarketplaceEntry) -> MarketplaceListingResponse:
    data = entry._asdict()
    data["impact"] = _impact(entry.impact)
    return MarketplaceListingResponse(**data)


# --- Auth Router (/api/auth) ---
@auth_router.post("/register", response_model=UserRegisterResponse)
def register_user(user: UserCreate, db: Session = Depends(get_db)):
    if user.role not in USER_ROLES:
        raise HTTPException(status_code=400, detail=f"Role must be one of: {', '.join(USER_ROLES)}")
    if user.wallet_address and not is_wallet_address(user.wallet_address):
        raise HTTPException(status_code=400, detail="Invalid wallet address format")
    if get_user(db, email=user.email):
        raise HTTPException(status_code=400, detail="Email already registered")

    new_org = Organization(
        organization_name=user.organization_name,
        organization_type=user.organization_type,
    )
    db.add(new_org)
    db.flush()

    new_user = User(
        full_name=user.full_name,
        email=user.email,
        password_hash=get_password_hash(user.password),
        role=user.role,
        organization_id=new_org.organization_id,
        wallet_address=user.wallet_address,
    )
    db.add(new_user)
    db.commit()
    db.refresh(new_user)
    logger.info("User registered", user_id=new_user.user_id, role=new_user.role)

    return {
        "user_id": new_user.user_id,
        "email": new_user.email,
        "full_name": new_user.full_name,
        "role": new_user.role,
        "message": "Registration successful.",
    }


@auth_router.post("/login", response_model=UserLoginResponse)
def login_for_access_token(form_data: OAuth2PasswordRequestForm = Depends(), db: Session = Depends(get_db)):
    user = authenticate_user(db, form_data.username, form_data.password)
    if not user:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Incorrect email or password",
            headers={"WWW-Authenticate": "Bearer"},
        )
    access_token = create_access_token(user)
    return {"accessToken": access_token, "user_id": user.user_id, "role": user.role}


# --- Users Router (/api/users) ---
@users_router.get("/me", response_model=UserInDB)
def read_users_me(current_user: User = Depends(get_current_user)):
    return current_user


# --- Projects Router (/api/projects) ---
@projects_router.post("", response_model=ProjectResponse)
def submit_project(project: ProjectCreate, db: Session = Depends(get_db), ngo_user: User = Depends(require_ngo),
                   ipfs: IPFSClient = Depends(get_ipfs_client)):
    new_project = Project(**project.model_dump(), submitted_by=ngo_user.user_id, status=PENDING)
    db.add(new_project)
    # Flush first so constraint failures surface before anything is pinned.
    db.flush()
    new_project.ipfs_hash = ipfs.upload_json({
        **project.model_dump(),
        "project_id": new_project.id,
        "submitted_by": ngo_user.user_id,
        "submission_date": _now_iso(),
    })
    try:
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.error("Project submission not saved; pin is orphaned", ipfs_hash=new_project.ipfs_hash)
        raise
    db.refresh(new_project)
    logger.info("Project submitted", project_id=new_project.id, submitted_by=ngo_user.user_id)
    return new_project


@projects_router.get("/mine", response_model=List[ProjectResponse])
def list_my_projects(db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    return (
        db.query(Project)
        .filter(Project.submitted_by == current_user.user_id)
        .order_by(Project.created_at.desc())
        .all()
    )


@projects_router.get("/{project_id}", response_model=ProjectDetail)
def get_project_details(project_id: str, db: Session = Depends(get_db),
                        current_user: User = Depends(get_current_user)):
    project = db.query(Project).filter(Project.id == project_id).first()
    if not project:
        raise HTTPException(status_code=404, detail="Project not found")
    return _project_detail(project)


# --- Admin Router (/api/admin) ---
@admin_router.get("/projects", response_model=List[ReviewQueueItem])
def get_review_queue(status_filter: str = Query(lifecycle.ANY, alias="status"), db: Session = Depends(get_db),
                     admin_user: User = Depends(require_admin)):
    query = db.query(Project)
    if status_filter != lifecycle.ANY:
        if status_filter not in PROJECT_STATUSES:
            raise HTTPException(status_code=400, detail=f"Unknown status '{status_filter}'")
        query = query.filter(Project.status == status_filter)
    projects = query.order_by(Project.created_at.desc()).all()
    return [
        ReviewQueueItem(
            **ProjectResponse.model_validate(p).model_dump(),
            organization_name=p.organization_name,
            priority=lifecycle.classify_priority(p).value,
            displayed_credits=lifecycle.displayed_credits(p).label,
        )
        for p in projects
    ]


@admin_router.get("/stats", response_model=DashboardStats)
def get_dashboard_stats(db: Session = Depends(get_db), admin_user: User = Depends(require_admin)):
    stats = lifecycle.project_stats(db.query(Project).all())
    return DashboardStats(**stats._asdict(), total_count=stats.total_count)


def _review(db: Session, project_id: str, transition, notes: Optional[str]) -> Project:
    # Re-read right before the transition; the version column catches anything that slips in after.
    project = db.query(Project).filter(Project.id == project_id).first()
    transition(project, notes)
    try:
        db.commit()
    except StaleDataError:
        db.rollback()
        logger.warning("Concurrent review detected", project_id=project_id)
        raise InvalidTransition("Project was reviewed by someone else; reload and try again")
    db.refresh(project)
    return project


@admin_router.post("/projects/{project_id}/approve", response_model=ReviewResponse)
def approve_project(project_id: str, decision: Optional[ReviewDecision] = None, db: Session = Depends(get_db),
                    admin_user: User = Depends(require_admin)):
    project = _review(db, project_id, lifecycle.approve, decision.notes if decision else None)
    return ReviewResponse(
        project_id=project.id,
        status=project.status,
        verification_date=project.verification_date,
        verification_notes=project.verification_notes,
        message="Project approved successfully.",
    )


@admin_router.post("/projects/{project_id}/reject", response_model=ReviewResponse)
def reject_project(project_id: str, decision: Optional[ReviewDecision] = None, db: Session = Depends(get_db),
                   admin_user: User = Depends(require_admin)):
    project = _review(db, project_id, lifecycle.reject, decision.notes if decision else None)
    return ReviewResponse(
        project_id=project.id,
        status=project.status,
        verification_date=project.verification_date,
        verification_notes=project.verification_notes,
        message="Project rejected. It will remain visible with rejected status.",
    )


# --- Marketplace Router (/api/marketplace) ---
def _verified_projects(db: Session):
    return (
        db.query(Project)
        .filter(Project.status == VERIFIED)
        .order_by(Project.verification_date.desc())
        .all()
    )


@marketplace_router.get("/listings", response_model=List[MarketplaceListingResponse])
def get_listings(
    q: Optional[str] = None,
    project_type: Optional[str] = None,
    location: Optional[str] = None,
    min_price: Optional[float] = None,
    max_price: Optional[float] = None,
    sort: str = lifecycle.SORT_NEWEST,
    db: Session = Depends(get_db),
):
    entries = lifecycle.list_marketplace_entries(
        _verified_projects(db),
        sort=sort,
        query=q,
        project_type=project_type,
        location=location,
        min_price=min_price,
        max_price=max_price,
    )
    return [_listing(e) for e in entries]


@marketplace_router.get("/stats", response_model=MarketStatsResponse)
def get_market_stats(db: Session = Depends(get_db)):
    stats = lifecycle.market_stats(lifecycle.list_marketplace_entries(_verified_projects(db)))
    return MarketStatsResponse(**stats._asdict())


# --- Blockchain Router (/api/blockchain) ---
@blockchain_router.post("/register")
def register_on_chain(payload: Optional[BlockchainRegisterRequest] = None,
                      gateway: WalletGateway = Depends(get_wallet_gateway),
                      ipfs: IPFSClient = Depends(get_ipfs_client)):
    if payload is None or payload.project_data is None or not payload.ngo_address:
        return JSONResponse(status_code=400, content={"error": "Missing required fields"})

    project_id = generate_project_id()
    try:
        ipfs_hash = ipfs.upload_json({**payload.project_data, "project_id": project_id, "submission_date": _now_iso()})
        transaction_hash = gateway.register_project(project_id, payload.ngo_address, ipfs_hash)
    except Exception:
        logger.exception("Error registering project", project_id=project_id)
        return JSONResponse(status_code=500, content={"error": "Failed to register project"})

    return {
        "success": True,
        "data": {
            "project_id": project_id,
            "transaction_hash": transaction_hash,
            "ipfs_hash": ipfs_hash,
            "timestamp": _now_iso(),
        },
    }


@blockchain_router.post("/mint")
def mint_credits(payload: Optional[MintRequest] = None,
                 gateway: WalletGateway = Depends(get_wallet_gateway),
                 ipfs: IPFSClient = Depends(get_ipfs_client)):
    if (payload is None or not payload.project_id or not payload.ngo_address
            or not payload.credits_amount or payload.verification_data is None):
        return JSONResponse(status_code=400, content={"error": "Missing required fields"})

    try:
        ipfs_hash = ipfs.upload_json({
            "project_id": payload.project_id,
            "verification_data": payload.verification_data,
            "timestamp": _now_iso(),
        })
        transaction_hash = gateway.mint_credits(payload.project_id, payload.ngo_address, payload.credits_amount)
    except Exception:
        logger.exception("Error minting carbon credits", project_id=payload.project_id)
        return JSONResponse(status_code=500, content={"error": "Failed to mint carbon credits"})

    return {
        "success": True,
        "data": {
            "token_id": generate_token_id(payload.project_id),
            "transaction_hash": transaction_hash,
            "ipfs_hash": ipfs_hash,
            "credits_amount": payload.credits_amount,
            "timestamp": _now_iso(),
        },
    }


@blockchain_router.post("/verify")
def verify_on_chain(payload: Optional[ChainVerifyRequest] = None,
                    gateway: WalletGateway = Depends(get_wallet_gateway)):
    if payload is None or not payload.project_id or not payload.verifier_address:
        return JSONResponse(status_code=400, content={"error": "Missing required fields"})
    if not is_wallet_address(payload.verifier_address):
        return JSONResponse(status_code=400, content={"error": "Invalid wallet address format"})

    try:
        transaction_hash = gateway.verify_project(payload.project_id, payload.verifier_address)
    except Exception:
        logger.exception("Error recording verification", project_id=payload.project_id)
        return JSONResponse(status_code=500, content={"error": "Failed to record verification"})

    return {
        "success": True,
        "data": {
            "project_id": payload.project_id,
            "verifier_address": payload.verifier_address,
            "transaction_hash": transaction_hash,
            "timestamp": _now_iso(),
        },
    }


@blockchain_router.get("/projects/{project_id}")
def get_chain_project(project_id: str,
                      gateway: WalletGateway = Depends(get_wallet_gateway),
                      ipfs: IPFSClient = Depends(get_ipfs_client)):
    try:
        record = gateway.get_project_record(project_id)
        credits_minted = gateway.get_project_credits(project_id) if record else 0
    except Exception:
        logger.exception("Error fetching project record", project_id=project_id)
        return JSONResponse(status_code=500, content={"error": "Failed to fetch project record"})
    if record is None:
        return JSONResponse(status_code=404, content={"error": "Project not registered on chain"})

    return {
        "success": True,
        "data": {
            **record._asdict(),
            "credits_minted": credits_minted,
            # Location, area and type live in the pinned submission, not on chain.
            "metadata": ipfs.fetch_json(record.ipfs_hash),
        },
    }


# --- Wallet Router (/api/wallet) ---
@wallet_router.get("/balance")
def get_wallet_balance(address: Optional[str] = None, gateway: WalletGateway = Depends(get_wallet_gateway)):
    if not address:
        return JSONResponse(status_code=400, content={"error": "Wallet address is required"})
    if not is_wallet_address(address):
        return JSONResponse(status_code=400, content={"error": "Invalid wallet address format"})

    try:
        balances = gateway.get_token_balances(address)
    except Exception:
        logger.exception("Error fetching wallet balance", address=address)
        return JSONResponse(status_code=500, content={"error": "Failed to fetch wallet balance"})

    return {
        "success": True,
        "data": {
            "address": address,
            "short_address": format_address(address),
            "balances": [b._asdict() for b in balances],
            "total_value": portfolio_value(balances),
            "timestamp": _now_iso(),
        },
    }


# --- Main Application ---
app = FastAPI(title="Carbon Credit Marketplace API", version=__version__)


@app.on_event("startup")
def on_startup():
    Base.metadata.create_all(bind=engine)


@app.exception_handler(LifecycleError)
async def lifecycle_error_handler(request: Request, exc: LifecycleError):
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


app.include_router(auth_router, prefix="/api/auth", tags=["Authentication"])
app.include_router(users_router, prefix="/api/users", tags=["Users"])
app.include_router(admin_router, prefix="/api/admin", tags=["Admin"])
app.include_router(projects_router, prefix="/api/projects", tags=["Projects"])
app.include_router(marketplace_router, prefix="/api/marketplace", tags=["Marketplace"])
app.include_router(blockchain_router, prefix="/api/blockchain", tags=["Blockchain"])
app.include_router(wallet_router, prefix="/api/wallet", tags=["Wallet"])


@app.get("/", tags=["Root"])
def read_root():
    return {"message": "Welcome to the Carbon Credit Marketplace API"}

# To run this app: `uvicorn carbonsync.main:app --reload`
