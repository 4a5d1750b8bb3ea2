"""
Entity store for users, campaigns and transactions.

`SqlDbClient` is the SQLAlchemy-backed store used in deployments (Postgres,
or SQLite for local runs); `InMemoryDbClient` backs tests and development.
Both enforce the same uniqueness rules (user email, campaign title per owner)
and record a contribution as a single atomic unit.
"""

from __future__ import annotations

import re
import threading
import time
import uuid
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Dict, Iterable, Optional, Protocol

from sqlalchemy import (
    Column,
    Float,
    String,
    Text,
    UniqueConstraint,
    create_engine,
    func,
    select,
    update,
)
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from crowdspark.types import CampaignStatus, Role, TransactionStatus

ID_PATTERN = re.compile(r"^[0-9a-f]{32}$")


def new_id() -> str:
    return uuid.uuid4().hex


def is_valid_id(value: str) -> bool:
    return bool(value) and bool(ID_PATTERN.match(value))


class DuplicateRecordError(Exception):
    """Raised when an insert would violate a uniqueness rule."""

    def __init__(self, field_name: str):
        super().__init__(f"Duplicate value for {field_name}")
        self.field_name = field_name


@dataclass
class UserRecord:
    user_id: str
    username: str
    email: str
    password_hash: str
    role: Role
    backed_campaigns: list[str] = field(default_factory=list)
    created_at: float = field(default_factory=lambda: time.time())


@dataclass
class CampaignRecord:
    campaign_id: str
    title: str
    description: str
    goal_amount: float
    deadline: float
    image: str
    owner_id: str
    category: Optional[str] = None
    raised_amount: float = 0.0
    status: CampaignStatus = CampaignStatus.ACTIVE
    supporters: list[str] = field(default_factory=list)
    created_at: float = field(default_factory=lambda: time.time())


@dataclass
class TransactionRecord:
    transaction_id: str
    user_id: str
    campaign_id: str
    amount: float
    provider: str
    payment_id: str
    status: TransactionStatus = TransactionStatus.COMPLETED
    message: str = ""
    created_at: float = field(default_factory=lambda: time.time())


class DbClient(Protocol):
    """Interface for entity store access."""

    def create_user(
        self, *, username: str, email: str, password_hash: str, role: Role
    ) -> UserRecord:
        ...

    def get_user(self, user_id: str) -> Optional[UserRecord]:
        ...

    def get_user_by_email(self, email: str) -> Optional[UserRecord]:
        ...

    def get_usernames(self, user_ids: Iterable[str]) -> dict[str, str]:
        ...

    def list_users(self) -> list[UserRecord]:
        ...

    def delete_user(self, user_id: str) -> bool:
        ...

    def create_campaign(
        self,
        *,
        owner_id: str,
        title: str,
        description: str,
        goal_amount: float,
        deadline: float,
        image: str,
        category: Optional[str] = None,
    ) -> CampaignRecord:
        ...

    def get_campaign(self, campaign_id: str) -> Optional[CampaignRecord]:
        ...

    def get_campaigns(self, campaign_ids: Iterable[str]) -> dict[str, CampaignRecord]:
        ...

    def list_campaigns(self, owner_id: Optional[str] = None) -> list[CampaignRecord]:
        ...

    def delete_campaign(self, campaign_id: str) -> bool:
        ...

    def record_contribution(
        self,
        campaign_id: str,
        *,
        user_id: str,
        amount: float,
        provider: str,
        message: str = "",
    ) -> Optional[tuple[CampaignRecord, TransactionRecord]]:
        ...

    def get_transaction(self, transaction_id: str) -> Optional[TransactionRecord]:
        ...

    def list_transactions(
        self,
        *,
        campaign_id: Optional[str] = None,
        user_id: Optional[str] = None,
        status: Optional[TransactionStatus] = None,
    ) -> list[TransactionRecord]:
        ...


class InMemoryDbClient:
    """Simple in-memory store for development and tests."""

    def __init__(self):
        self.users: Dict[str, UserRecord] = {}
        self.campaigns: Dict[str, CampaignRecord] = {}
        self.transactions: Dict[str, TransactionRecord] = {}
        # Sync routes run in a threadpool; the lock makes check-and-insert and
        # the contribution update atomic.
        self._lock = threading.Lock()

    def reset(self) -> None:
        """Clear all stored data (useful in tests)."""
        with self._lock:
            self.users.clear()
            self.campaigns.clear()
            self.transactions.clear()

    def create_user(
        self, *, username: str, email: str, password_hash: str, role: Role
    ) -> UserRecord:
        with self._lock:
            if any(user.email == email for user in self.users.values()):
                raise DuplicateRecordError("email")
            record = UserRecord(
                user_id=new_id(),
                username=username,
                email=email,
                password_hash=password_hash,
                role=Role(role),
            )
            self.users[record.user_id] = record
            return record

    def get_user(self, user_id: str) -> Optional[UserRecord]:
        return self.users.get(user_id)

    def get_user_by_email(self, email: str) -> Optional[UserRecord]:
        for user in self.users.values():
            if user.email == email:
                return user
        return None

    def get_usernames(self, user_ids: Iterable[str]) -> dict[str, str]:
        return {
            user_id: self.users[user_id].username
            for user_id in set(user_ids)
            if user_id in self.users
        }

    def list_users(self) -> list[UserRecord]:
        return sorted(self.users.values(), key=lambda u: u.created_at)

    def delete_user(self, user_id: str) -> bool:
        with self._lock:
            return self.users.pop(user_id, None) is not None

    def create_campaign(
        self,
        *,
        owner_id: str,
        title: str,
        description: str,
        goal_amount: float,
        deadline: float,
        image: str,
        category: Optional[str] = None,
    ) -> CampaignRecord:
        with self._lock:
            for campaign in self.campaigns.values():
                if campaign.owner_id == owner_id and campaign.title == title:
                    raise DuplicateRecordError("title")
            record = CampaignRecord(
                campaign_id=new_id(),
                title=title,
                description=description,
                goal_amount=goal_amount,
                deadline=deadline,
                image=image,
                owner_id=owner_id,
                category=category,
            )
            self.campaigns[record.campaign_id] = record
            return record

    def get_campaign(self, campaign_id: str) -> Optional[CampaignRecord]:
        return self.campaigns.get(campaign_id)

    def get_campaigns(self, campaign_ids: Iterable[str]) -> dict[str, CampaignRecord]:
        return {
            campaign_id: self.campaigns[campaign_id]
            for campaign_id in set(campaign_ids)
            if campaign_id in self.campaigns
        }

    def list_campaigns(self, owner_id: Optional[str] = None) -> list[CampaignRecord]:
        campaigns = [
            c
            for c in self.campaigns.values()
            if owner_id is None or c.owner_id == owner_id
        ]
        return sorted(campaigns, key=lambda c: c.created_at)

    def delete_campaign(self, campaign_id: str) -> bool:
        with self._lock:
            return self.campaigns.pop(campaign_id, None) is not None

    def record_contribution(
        self,
        campaign_id: str,
        *,
        user_id: str,
        amount: float,
        provider: str,
        message: str = "",
    ) -> Optional[tuple[CampaignRecord, TransactionRecord]]:
        with self._lock:
            campaign = self.campaigns.get(campaign_id)
            if campaign is None:
                return None
            campaign.raised_amount = (campaign.raised_amount or 0.0) + amount
            if user_id not in campaign.supporters:
                campaign.supporters.append(user_id)

            transaction = TransactionRecord(
                transaction_id=new_id(),
                user_id=user_id,
                campaign_id=campaign_id,
                amount=amount,
                provider=provider,
                payment_id=str(uuid.uuid4()),
                message=message or "",
            )
            self.transactions[transaction.transaction_id] = transaction

            user = self.users.get(user_id)
            if user and campaign_id not in user.backed_campaigns:
                user.backed_campaigns.append(campaign_id)
            return campaign, transaction

    def get_transaction(self, transaction_id: str) -> Optional[TransactionRecord]:
        return self.transactions.get(transaction_id)

    def list_transactions(
        self,
        *,
        campaign_id: Optional[str] = None,
        user_id: Optional[str] = None,
        status: Optional[TransactionStatus] = None,
    ) -> list[TransactionRecord]:
        items = [
            t
            for t in self.transactions.values()
            if (campaign_id is None or t.campaign_id == campaign_id)
            and (user_id is None or t.user_id == user_id)
            and (status is None or t.status == status)
        ]
        return sorted(items, key=lambda t: t.created_at, reverse=True)


class SqlDbClient:
    """
    SQLAlchemy-backed implementation. Accepts any SQLAlchemy URL (e.g., Postgres or SQLite for tests).
    """

    def __init__(self, database_url: str):
        if not database_url:
            raise ValueError("DATABASE_URL is required for SqlDbClient")
        self.engine = create_engine(
            database_url,
            future=True,
            pool_pre_ping=True,
            pool_recycle=1800,
        )
        self.Session = sessionmaker(
            bind=self.engine, class_=Session, expire_on_commit=False, future=True
        )
        Base.metadata.create_all(self.engine)

    def _backed_campaigns(
        self, session: Session, user_ids: list[str]
    ) -> dict[str, list[str]]:
        backed: dict[str, list[str]] = defaultdict(list)
        if not user_ids:
            return backed
        stmt = (
            select(SupporterRow)
            .where(SupporterRow.user_id.in_(user_ids))
            .order_by(SupporterRow.created_at.asc())
        )
        for row in session.execute(stmt).scalars():
            backed[row.user_id].append(row.campaign_id)
        return backed

    def _supporters(
        self, session: Session, campaign_ids: list[str]
    ) -> dict[str, list[str]]:
        supporters: dict[str, list[str]] = defaultdict(list)
        if not campaign_ids:
            return supporters
        stmt = (
            select(SupporterRow)
            .where(SupporterRow.campaign_id.in_(campaign_ids))
            .order_by(SupporterRow.created_at.asc())
        )
        for row in session.execute(stmt).scalars():
            supporters[row.campaign_id].append(row.user_id)
        return supporters

    def _to_user_record(self, row: "UserRow", backed: list[str]) -> UserRecord:
        return UserRecord(
            user_id=row.user_id,
            username=row.username,
            email=row.email,
            password_hash=row.password_hash,
            role=Role(row.role),
            backed_campaigns=list(backed),
            created_at=row.created_at,
        )

    def _to_campaign_record(
        self, row: "CampaignRow", supporters: list[str]
    ) -> CampaignRecord:
        return CampaignRecord(
            campaign_id=row.campaign_id,
            title=row.title,
            description=row.description,
            goal_amount=row.goal_amount,
            deadline=row.deadline,
            image=row.image,
            owner_id=row.owner_id,
            category=row.category,
            raised_amount=row.raised_amount or 0.0,
            status=CampaignStatus(row.status),
            supporters=list(supporters),
            created_at=row.created_at,
        )

    def _to_transaction_record(self, row: "TransactionRow") -> TransactionRecord:
        return TransactionRecord(
            transaction_id=row.transaction_id,
            user_id=row.user_id,
            campaign_id=row.campaign_id,
            amount=row.amount,
            provider=row.provider,
            payment_id=row.payment_id,
            status=TransactionStatus(row.status),
            message=row.message or "",
            created_at=row.created_at,
        )

    def create_user(
        self, *, username: str, email: str, password_hash: str, role: Role
    ) -> UserRecord:
        with self.Session() as session:
            row = UserRow(
                user_id=new_id(),
                username=username,
                email=email,
                password_hash=password_hash,
                role=Role(role).value,
                created_at=time.time(),
            )
            session.add(row)
            try:
                session.commit()
            except IntegrityError as exc:
                session.rollback()
                raise DuplicateRecordError("email") from exc
            return self._to_user_record(row, [])

    def get_user(self, user_id: str) -> Optional[UserRecord]:
        with self.Session() as session:
            row = session.get(UserRow, user_id)
            if not row:
                return None
            backed = self._backed_campaigns(session, [user_id])
            return self._to_user_record(row, backed[user_id])

    def get_user_by_email(self, email: str) -> Optional[UserRecord]:
        with self.Session() as session:
            row = session.execute(
                select(UserRow).where(UserRow.email == email)
            ).scalar_one_or_none()
            if not row:
                return None
            backed = self._backed_campaigns(session, [row.user_id])
            return self._to_user_record(row, backed[row.user_id])

    def get_usernames(self, user_ids: Iterable[str]) -> dict[str, str]:
        ids = list(set(user_ids))
        if not ids:
            return {}
        with self.Session() as session:
            rows = session.execute(
                select(UserRow.user_id, UserRow.username).where(
                    UserRow.user_id.in_(ids)
                )
            ).all()
            return {user_id: username for user_id, username in rows}

    def list_users(self) -> list[UserRecord]:
        with self.Session() as session:
            rows = (
                session.execute(select(UserRow).order_by(UserRow.created_at.asc()))
                .scalars()
                .all()
            )
            backed = self._backed_campaigns(session, [r.user_id for r in rows])
            return [self._to_user_record(r, backed[r.user_id]) for r in rows]

    def delete_user(self, user_id: str) -> bool:
        with self.Session() as session:
            row = session.get(UserRow, user_id)
            if not row:
                return False
            session.delete(row)
            session.commit()
            return True

    def create_campaign(
        self,
        *,
        owner_id: str,
        title: str,
        description: str,
        goal_amount: float,
        deadline: float,
        image: str,
        category: Optional[str] = None,
    ) -> CampaignRecord:
        with self.Session() as session:
            row = CampaignRow(
                campaign_id=new_id(),
                title=title,
                description=description,
                goal_amount=goal_amount,
                raised_amount=0.0,
                deadline=deadline,
                category=category,
                image=image,
                status=CampaignStatus.ACTIVE.value,
                owner_id=owner_id,
                created_at=time.time(),
            )
            session.add(row)
            try:
                session.commit()
            except IntegrityError as exc:
                session.rollback()
                raise DuplicateRecordError("title") from exc
            return self._to_campaign_record(row, [])

    def get_campaign(self, campaign_id: str) -> Optional[CampaignRecord]:
        with self.Session() as session:
            row = session.get(CampaignRow, campaign_id)
            if not row:
                return None
            supporters = self._supporters(session, [campaign_id])
            return self._to_campaign_record(row, supporters[campaign_id])

    def get_campaigns(self, campaign_ids: Iterable[str]) -> dict[str, CampaignRecord]:
        ids = list(set(campaign_ids))
        if not ids:
            return {}
        with self.Session() as session:
            rows = (
                session.execute(
                    select(CampaignRow).where(CampaignRow.campaign_id.in_(ids))
                )
                .scalars()
                .all()
            )
            supporters = self._supporters(session, [r.campaign_id for r in rows])
            return {
                r.campaign_id: self._to_campaign_record(r, supporters[r.campaign_id])
                for r in rows
            }

    def list_campaigns(self, owner_id: Optional[str] = None) -> list[CampaignRecord]:
        with self.Session() as session:
            stmt = select(CampaignRow).order_by(CampaignRow.created_at.asc())
            if owner_id is not None:
                stmt = stmt.where(CampaignRow.owner_id == owner_id)
            rows = session.execute(stmt).scalars().all()
            supporters = self._supporters(session, [r.campaign_id for r in rows])
            return [
                self._to_campaign_record(r, supporters[r.campaign_id]) for r in rows
            ]

    def delete_campaign(self, campaign_id: str) -> bool:
        # Transactions and supporter rows are left in place.
        with self.Session() as session:
            row = session.get(CampaignRow, campaign_id)
            if not row:
                return False
            session.delete(row)
            session.commit()
            return True

    def record_contribution(
        self,
        campaign_id: str,
        *,
        user_id: str,
        amount: float,
        provider: str,
        message: str = "",
    ) -> Optional[tuple[CampaignRecord, TransactionRecord]]:
        """
        Apply a contribution in one database transaction.

        The increment is evaluated by the database in an UPDATE that runs
        first, so the write lock it takes (row lock on Postgres, database lock
        on SQLite) serialises concurrent contributions to the same campaign
        and no increment is lost.
        """
        now = time.time()
        with self.Session.begin() as session:
            updated = session.execute(
                update(CampaignRow)
                .where(CampaignRow.campaign_id == campaign_id)
                .values(
                    raised_amount=func.coalesce(CampaignRow.raised_amount, 0.0)
                    + amount
                )
                .execution_options(synchronize_session=False)
            )
            if updated.rowcount == 0:
                return None

            row = session.get(CampaignRow, campaign_id, populate_existing=True)
            if session.get(SupporterRow, (campaign_id, user_id)) is None:
                session.add(
                    SupporterRow(
                        campaign_id=campaign_id, user_id=user_id, created_at=now
                    )
                )

            txn = TransactionRow(
                transaction_id=new_id(),
                user_id=user_id,
                campaign_id=campaign_id,
                amount=amount,
                provider=provider,
                status=TransactionStatus.COMPLETED.value,
                message=message or "",
                payment_id=str(uuid.uuid4()),
                created_at=now,
            )
            session.add(txn)
            session.flush()

            supporters = self._supporters(session, [campaign_id])
            return (
                self._to_campaign_record(row, supporters[campaign_id]),
                self._to_transaction_record(txn),
            )

    def get_transaction(self, transaction_id: str) -> Optional[TransactionRecord]:
        with self.Session() as session:
            row = session.get(TransactionRow, transaction_id)
            return self._to_transaction_record(row) if row else None

    def list_transactions(
        self,
        *,
        campaign_id: Optional[str] = None,
        user_id: Optional[str] = None,
        status: Optional[TransactionStatus] = None,
    ) -> list[TransactionRecord]:
        with self.Session() as session:
            stmt = select(TransactionRow).order_by(TransactionRow.created_at.desc())
            if campaign_id is not None:
                stmt = stmt.where(TransactionRow.campaign_id == campaign_id)
            if user_id is not None:
                stmt = stmt.where(TransactionRow.user_id == user_id)
            if status is not None:
                stmt = stmt.where(TransactionRow.status == status.value)
            rows = session.execute(stmt).scalars().all()
            return [self._to_transaction_record(r) for r in rows]


Base = declarative_base()


class UserRow(Base):
    __tablename__ = "users"

    user_id = Column(String(32), primary_key=True)
    username = Column(String, nullable=False)
    email = Column(String, nullable=False, unique=True)
    password_hash = Column(String, nullable=False)
    role = Column(String, nullable=False)
    created_at = Column(Float, nullable=False)


class CampaignRow(Base):
    __tablename__ = "campaigns"
    __table_args__ = (
        UniqueConstraint("owner_id", "title", name="uq_campaign_owner_title"),
    )

    campaign_id = Column(String(32), primary_key=True)
    title = Column(String, nullable=False)
    description = Column(Text, nullable=False)
    goal_amount = Column(Float, nullable=False)
    raised_amount = Column(Float, nullable=False, default=0.0)
    deadline = Column(Float, nullable=False)
    category = Column(String, nullable=True)
    image = Column(String, nullable=False)
    status = Column(String, nullable=False, default=CampaignStatus.ACTIVE.value)
    owner_id = Column(String(32), nullable=False, index=True)
    created_at = Column(Float, nullable=False)


class SupporterRow(Base):
    """Supporter relation; read as Campaign.supporters and User.backedCampaigns."""

    __tablename__ = "campaign_supporters"

    campaign_id = Column(String(32), primary_key=True)
    user_id = Column(String(32), primary_key=True, index=True)
    created_at = Column(Float, nullable=False)


class TransactionRow(Base):
    __tablename__ = "transactions"

    transaction_id = Column(String(32), primary_key=True)
    user_id = Column(String(32), nullable=False, index=True)
    campaign_id = Column(String(32), nullable=False, index=True)
    amount = Column(Float, nullable=False)
    provider = Column(String, nullable=False)
    status = Column(String, nullable=False, index=True)
    message = Column(Text, nullable=False, default="")
    payment_id = Column(String, nullable=False, unique=True)
    created_at = Column(Float, nullable=False, index=True)
