"""Typed records exchanged between the login flow, session store and scraper."""

import datetime as dt
from decimal import Decimal
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, SecretStr


class Credentials(BaseModel):
    """Online banking credentials. Immutable after construction."""

    model_config = ConfigDict(frozen=True)

    identity: str
    secret: SecretStr
    security_answers: dict[str, str] = Field(default_factory=dict)

    @classmethod
    def from_config(
        cls, identity: str, secret: str | SecretStr, security_config: str = ""
    ) -> "Credentials":
        """Build credentials from raw values and a ``keyword:answer,...`` string."""
        from banesco_scraper.parsing import parse_security_config

        if isinstance(secret, str):
            secret = SecretStr(secret)
        return cls(
            identity=identity.strip(),
            secret=secret,
            security_answers=parse_security_config(security_config),
        )

    @property
    def masked_identity(self) -> str:
        return f"{self.identity[:3]}***" if self.identity else ""


class AuthConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    headless: bool = True
    timeout_ms: int = Field(default=30000, gt=0)
    max_modal_retries: int = Field(default=2, ge=1)
    persist_session: bool = True


class SessionRecord(BaseModel):
    """Authentication artifacts captured after a successful login."""

    owner_hash: str
    cookies: list[dict[str, Any]] = Field(default_factory=list)
    local_storage: dict[str, str] = Field(default_factory=dict)
    session_storage: dict[str, str] = Field(default_factory=dict)
    last_url: str
    created_at: dt.datetime
    user_agent: str | None = None

    def age(self, now: dt.datetime) -> dt.timedelta:
        return now - self.created_at

    def is_expired(self, now: dt.datetime, ttl: dt.timedelta) -> bool:
        return self.age(now) > ttl


class LoginStatus(str, Enum):
    SUCCESS = "success"
    FAILED = "failed"
    SYSTEM_UNAVAILABLE = "system_unavailable"
    MAX_RETRIES_EXCEEDED = "max_retries_exceeded"


class LoginResult(BaseModel):
    status: LoginStatus
    message: str
    session_valid: bool = False
    restored: bool = False

    @property
    def success(self) -> bool:
        return self.status is LoginStatus.SUCCESS


class QuestionSlot(BaseModel):
    """One of the fixed on-screen security question positions."""

    model_config = ConfigDict(frozen=True)

    label_ref: str
    input_ref: str


class Direction(str, Enum):
    DEBIT = "debit"
    CREDIT = "credit"


class TransactionRecord(BaseModel):
    """A single account movement.

    ``amount`` is always non-negative; the sign lives in ``direction``.
    """

    date: dt.date
    description: str
    reference: str | None = None
    amount: Decimal = Field(ge=0)
    direction: Direction = Direction.DEBIT
    balance: Decimal | None = None


class AccountSummary(BaseModel):
    current_balance: Decimal | None = None
    previous_balance: Decimal | None = None
    account_number: str | None = None
    account_type: str | None = None


class TableCandidate(BaseModel):
    index: int
    row_count: int
    column_count: int
    header_texts: list[str] = Field(default_factory=list)
    score: float = 0.0


class ScrapeResult(BaseModel):
    success: bool
    message: str
    records: list[TransactionRecord] = Field(default_factory=list)
    summary: AccountSummary = Field(default_factory=AccountSummary)
    metadata: dict[str, Any] = Field(default_factory=dict)
