"""Ownership registry: point reads, tenancy queries, atomic transactions."""

import logging
from typing import Optional, Protocol

from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlmodel import Session, select

from buttonhub.config import settings
from buttonhub.models.device import DeviceIdentity, DeviceSettings
from buttonhub.models.invite import Invitation
from buttonhub.models.status import DeviceStatusRecord
from buttonhub.models.user import OwnershipGrant, User
from buttonhub.services.transaction import Put, Transaction

logger = logging.getLogger(__name__)

CONDITION_FAILED = "ConditionalCheckFailed"
UNIQUE_VIOLATION = "UniqueConstraintViolation"


class RegistryError(Exception):
    """The registry could not complete a read or write."""


class TransactionTooLarge(RegistryError):
    pass


class TransactionCanceled(RegistryError):
    """Nothing was written. ``reasons`` holds one entry per operation."""

    def __init__(self, reasons: list[Optional[str]]):
        failed = [f"#{i}: {r}" for i, r in enumerate(reasons) if r]
        super().__init__(f"Transaction canceled ({', '.join(failed)})")
        self.reasons = reasons

    @property
    def condition_failed(self) -> bool:
        return any(r in (CONDITION_FAILED, UNIQUE_VIOLATION) for r in self.reasons)


class OwnershipRegistry(Protocol):
    def get_user_by_subject(self, subject: str) -> Optional[User]: ...

    def get_device(self, device_id: str) -> Optional[DeviceIdentity]: ...

    def get_device_by_serial(self, serial_number: str) -> Optional[DeviceIdentity]: ...

    def get_device_settings(self, device_id: str) -> Optional[DeviceSettings]: ...

    def list_device_grants(self, device_id: str) -> list[OwnershipGrant]: ...

    def list_device_invitations(self, device_id: str) -> list[Invitation]: ...

    def list_device_status(self, device_id: str) -> list[DeviceStatusRecord]: ...

    def transact_write(self, transaction: Transaction) -> None: ...


class SqlOwnershipRegistry:
    """Registry backed by SQLModel tables.

    Every call opens its own session, so the registry can be shared across
    requests and threads.
    """

    def __init__(self, bind: Engine, max_items: int = settings.transaction_max_items):
        self._bind = bind
        self.max_items = max_items

    # --- Reads ---

    def _first(self, statement):
        try:
            with Session(self._bind) as session:
                return session.exec(statement).first()
        except SQLAlchemyError as e:
            raise RegistryError(f"Read failed: {e}") from e

    def _all(self, statement) -> list:
        try:
            with Session(self._bind) as session:
                return list(session.exec(statement).all())
        except SQLAlchemyError as e:
            raise RegistryError(f"Query failed: {e}") from e

    def get_user_by_subject(self, subject: str) -> Optional[User]:
        return self._first(select(User).where(User.subject == subject))

    def get_device(self, device_id: str) -> Optional[DeviceIdentity]:
        return self._first(select(DeviceIdentity).where(DeviceIdentity.device_id == device_id))

    def get_device_by_serial(self, serial_number: str) -> Optional[DeviceIdentity]:
        return self._first(
            select(DeviceIdentity).where(
                DeviceIdentity.serial_number == serial_number,
                DeviceIdentity.is_active == True,  # noqa: E712
            )
        )

    def get_device_settings(self, device_id: str) -> Optional[DeviceSettings]:
        return self._first(select(DeviceSettings).where(DeviceSettings.device_id == device_id))

    def list_device_grants(self, device_id: str) -> list[OwnershipGrant]:
        return self._all(select(OwnershipGrant).where(OwnershipGrant.device_id == device_id))

    def list_device_invitations(self, device_id: str) -> list[Invitation]:
        return self._all(
            select(Invitation)
            .where(Invitation.device_id == device_id)
            .order_by(Invitation.created_at.desc())
        )

    def list_device_status(self, device_id: str) -> list[DeviceStatusRecord]:
        return self._all(select(DeviceStatusRecord).where(DeviceStatusRecord.device_id == device_id))

    # --- Writes ---

    def transact_write(self, transaction: Transaction) -> None:
        """Apply every operation or none.

        Operations run in order with a flush after each, so a delete
        followed by a put on the same key replaces the item.
        """
        if len(transaction) == 0:
            return
        if len(transaction) > self.max_items:
            raise TransactionTooLarge(
                f"Transaction has {len(transaction)} operations, limit is {self.max_items}"
            )

        reasons: list[Optional[str]] = [None] * len(transaction)
        index = 0
        with Session(self._bind) as session:
            try:
                for index, op in enumerate(transaction):
                    current = session.get(op.model, op.key)
                    if op.condition is not None and not op.condition.holds(current):
                        reasons[index] = CONDITION_FAILED
                        raise TransactionCanceled(reasons)
                    if isinstance(op, Put):
                        session.merge(op.item)
                    elif current is not None:
                        session.delete(current)
                    session.flush()
                session.commit()
            except TransactionCanceled:
                session.rollback()
                raise
            except IntegrityError as e:
                session.rollback()
                reasons[index] = UNIQUE_VIOLATION
                raise TransactionCanceled(reasons) from e
            except SQLAlchemyError as e:
                session.rollback()
                raise RegistryError(f"Transaction failed: {e}") from e

        logger.debug("Committed %d operations", len(transaction))
