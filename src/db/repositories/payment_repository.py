"""Payment repository."""

from sqlalchemy import select
from sqlalchemy.orm import Session

from ..schema import Payment


class PaymentRepository:
    """Repository for payment attempts recorded against trips."""

    def __init__(self, session: Session):
        self.session = session

    def create(self, payment: Payment) -> None:
        self.session.add(payment)
        self.session.flush()

    def get(self, reference_id: str) -> Payment | None:
        return self.session.get(Payment, reference_id)

    def list_by_trip(self, trip_id: str) -> list[Payment]:
        stmt = (
            select(Payment)
            .where(Payment.trip_id == trip_id)
            .order_by(Payment.created_at.desc())
        )
        result = self.session.execute(stmt)
        return list(result.scalars().all())
