"""Employee model."""
from sqlalchemy import Column, Date, DateTime, Index, Integer, String
from sqlalchemy.sql import func

from app.database import Base


class Employee(Base):
    """Employee record loaded from spreadsheets or edited through the API."""

    __tablename__ = "trx_employee"

    id = Column(Integer, primary_key=True, index=True)
    firstname = Column(String(10), nullable=False)
    lastname = Column(String(10), nullable=False)
    gender = Column(String(6), nullable=False)
    country = Column(String(20), nullable=False)
    age = Column(Integer, nullable=False)
    date = Column(Date, nullable=False)
    created_at = Column(DateTime, server_default=func.now(), nullable=False)
    updated_at = Column(
        DateTime, server_default=func.now(), onupdate=func.now(), nullable=False
    )

    __table_args__ = (
        Index("idx_trx_employee_firstname", "firstname"),
    )

    def __repr__(self):
        return f"<Employee(id={self.id}, firstname='{self.firstname}', lastname='{self.lastname}')>"
