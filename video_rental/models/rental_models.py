from sqlalchemy import Boolean, Column, DateTime, Index, Integer, Numeric, String
from sqlalchemy.sql import func

from video_rental.db.base import Base


class Customer(Base):
    __tablename__ = "Customers"

    CustomerID = Column(Integer, primary_key=True)
    Name = Column(String(50), nullable=False)
    Phone = Column(String(50), nullable=False)
    IsGold = Column(Boolean, default=False)
    CreatedDate = Column(DateTime, server_default=func.now())


class Movie(Base):
    __tablename__ = "Movies"

    MovieID = Column(Integer, primary_key=True)
    Title = Column(String(255), nullable=False)
    GenreName = Column(String(50))
    DailyRentalRate = Column(Numeric(8, 2), nullable=False)
    # Written only through services.inventory_service.
    NumberInStock = Column(Integer, nullable=False, default=0)
    CreatedDate = Column(DateTime, server_default=func.now())


class Rental(Base):
    __tablename__ = "Rentals"

    RentalID = Column(Integer, primary_key=True)

    # Snapshot taken at checkout; not a reference into Customers/Movies.
    CustomerID = Column(Integer, nullable=False)
    CustomerName = Column(String(50), nullable=False)
    CustomerPhone = Column(String(50), nullable=False)
    CustomerIsGold = Column(Boolean, default=False)
    MovieID = Column(Integer, nullable=False)
    MovieTitle = Column(String(255), nullable=False)
    MovieDailyRentalRate = Column(Numeric(8, 2), nullable=False)

    DateOut = Column(DateTime, nullable=False)
    DateReturned = Column(DateTime)
    RentalFee = Column(Numeric(10, 2))

    __table_args__ = (
        Index(
            "UX_Rentals_ActiveCustomerMovie",
            "CustomerID",
            "MovieID",
            unique=True,
            sqlite_where=DateReturned.is_(None),
            postgresql_where=DateReturned.is_(None),
        ),
        Index("IX_Rentals_DateOut", "DateOut"),
    )


class AuditLog(Base):
    __tablename__ = "AuditLogs"

    AuditID = Column(Integer, primary_key=True)
    EntityType = Column(String(50), nullable=False)
    EntityID = Column(Integer, nullable=False)
    Action = Column(String(100), nullable=False)
    Details = Column(String(2000))
    UserName = Column(String(100))
    CreatedAt = Column(DateTime, server_default=func.now())
