"""
CompanyModel — Abstract base class for tenant-scoped models.

All models that need tenant isolation inherit from CompanyModel instead of
db.Model directly. This adds:
  - company_id FK column with index
  - query_for_company(company_id) classmethod
"""

from orgadmin.models import db


class CompanyModel(db.Model):
    """Abstract base for company-scoped tables."""
    __abstract__ = True

    company_id = db.Column(
        db.Integer,
        db.ForeignKey("companies.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    @classmethod
    def query_for_company(cls, company_id):
        """Return a query filtered by company_id."""
        return cls.query.filter_by(company_id=company_id)
