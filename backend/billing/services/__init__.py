"""
Billing business logic package.

WHY: Services hold the invoice rules separately from the API routes and
data access, following the three-layer architecture (API → Service → DAO).
"""
