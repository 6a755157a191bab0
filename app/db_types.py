"""Column types shared by the models.

Everything here works on PostgreSQL (production) and SQLite (tests).
"""
from sqlalchemy import JSON, Numeric
from sqlalchemy.dialects.postgresql import UUID as PG_UUID

# JSONB is PostgreSQL-specific, JSON works with both databases
JSONType = JSON

# Native uuid on PostgreSQL, CHAR(32) on SQLite
UUIDType = PG_UUID(as_uuid=True)

# Money is always Decimal with two places; never float
MoneyType = Numeric(12, 2, asdecimal=True)

# Average cost keeps more precision than money
CostType = Numeric(14, 4, asdecimal=True)
