from sqlalchemy.orm import declarative_base

Base = declarative_base()

# Import models so metadata.create_all sees every table
from app.models import (  # noqa: E402,F401
    booking,
    user,
)
