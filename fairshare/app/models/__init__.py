"""
models — SQLAlchemy table definitions.

All models are imported here so that string-based relationship targets
("Split") resolve no matter which model is imported first.
"""

from fairshare.app.models.expense import Category, Expense  # noqa: F401
from fairshare.app.models.group import Group  # noqa: F401
from fairshare.app.models.membership import Membership  # noqa: F401
from fairshare.app.models.split import Split  # noqa: F401
from fairshare.app.models.user import User  # noqa: F401
