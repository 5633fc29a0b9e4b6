"""SQLAlchemy ORM models.

Individual models should be imported explicitly:
    from widgetchat.models.visitor_session import VisitorSession

All models are imported here so Base.metadata sees them when tables are
created or a migration is autogenerated.
"""

from widgetchat.models.visitor_session import VisitorSession
from widgetchat.models.widget_settings import WidgetSettings

__all__ = [
    "VisitorSession",
    "WidgetSettings",
]
