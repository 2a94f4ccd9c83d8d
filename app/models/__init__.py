from .consent_record import ConsentRecord
from .page_view import PageView

__all__ = [
    "ConsentRecord",
    "PageView",
]
