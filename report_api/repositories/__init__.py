from report_api.repositories.reports import IMMUTABLE_FIELDS, InMemoryReportsRepository, business_key

__all__ = [
    "IMMUTABLE_FIELDS",
    "InMemoryReportsRepository",
    "business_key",
]
