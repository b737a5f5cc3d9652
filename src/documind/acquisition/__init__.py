from .service import AcquisitionResult, AcquisitionService, HttpURLFetcher, URLFetcher

__all__ = [
    "AcquisitionResult",
    "AcquisitionService",
    "HttpURLFetcher",
    "URLFetcher",
]
